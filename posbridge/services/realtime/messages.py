"""
Inbound WebSocket messages from POS clients.

``ping`` is answered with ``pong``; anything else is recorded in the sync log
as a ``pos_<type>`` event with status ``received``. Every inbound message
counts as a device heartbeat (throttled).
"""

import json
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from posbridge.database import utcnow
from posbridge.models import PosSyncLog, SyncLogStatus
from posbridge.services.auth import Principal
from posbridge.services.devices import DeviceHeartbeat

logger = logging.getLogger(__name__)


def _stamp() -> str:
    return utcnow().isoformat() + "Z"


def welcome_message(tenant: str) -> dict[str, Any]:
    return {
        "type": "connected",
        "tenant": tenant,
        "message": "Connected to POS WebSocket",
        "timestamp": _stamp(),
    }


def parse_message(raw: str) -> Optional[dict[str, Any]]:
    """Decode a client frame; None when it is not a JSON object."""
    try:
        message = json.loads(raw)
    except ValueError:
        return None
    return message if isinstance(message, dict) else None


class PosMessageHandler:
    """Handles messages for one authenticated WebSocket session."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        principal: Principal,
        heartbeat: Optional[DeviceHeartbeat] = None,
    ):
        self.session_factory = session_factory
        self.principal = principal
        self.heartbeat = heartbeat or DeviceHeartbeat(session_factory, principal.device_id)

    async def handle(self, message: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Return the reply to send back, if any."""
        message_type = str(message.get("type") or "message")
        await self.heartbeat.beat()

        if message_type == "ping":
            return {"type": "pong", "timestamp": _stamp()}

        logger.info(f"POS message from {self.principal.tenant_slug}: {message_type}")
        await self._record(message_type, message)
        return None

    async def _record(self, message_type: str, message: dict[str, Any]) -> None:
        try:
            async with self.session_factory() as session:
                session.add(PosSyncLog(
                    tenant_id=self.principal.tenant_id,
                    event_type=f"pos_{message_type}",
                    event_data=json.dumps(message, default=str),
                    status=SyncLogStatus.RECEIVED,
                    created_at=utcnow(),
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to record POS message {message_type}: {e}")
