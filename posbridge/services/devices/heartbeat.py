"""
Device heartbeats from live sessions.

A terminal holding a WebSocket or SSE session is authenticated once, at
connect. Its pings and stream ticks keep ``last_seen_at`` fresh through
``DeviceHeartbeat``, which writes at most once per interval.
"""

import logging
import time
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from posbridge.core.config import get_settings
from posbridge.services.devices.registry import DeviceRegistry

logger = logging.getLogger(__name__)


class DeviceHeartbeat:
    """
    Throttled liveness writer for one session.

    Args:
        session_factory: Opens a short-lived session per write
        device_id: Device behind the session; None (tenant key) disables writes
        min_interval: Seconds between writes
        clock: Monotonic clock
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        device_id: Optional[str],
        min_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_factory = session_factory
        self.device_id = device_id
        self.min_interval = (
            min_interval if min_interval is not None
            else get_settings().device_heartbeat_interval_seconds
        )
        self.clock = clock
        self.last_recorded: Optional[float] = None

    async def beat(self) -> bool:
        """Record a heartbeat unless one was written within ``min_interval``."""
        if not self.device_id:
            return False

        now = self.clock()
        if self.last_recorded is not None and now - self.last_recorded < self.min_interval:
            return False

        try:
            async with self.session_factory() as session:
                recorded = await DeviceRegistry(session).record_heartbeat(self.device_id)
        except SQLAlchemyError as e:
            logger.error(f"Heartbeat for {self.device_id} not recorded: {e}")
            return False

        self.last_recorded = now
        if not recorded:
            logger.warning(f"Heartbeat for unknown or inactive device {self.device_id}")
        return recorded
