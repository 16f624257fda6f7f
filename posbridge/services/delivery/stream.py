"""
Server-Sent Events order stream.

Each stream polls for recently confirmed orders, forwards broadcast messages
queued for it, and sends heartbeats. A device-key stream also refreshes the
device heartbeat on each heartbeat tick. Frames are ``data: <json>\\n\\n``.
"""

import asyncio
import json
import logging
import time
from datetime import timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.orm import selectinload

from posbridge.core.config import get_settings
from posbridge.database import utcnow
from posbridge.models import Order, OrderStatus
from posbridge.services.auth import Principal
from posbridge.services.delivery.payload import EVENT_NEW_ORDER, serialize_order, to_iso
from posbridge.services.devices import DeviceHeartbeat
from posbridge.services.realtime import KIND_SSE, ConnectionManager, QueueTransport

logger = logging.getLogger(__name__)

RECENT_ORDER_LIMIT = 10


def sse_frame(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


class OrderStream:
    """
    One SSE session for one tenant.

    Args:
        session_factory: Opens a short-lived session per poll
        connections: Registry the stream joins for broadcasts
        principal: Authenticated tenant
        clock: Monotonic clock used for heartbeat spacing
        sleep: Awaitable sleep; tests pass a no-op
        heartbeat: Device liveness writer; built from ``principal`` by default
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        connections: ConnectionManager,
        principal: Principal,
        poll_interval: Optional[float] = None,
        lookback_seconds: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        heartbeat: Optional[DeviceHeartbeat] = None,
    ):
        settings = get_settings()
        self.session_factory = session_factory
        self.connections = connections
        self.principal = principal
        self.poll_interval = poll_interval if poll_interval is not None else settings.sse_poll_interval_seconds
        self.lookback_seconds = lookback_seconds if lookback_seconds is not None else settings.sse_lookback_seconds
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None
            else settings.sse_heartbeat_interval_seconds
        )
        self.clock = clock
        self.sleep = sleep
        self.heartbeat = heartbeat or DeviceHeartbeat(session_factory, principal.device_id, clock=clock)
        self.seen_order_ids: set[int] = set()

    async def _recent_orders(self) -> list[Order]:
        window_start = utcnow() - timedelta(seconds=self.lookback_seconds)
        async with self.session_factory() as session:
            result = await session.execute(
                select(Order)
                .options(selectinload(Order.items))
                .where(
                    Order.tenant_id == self.principal.tenant_id,
                    Order.status == OrderStatus.CONFIRMED,
                    Order.created_at >= window_start,
                )
                .order_by(Order.created_at.desc())
                .limit(RECENT_ORDER_LIMIT)
            )
            return list(result.scalars().all())

    def _drain(self, transport: QueueTransport) -> list[dict[str, Any]]:
        messages = []
        while (message := transport.get_nowait()) is not None:
            order_id = (message.get("order") or {}).get("id")
            if order_id is not None:
                if order_id in self.seen_order_ids:
                    continue
                self.seen_order_ids.add(order_id)
            messages.append(message)
        return messages

    async def events(
        self,
        is_disconnected: Callable[[], Awaitable[bool]],
    ) -> AsyncIterator[str]:
        """
        Yield SSE frames until the client goes away.

        The connection is always unregistered when the generator finishes,
        whether by disconnect, sweep or cancellation.
        """
        transport = QueueTransport()
        connection = self.connections.register(self.principal.tenant_slug, transport, KIND_SSE)
        tenant_name = self.principal.tenant_name

        try:
            yield sse_frame({
                "event": "connected",
                "tenant": tenant_name,
                "timestamp": to_iso(utcnow()),
            })
            last_heartbeat = self.clock()

            while True:
                if transport.closed or await is_disconnected():
                    break

                for message in self._drain(transport):
                    yield sse_frame(message)

                try:
                    orders = await self._recent_orders()
                except Exception as e:
                    logger.error(f"SSE poll failed for {self.principal.tenant_slug}: {e}")
                    yield sse_frame({
                        "event": "error",
                        "error": "Streaming error occurred",
                        "timestamp": to_iso(utcnow()),
                    })
                else:
                    for order in orders:
                        if order.id in self.seen_order_ids:
                            continue
                        self.seen_order_ids.add(order.id)
                        yield sse_frame({
                            "event": EVENT_NEW_ORDER,
                            "order": serialize_order(order, order.items),
                            "timestamp": to_iso(utcnow()),
                        })

                now = self.clock()
                if now - last_heartbeat >= self.heartbeat_interval:
                    last_heartbeat = now
                    yield sse_frame({"event": "heartbeat", "timestamp": to_iso(utcnow())})
                    await self.heartbeat.beat()

                self.connections.touch(connection.client_id)
                await self.sleep(self.poll_interval)
        finally:
            self.connections.unregister(connection.client_id)
            await transport.close()
            logger.info(f"SSE stream closed for {tenant_name} ({len(self.seen_order_ids)} order(s) sent)")
