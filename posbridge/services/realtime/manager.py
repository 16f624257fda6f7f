"""
Connection Manager

In-process registry of live POS sessions (WebSocket and SSE), keyed by
tenant. Owned by the application (created in the lifespan, stored on
``app.state``); there is no module-level instance.

All mutations happen on the event loop thread, so no locking is needed. The
registry does not survive a restart and is not shared between processes; a
Redis pub/sub relay would be needed to scale out.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from posbridge.services.realtime.transports import BaseTransport

logger = logging.getLogger(__name__)

Clock = Callable[[], float]

KIND_WEBSOCKET = "websocket"
KIND_SSE = "sse"


@dataclass
class Connection:
    client_id: str
    tenant: str
    transport: BaseTransport
    kind: str
    connected_at: float
    last_ping: float


@dataclass
class BroadcastResult:
    delivered: int = 0
    failed: list[str] = field(default_factory=list)

    @property
    def any_delivered(self) -> bool:
        return self.delivered > 0


class ConnectionManager:
    """
    Per-tenant registry of live connections.

    Args:
        stale_after: Seconds without a ping before ``sweep`` removes a connection
        sweep_interval: Seconds between background sweeps
        clock: Monotonic clock; tests pass a fake one
    """

    def __init__(
        self,
        stale_after: float = 60.0,
        sweep_interval: float = 30.0,
        clock: Optional[Clock] = None,
    ):
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.clock = clock or time.monotonic
        self._connections: dict[str, dict[str, Connection]] = {}
        self._index: dict[str, Connection] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # =========================================================================
    # REGISTRY
    # =========================================================================

    def register(self, tenant: str, transport: BaseTransport, kind: str = KIND_WEBSOCKET) -> Connection:
        now = self.clock()
        connection = Connection(
            client_id=uuid.uuid4().hex,
            tenant=tenant,
            transport=transport,
            kind=kind,
            connected_at=now,
            last_ping=now,
        )
        self._connections.setdefault(tenant, {})[connection.client_id] = connection
        self._index[connection.client_id] = connection

        logger.info(
            f"POS {kind} connected: tenant={tenant} client={connection.client_id} "
            f"(tenant total: {self.connection_count(tenant)})"
        )
        return connection

    def unregister(self, client_id: str) -> Optional[Connection]:
        """Remove a connection; unknown ids are ignored."""
        connection = self._index.pop(client_id, None)
        if connection is None:
            return None

        tenant_connections = self._connections.get(connection.tenant)
        if tenant_connections is not None:
            tenant_connections.pop(client_id, None)
            if not tenant_connections:
                del self._connections[connection.tenant]

        logger.info(f"POS {connection.kind} disconnected: tenant={connection.tenant} client={client_id}")
        return connection

    def touch(self, client_id: str) -> None:
        connection = self._index.get(client_id)
        if connection is not None:
            connection.last_ping = self.clock()

    def get(self, client_id: str) -> Optional[Connection]:
        return self._index.get(client_id)

    def connection_count(self, tenant: Optional[str] = None) -> int:
        if tenant is None:
            return len(self._index)
        return len(self._connections.get(tenant, {}))

    def snapshot(self) -> dict[str, dict[str, int]]:
        """Live connection counts per tenant, split by kind."""
        result: dict[str, dict[str, int]] = {}
        for tenant, connections in self._connections.items():
            counts = {KIND_WEBSOCKET: 0, KIND_SSE: 0}
            for connection in connections.values():
                counts[connection.kind] = counts.get(connection.kind, 0) + 1
            counts["total"] = len(connections)
            result[tenant] = counts
        return result

    def describe(self, tenant: Optional[str] = None) -> list[dict[str, Any]]:
        """Per-connection details for the admin view."""
        now = self.clock()
        connections = (
            self._connections.get(tenant, {}).values() if tenant is not None
            else self._index.values()
        )
        return [
            {
                "client_id": connection.client_id,
                "tenant": connection.tenant,
                "kind": connection.kind,
                "connected_seconds": round(now - connection.connected_at, 1),
                "idle_seconds": round(now - connection.last_ping, 1),
            }
            for connection in connections
        ]

    # =========================================================================
    # DELIVERY
    # =========================================================================

    async def broadcast(self, tenant: str, message: dict[str, Any]) -> BroadcastResult:
        """
        Send ``message`` to every connection of ``tenant``.

        A failing connection is removed and does not stop delivery to the
        rest. A tenant with no connections yields an empty result.
        """
        result = BroadcastResult()
        connections = list(self._connections.get(tenant, {}).values())
        if not connections:
            logger.debug(f"No live POS connections for tenant {tenant}")
            return result

        for connection in connections:
            try:
                await connection.transport.send(message)
                result.delivered += 1
            except Exception as e:
                logger.warning(f"Send to {connection.client_id} failed: {e}")
                result.failed.append(connection.client_id)

        for client_id in result.failed:
            self.unregister(client_id)

        logger.info(
            f"Broadcast to {tenant}: {result.delivered} delivered, {len(result.failed)} failed"
        )
        return result

    # =========================================================================
    # LIVENESS
    # =========================================================================

    async def sweep(self) -> list[str]:
        """Remove and close connections idle longer than ``stale_after``."""
        now = self.clock()
        stale = [
            connection for connection in list(self._index.values())
            if now - connection.last_ping > self.stale_after
        ]

        for connection in stale:
            self.unregister(connection.client_id)
            try:
                await connection.transport.close()
            except Exception as e:
                logger.debug(f"Closing stale connection {connection.client_id} failed: {e}")

        if stale:
            logger.info(f"Swept {len(stale)} stale POS connection(s)")
        return [connection.client_id for connection in stale]

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Connection sweep failed: {e}")

    def start(self) -> None:
        """Start the background sweeper; calling twice is a no-op."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_forever())
        logger.info(f"Connection sweeper started (every {self.sweep_interval:.0f}s)")

    async def stop(self) -> None:
        """Stop the sweeper and close every remaining connection."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        for connection in list(self._index.values()):
            self.unregister(connection.client_id)
            try:
                await connection.transport.close()
            except Exception as e:
                logger.debug(f"Closing {connection.client_id} on shutdown failed: {e}")

        logger.info("Connection sweeper stopped")

    @property
    def running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()
