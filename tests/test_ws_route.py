"""
Tests for the /ws/pos/{tenant} WebSocket route.

The route runs inside the TestClient's own event loop thread, so these tests
use a file database without connection pooling that both loops can open.
"""

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from posbridge.database import Base, get_session_factory
from posbridge.main import app
from posbridge.models import PosSyncLog, SyncLogStatus
from tests.conftest import ADMIN_HEADERS, OTHER_TENANT_KEY, TENANT_KEY


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File database shared by the test loop and the app loop."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ws.db'}", poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def ws_client(session_factory):
    """TestClient with the lifespan running, so live connections are the app's own."""
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


class TestWebSocketAuth:

    @pytest.mark.parametrize("headers", [{}, {"x-api-key": "pos_wrong"}, {"x-api-key": OTHER_TENANT_KEY}])
    async def test_rejected_with_policy_violation(self, ws_client, tenant, other_tenant, headers):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with ws_client.websocket_connect("/ws/pos/kitchen", headers=headers):
                pass

        assert exc_info.value.code == 1008
        assert ws_client.app.state.connections.connection_count("kitchen") == 0

    async def test_query_parameter_key(self, ws_client, tenant):
        with ws_client.websocket_connect(f"/ws/pos/kitchen?apiKey={TENANT_KEY}") as ws:
            assert ws.receive_json()["type"] == "connected"


class TestWebSocketSession:

    async def test_welcome_ping_and_invalid_json(self, ws_client, tenant):
        with ws_client.websocket_connect("/ws/pos/kitchen", headers={"x-api-key": TENANT_KEY}) as ws:
            welcome = ws.receive_json()
            assert welcome["type"] == "connected"
            assert welcome["tenant"] == "kitchen"
            assert welcome["message"] == "Connected to POS WebSocket"

            ws.send_json({"type": "ping"})
            pong = ws.receive_json()
            assert pong["type"] == "pong"
            assert pong["timestamp"].endswith("Z")

            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid JSON message"}

    async def test_broadcast_reaches_socket_and_disconnect_unregisters(self, ws_client, tenant):
        connections = ws_client.app.state.connections

        with ws_client.websocket_connect("/ws/pos/kitchen", headers={"x-api-key": TENANT_KEY}) as ws:
            ws.receive_json()
            assert connections.connection_count("kitchen") == 1

            response = ws_client.post(
                "/api/admin/broadcast",
                json={"tenant": "kitchen", "event": {"type": "menu_updated"}},
                headers=ADMIN_HEADERS,
            )
            assert response.json()["delivered"] == 1
            assert ws.receive_json() == {"type": "menu_updated"}

        assert connections.connection_count("kitchen") == 0

    async def test_device_message_is_logged(self, ws_client, db, tenant, make_device):
        device = await make_device(tenant)

        with ws_client.websocket_connect("/ws/pos/kitchen", headers={"x-api-key": device.api_key}) as ws:
            ws.receive_json()
            ws.send_json({"type": "order_received", "orderId": 42})
            ws.send_json({"type": "ping"})
            assert ws.receive_json()["type"] == "pong"

        result = await db.execute(select(PosSyncLog).where(PosSyncLog.tenant_id == tenant.id))
        log = result.scalar_one()
        assert log.event_type == "pos_order_received"
        assert log.status == SyncLogStatus.RECEIVED
