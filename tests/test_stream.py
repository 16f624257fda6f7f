"""
Tests for the Server-Sent Events order stream.
"""

import json
from datetime import timedelta

import pytest

from posbridge.database import utcnow
from posbridge.models import OrderStatus
from posbridge.services.auth import Principal
from posbridge.services.health import classify_device
from posbridge.services.delivery import OrderStream, sse_frame


def decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):])


def disconnect_after(checks: int):
    """``is_disconnected`` that reports a live client for ``checks`` calls."""
    calls = {"n": 0}

    async def is_disconnected() -> bool:
        calls["n"] += 1
        return calls["n"] > checks

    return is_disconnected


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def principal(tenant):
    return Principal(
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        tenant_slug=tenant.slug,
        scheme="tenant",
    )


@pytest.fixture
def make_stream(session_factory, connections, principal, clock):
    def _make(session_factory=session_factory, sleep=no_sleep) -> OrderStream:
        return OrderStream(
            session_factory,
            connections,
            principal,
            poll_interval=2,
            lookback_seconds=30,
            heartbeat_interval=10,
            clock=clock,
            sleep=sleep,
        )
    return _make


async def collect(stream: OrderStream, checks: int) -> list[dict]:
    return [decode(frame) async for frame in stream.events(disconnect_after(checks))]


def test_sse_frame():
    assert sse_frame({"event": "heartbeat"}) == 'data: {"event": "heartbeat"}\n\n'


class TestOrderStream:

    async def test_connected_event_first(self, make_stream):
        events = await collect(make_stream(), checks=0)

        assert events == [{"event": "connected", "tenant": "Kitchen Bistro", "timestamp": events[0]["timestamp"]}]

    async def test_recent_order_sent_once(self, make_stream, tenant, make_order):
        order = await make_order(tenant)
        await make_order(tenant, created_at=utcnow() - timedelta(minutes=5))
        await make_order(tenant, status=OrderStatus.PENDING)

        events = await collect(make_stream(), checks=3)

        new_orders = [e for e in events if e["event"] == "new_order"]
        assert len(new_orders) == 1
        assert new_orders[0]["order"]["id"] == order.id
        assert len(new_orders[0]["order"]["items"]) == 2

    async def test_broadcast_is_forwarded_and_deduplicated(self, make_stream, connections, tenant, make_order):
        order = await make_order(tenant)
        stream = make_stream()
        frames = stream.events(disconnect_after(2))

        connected = decode(await frames.__anext__())
        assert connected["event"] == "connected"
        assert connections.connection_count("kitchen") == 1

        result = await connections.broadcast(
            "kitchen",
            {"type": "new_order", "event": "new_order", "order": {"id": order.id}},
        )
        assert result.delivered == 1

        rest = [decode(frame) async for frame in frames]

        new_orders = [e for e in rest if e["event"] == "new_order"]
        assert len(new_orders) == 1
        assert new_orders[0]["type"] == "new_order"

    async def test_heartbeat(self, make_stream, clock):
        async def ticking_sleep(seconds: float) -> None:
            clock.advance(11)

        events = await collect(make_stream(sleep=ticking_sleep), checks=2)

        assert [e["event"] for e in events] == ["connected", "heartbeat"]

    async def test_heartbeat_refreshes_device(self, db, session_factory, connections, clock, tenant, make_device):
        device = await make_device(tenant, last_seen_ago=timedelta(minutes=11))
        principal = Principal(
            tenant_id=tenant.id,
            tenant_name=tenant.name,
            tenant_slug=tenant.slug,
            scheme="device",
            device_id=device.device_id,
        )

        async def ticking_sleep(seconds: float) -> None:
            clock.advance(11)

        stream = OrderStream(
            session_factory,
            connections,
            principal,
            poll_interval=2,
            lookback_seconds=30,
            heartbeat_interval=10,
            clock=clock,
            sleep=ticking_sleep,
        )
        events = await collect(stream, checks=2)

        assert events[-1]["event"] == "heartbeat"
        await db.refresh(device)
        assert classify_device(device, utcnow()) == "online"

    async def test_full_buffer_ends_stream(self, make_stream, connections):
        stream = make_stream()
        frames = stream.events(disconnect_after(100))
        await frames.__anext__()

        for n in range(100):
            result = await connections.broadcast("kitchen", {"type": "menu_updated", "n": n})
            assert result.delivered == 1
        overflow = await connections.broadcast("kitchen", {"type": "menu_updated", "n": 100})
        assert overflow.delivered == 0

        rest = [frame async for frame in frames]
        assert rest == []
        assert connections.connection_count("kitchen") == 0

    async def test_poll_failure_emits_error(self, make_stream):
        class BrokenSession:
            async def __aenter__(self):
                raise RuntimeError("database unavailable")

            async def __aexit__(self, *exc_info):
                return False

        events = await collect(make_stream(session_factory=BrokenSession), checks=1)

        assert events[-1]["event"] == "error"
        assert events[-1]["error"] == "Streaming error occurred"

    async def test_unregistered_when_done(self, make_stream, connections):
        await collect(make_stream(), checks=2)

        assert connections.connection_count("kitchen") == 0

    async def test_swept_stream_stops(self, make_stream, connections, clock):
        stream = make_stream()
        frames = stream.events(disconnect_after(100))
        await frames.__anext__()

        clock.advance(120)
        await connections.sweep()

        rest = [frame async for frame in frames]
        assert rest == []
        assert connections.connection_count("kitchen") == 0
