"""
Shared fixtures: an in-memory SQLite database per test, the FastAPI app with
its dependencies overridden, a mock webhook target and a fake clock.
"""

import os

# Must be set before posbridge is imported; settings are read once
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"
os.environ["ENV_MODE"] = "development"
os.environ.setdefault("REDIS_URL", "redis://127.0.0.1:1/0")

import json
from datetime import timedelta
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from posbridge.database import Base, get_db, get_session_factory, utcnow
from posbridge.main import app, get_notifier
from posbridge.models import Order, OrderItem, OrderStatus, PosDevice, Tenant
from posbridge.services.devices import generate_api_key
from posbridge.services.notifications import MockNotificationService
from posbridge.services.realtime import BaseTransport, ConnectionManager

ADMIN_HEADERS = {"Authorization": "Bearer test-admin-token"}
TENANT_KEY = "pos_" + "a" * 64
OTHER_TENANT_KEY = "pos_" + "b" * 64


# =============================================================================
# TEST DOUBLES
# =============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingTransport(BaseTransport):
    """Collects sent messages; ``fail`` makes every send raise."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: list[dict[str, Any]] = []
        self.closed = False

    async def send(self, message: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.messages.append(message)

    async def close(self) -> None:
        self.closed = True


class WebhookTarget:
    """Stands in for a POS webhook endpoint behind ``httpx.MockTransport``."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code, json={"received": True})

    def last_json(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


# =============================================================================
# DATABASE
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database for each test."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# SEED DATA
# =============================================================================

@pytest_asyncio.fixture
async def tenant(db) -> Tenant:
    row = Tenant(name="Kitchen Bistro", slug="kitchen", pos_api_key=TENANT_KEY)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


@pytest_asyncio.fixture
async def other_tenant(db) -> Tenant:
    row = Tenant(name="Harbor Grill", slug="harbor", pos_api_key=OTHER_TENANT_KEY)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


@pytest.fixture
def make_order(db):
    """Create a confirmed order with two items; keyword arguments override columns."""
    counter = {"n": 0}

    async def _make(tenant: Tenant, **overrides) -> Order:
        counter["n"] += 1
        fields = {
            "tenant_id": tenant.id,
            "order_number": f"ORD-{tenant.slug.upper()}-{counter['n']:04d}",
            "customer_name": "Dana Reyes",
            "customer_email": "dana@example.com",
            "customer_phone": "+15550100",
            "subtotal": 24.0,
            "delivery_fee": 3.5,
            "tax": 2.0,
            "total": 29.5,
            "status": OrderStatus.CONFIRMED,
            "order_type": "delivery",
            "payment_method": "card",
            "address": "12 Market St",
            "created_at": utcnow(),
        }
        fields.update(overrides)
        order = Order(**fields)
        db.add(order)
        await db.flush()
        db.add_all([
            OrderItem(
                order_id=order.id,
                menu_item_id=7,
                name="Margherita",
                price=12.0,
                quantity=1,
                selected_addons=json.dumps([{"name": "Extra basil", "price": 0.5}]),
            ),
            OrderItem(
                order_id=order.id,
                menu_item_id=9,
                name="Tiramisu",
                price=6.0,
                quantity=2,
                special_instructions="No cocoa",
            ),
        ])
        await db.commit()
        await db.refresh(order)
        return order

    return _make


@pytest.fixture
def make_device(db):
    """Create a POS device row directly, returning it with its key."""

    async def _make(
        tenant: Tenant,
        device_id: str = "POS_FRONT_1",
        is_active: bool = True,
        last_seen_ago: Optional[timedelta] = None,
    ) -> PosDevice:
        seen = utcnow() - last_seen_ago if last_seen_ago is not None else None
        device = PosDevice(
            tenant_id=tenant.id,
            device_id=device_id,
            device_name=device_id.replace("_", " ").title(),
            api_key=generate_api_key(),
            is_active=is_active,
            last_seen_at=seen,
            last_heartbeat_at=seen,
        )
        db.add(device)
        await db.commit()
        await db.refresh(device)
        return device

    return _make


# =============================================================================
# APPLICATION
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def connections(clock):
    return ConnectionManager(stale_after=60, sweep_interval=30, clock=clock)


@pytest.fixture
def webhook():
    return WebhookTarget()


@pytest_asyncio.fixture
async def http_client(webhook):
    async with httpx.AsyncClient(transport=httpx.MockTransport(webhook.handler)) as client:
        yield client


@pytest.fixture
def notifier():
    return MockNotificationService(failure_rate=0.0, latency=(0.0, 0.0))


@pytest_asyncio.fixture
async def client(session_factory, connections, http_client, notifier):
    """HTTP client against the app; the lifespan does not run, so state is set here."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.state.connections = connections
    app.state.http_client = http_client

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
