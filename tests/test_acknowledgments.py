"""
Tests for print acknowledgments.
"""

import json
from datetime import datetime

import pytest
from fastapi import BackgroundTasks
from sqlalchemy import select

from posbridge.core.config import get_settings
from posbridge.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from posbridge.models import PosSyncLog, PrintStatus, SyncLogStatus
from posbridge.services.acknowledgments import AcknowledgmentProcessor, parse_id
from posbridge.services.auth import get_authenticator_chain
from tests.conftest import TENANT_KEY


@pytest.fixture
def processor(db, notifier):
    return AcknowledgmentProcessor(db, get_authenticator_chain(db), notifier)


async def sync_logs(db) -> list[PosSyncLog]:
    result = await db.execute(
        select(PosSyncLog).where(PosSyncLog.event_type == "print_acknowledgment").order_by(PosSyncLog.id)
    )
    return list(result.scalars().all())


def test_parse_id():
    assert parse_id(12) == 12
    assert parse_id("12") == 12
    assert parse_id("twelve") is None
    assert parse_id(None) is None
    assert parse_id(True) is None


class TestValidation:

    async def test_missing_key_checked_first(self, processor):
        with pytest.raises(AuthenticationError):
            await processor.acknowledge(None, None, None, None)

    async def test_missing_fields(self, processor):
        with pytest.raises(ValidationError, match="Missing required fields"):
            await processor.acknowledge(TENANT_KEY, "kitchen", None, "printed")

    async def test_invalid_status(self, processor, tenant):
        with pytest.raises(ValidationError, match='Must be "printed" or "failed"'):
            await processor.acknowledge(TENANT_KEY, "kitchen", 1, "sent_to_pos")

    async def test_wrong_tenant(self, processor, tenant, other_tenant, make_order):
        order = await make_order(tenant)

        with pytest.raises(AuthenticationError):
            await processor.acknowledge(TENANT_KEY, "harbor", order.id, "printed")

    async def test_unknown_order_changes_nothing(self, db, processor, tenant, make_order):
        order = await make_order(tenant)

        with pytest.raises(NotFoundError, match="Order 9999 not found"):
            await processor.acknowledge(TENANT_KEY, "kitchen", 9999, "printed")

        await db.refresh(order)
        assert order.print_status == PrintStatus.PENDING
        assert await sync_logs(db) == []

    async def test_order_of_other_tenant_is_not_found(self, db, processor, tenant, other_tenant, make_order):
        foreign = await make_order(other_tenant)

        with pytest.raises(NotFoundError):
            await processor.acknowledge(TENANT_KEY, "kitchen", foreign.id, "printed")

        await db.refresh(foreign)
        assert foreign.print_status == PrintStatus.PENDING


class TestAcknowledge:

    async def test_printed_by_device(self, db, processor, tenant, make_order, make_device):
        order = await make_order(tenant)
        device = await make_device(tenant, device_id="POS_KITCHEN_1")
        printed_at = datetime(2025, 10, 1, 18, 30)

        response = await processor.acknowledge(
            device.api_key, "kitchen", order.id, "printed", printed_at=printed_at
        )

        assert response.message == f"Order {order.order_number} marked as printed"
        assert response.order.device_id == "POS_KITCHEN_1"

        await db.refresh(order)
        assert order.print_status == PrintStatus.PRINTED
        assert order.print_status_updated_at == printed_at
        assert order.last_pos_device_id == "POS_KITCHEN_1"
        assert order.last_print_error is None

        [log] = await sync_logs(db)
        assert log.status == SyncLogStatus.SUCCESS
        assert log.tenant_id == tenant.id
        assert json.loads(log.event_data)["order_number"] == order.order_number

    async def test_legacy_key_uses_reported_device(self, db, processor, tenant, make_order):
        order = await make_order(tenant)

        await processor.acknowledge(TENANT_KEY, "kitchen", str(order.id), "printed", device_id="TILL-2")
        await db.refresh(order)
        assert order.last_pos_device_id == "TILL-2"

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "printed")
        await db.refresh(order)
        assert order.last_pos_device_id == "unknown"

    async def test_failed_records_reason(self, db, processor, tenant, make_order):
        order = await make_order(tenant)

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "failed", reason="Paper jam")

        await db.refresh(order)
        assert order.print_status == PrintStatus.FAILED
        assert order.last_print_error == "Paper jam"
        [log] = await sync_logs(db)
        assert log.status == SyncLogStatus.FAILED

    async def test_last_write_wins(self, db, processor, tenant, make_order):
        order = await make_order(tenant)

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "printed")
        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "failed", reason="Out of paper")
        await db.refresh(order)
        assert order.print_status == PrintStatus.FAILED
        assert order.last_print_error == "Out of paper"

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "printed")
        await db.refresh(order)
        assert order.print_status == PrintStatus.PRINTED
        assert order.last_print_error is None
        assert len(await sync_logs(db)) == 3

    async def test_failure_alerts_owner(self, processor, notifier, tenant, make_order, monkeypatch):
        settings = get_settings()
        monkeypatch.setattr(settings, "alert_email", "owner@example.com")
        monkeypatch.setattr(settings, "alert_phone", "+15550199")
        order = await make_order(tenant)

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "failed", reason="Paper jam")

        assert {entry["channel"] for entry in notifier.sent} == {"email", "sms"}
        email = next(entry for entry in notifier.sent if entry["channel"] == "email")
        assert order.order_number in email["subject"]

    async def test_printed_sends_no_alert(self, processor, notifier, tenant, make_order, monkeypatch):
        monkeypatch.setattr(get_settings(), "alert_email", "owner@example.com")
        order = await make_order(tenant)

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "printed")

        assert notifier.sent == []

    async def test_alert_deferred_to_background_tasks(self, db, notifier, tenant, make_order, monkeypatch):
        monkeypatch.setattr(get_settings(), "alert_email", "owner@example.com")
        tasks = BackgroundTasks()
        processor = AcknowledgmentProcessor(db, get_authenticator_chain(db), notifier, tasks)
        order = await make_order(tenant)

        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "failed", reason="Paper jam")
        assert notifier.sent == []

        await tasks()
        assert [entry["channel"] for entry in notifier.sent] == ["email"]


class TestPrintStatus:

    async def test_view(self, processor, tenant, make_order):
        order = await make_order(tenant)
        await processor.acknowledge(TENANT_KEY, "kitchen", order.id, "failed", reason="Jam")

        view = await processor.print_status(str(order.id))

        assert view.print_status == "failed"
        assert view.last_print_error == "Jam"
        assert view.websocket_sent is False

    async def test_missing_id(self, processor):
        with pytest.raises(ValidationError, match="Missing order_id parameter"):
            await processor.print_status(None)

    async def test_unknown_id(self, processor):
        with pytest.raises(NotFoundError):
            await processor.print_status("abc")
