"""
Tests for print-failure alert notifications.
"""

import asyncio
import time
from types import SimpleNamespace

import pytest

from posbridge.services.notifications import (
    MockNotificationService,
    PrintFailureAlert,
    RealNotificationService,
)

ALERT = PrintFailureAlert(
    tenant_name="Kitchen Bistro",
    order_number="ORD-1001",
    device_id="POS_FRONT_1",
    reason="Paper jam",
)


def test_alert_text():
    assert ALERT.subject == "Print failed for order #ORD-1001 - Kitchen Bistro"
    assert "POS_FRONT_1" in ALERT.text
    assert "Paper jam" in ALERT.text


async def test_mock_without_recipients(notifier):
    result = await notifier.send_print_failure_alert(ALERT)

    assert not result.success
    assert notifier.sent == []


async def test_mock_sms_only(notifier):
    result = await notifier.send_print_failure_alert(ALERT, to_phone="+15550199")

    assert result.success
    assert result.message_id.startswith("sms_mock_")
    assert [entry["channel"] for entry in notifier.sent] == ["sms"]


async def test_mock_simulated_failure():
    failing = MockNotificationService(failure_rate=1.0, latency=(0.0, 0.0))

    result = await failing.send_print_failure_alert(ALERT, to_email="owner@example.com")

    assert not result.success


async def test_real_service_unconfigured():
    service = RealNotificationService()

    assert await service.health_check() is False
    sms = await service.send_sms("+15550199", "hello")
    assert sms.error_message == "Twilio not configured"
    result = await service.send_print_failure_alert(ALERT, to_email="owner@example.com")
    assert not result.success


class SlowMessages:
    """Twilio ``messages`` resource that blocks like a real HTTP round trip."""

    def create(self, body, from_, to):
        time.sleep(0.5)
        return SimpleNamespace(sid="SM1")


async def test_real_sms_does_not_block_event_loop():
    service = RealNotificationService()
    service.twilio_client = SimpleNamespace(messages=SlowMessages())
    service.twilio_from_number = "+15550100"
    gaps: list[float] = []

    async def ticker():
        loop = asyncio.get_running_loop()
        last = loop.time()
        while True:
            await asyncio.sleep(0.01)
            now = loop.time()
            gaps.append(now - last)
            last = now

    task = asyncio.create_task(ticker())
    result = await service.send_sms("+15550199", "hello")
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert result.success
    assert result.message_id == "SM1"
    assert gaps and max(gaps) < 0.25
