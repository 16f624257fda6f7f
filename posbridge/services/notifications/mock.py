"""
Mock Notification Service

Simulates SMS and Email alerts for development.
No actual messages are sent - just logged.
"""

import asyncio
import random
import uuid
import logging
from typing import Optional

from posbridge.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    PrintFailureAlert,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """Mock notification service for development."""

    def __init__(self, failure_rate: float = 0.05, latency: tuple[float, float] = (0.1, 0.3)):
        self.failure_rate = failure_rate
        self.latency = latency
        self.sent: list[dict] = []
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        low, high = self.latency
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Simulate sending SMS."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock SMS failed (simulated) to {to_phone}")
            return NotificationResult(
                success=False,
                error_message="Simulated SMS failure",
                provider="mock"
            )

        message_id = f"sms_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": "sms", "to": to_phone, "body": message})
        logger.info(f"Mock SMS sent to {to_phone}: {message[:50]}... (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Simulate sending email."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock email failed (simulated) to {to_email}")
            return NotificationResult(
                success=False,
                error_message="Simulated email failure",
                provider="mock"
            )

        message_id = f"email_mock_{uuid.uuid4().hex[:12]}"
        self.sent.append({"channel": "email", "to": to_email, "subject": subject})
        logger.info(f"Mock email sent to {to_email}: {subject} (ID: {message_id})")

        return NotificationResult(
            success=True,
            message_id=message_id,
            provider="mock"
        )

    async def send_print_failure_alert(
        self,
        alert: PrintFailureAlert,
        to_email: Optional[str] = None,
        to_phone: Optional[str] = None,
    ) -> NotificationResult:
        """Log the alert; deliver through the mock channels when recipients exist."""
        logger.warning(f"🚨 {alert.subject}")

        if not to_email and not to_phone:
            return NotificationResult(
                success=False,
                error_message="No alert recipients configured",
                provider="mock"
            )

        sms_result = await self.send_sms(to_phone, alert.text) if to_phone else None
        email_result = None
        if to_email:
            email_result = await self.send_email(
                to_email=to_email,
                subject=alert.subject,
                body_html=f"<h1>Print failed</h1><p>{alert.text}</p>",
                body_text=alert.text
            )

        results = [r for r in (sms_result, email_result) if r is not None]
        return NotificationResult(
            success=any(r.success for r in results),
            message_id=next((r.message_id for r in results if r.message_id), None),
            provider="mock"
        )

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
