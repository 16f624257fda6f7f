"""
Real Notification Service

Production implementation using:
- Twilio for SMS
- SendGrid for Email
"""

import asyncio
import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.rest import Client as TwilioClient
from twilio.base.exceptions import TwilioException

from posbridge.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    PrintFailureAlert,
)
from posbridge.core.config import get_settings

logger = logging.getLogger(__name__)


class RealNotificationService(BaseNotificationService):
    """Production notification service using Twilio and SendGrid."""

    def __init__(self):
        settings = get_settings()

        # Initialize Twilio
        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(
                settings.twilio_account_sid,
                settings.twilio_auth_token
            )
            self.twilio_from_number = settings.twilio_phone_number
        else:
            self.twilio_client = None
            logger.warning("Twilio credentials not configured")

        # Initialize SendGrid
        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
            self.sendgrid_from_email = settings.sendgrid_from_email
        else:
            self.sendgrid_client = None
            logger.warning("SendGrid credentials not configured")

        logger.info("RealNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "real"

    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.twilio_client:
            return NotificationResult(
                success=False,
                error_message="Twilio not configured",
                provider="twilio"
            )

        try:
            # Twilio SDK is blocking; keep it off the event loop
            result = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.twilio_from_number,
                to=to_phone
            )

            logger.info(f"SMS sent to {to_phone}: {result.sid}")

            return NotificationResult(
                success=True,
                message_id=result.sid,
                provider="twilio"
            )

        except TwilioException as e:
            logger.error(f"Twilio error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="twilio"
            )

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return NotificationResult(
                success=False,
                error_message="SendGrid not configured",
                provider="sendgrid"
            )

        try:
            message = Mail(
                from_email=self.sendgrid_from_email,
                to_emails=to_email,
                subject=subject,
                html_content=body_html,
                plain_text_content=body_text
            )

            response = await asyncio.to_thread(self.sendgrid_client.send, message)

            logger.info(f"Email sent to {to_email}: {response.status_code}")

            return NotificationResult(
                success=response.status_code in [200, 201, 202],
                message_id=response.headers.get('X-Message-Id'),
                provider="sendgrid"
            )

        except Exception as e:
            logger.error(f"SendGrid error: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="sendgrid"
            )

    async def send_print_failure_alert(
        self,
        alert: PrintFailureAlert,
        to_email: Optional[str] = None,
        to_phone: Optional[str] = None,
    ) -> NotificationResult:
        """Send the print-failure alert via SMS and email."""
        if not to_email and not to_phone:
            logger.warning(f"Print failure alert not sent, no recipients: {alert.subject}")
            return NotificationResult(
                success=False,
                error_message="No alert recipients configured",
                provider="real"
            )

        sms_result = await self.send_sms(to_phone, alert.text) if to_phone else None

        email_result = None
        if to_email:
            email_html = f"""
            <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
                <h1 style="color: #ff4757;">Order did not print 🖨️</h1>
                <p>Order <strong>#{alert.order_number}</strong> for {alert.tenant_name}
                   failed to print on device <code>{alert.device_id}</code>.</p>
                <div style="background: #f8f9fa; padding: 15px; border-radius: 8px; margin: 20px 0;">
                    <p><strong>Reason:</strong> {alert.reason or "not reported"}</p>
                </div>
                <p>Please check the printer and reprint the ticket.</p>
            </div>
            """
            email_result = await self.send_email(
                to_email=to_email,
                subject=alert.subject,
                body_html=email_html,
                body_text=alert.text
            )

        results = [r for r in (sms_result, email_result) if r is not None]
        return NotificationResult(
            success=any(r.success for r in results),
            message_id=next((r.message_id for r in results if r.message_id), None),
            provider="real"
        )

    async def health_check(self) -> bool:
        """Healthy when at least one channel is configured."""
        return self.twilio_client is not None or self.sendgrid_client is not None
