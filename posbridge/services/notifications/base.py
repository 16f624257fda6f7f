"""
Notification Service Abstract Base Class

Defines interface for sending SMS and Email alerts to restaurant owners.
Supports both Mock (development) and Real (production) implementations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


@dataclass
class PrintFailureAlert:
    """What the owner is told when a POS reports a failed print."""
    tenant_name: str
    order_number: str
    device_id: str
    reason: Optional[str] = None

    @property
    def subject(self) -> str:
        return f"Print failed for order #{self.order_number} - {self.tenant_name}"

    @property
    def text(self) -> str:
        return (
            f"POS alert for {self.tenant_name}: order #{self.order_number} failed to print "
            f"on device {self.device_id}.\n"
            f"Reason: {self.reason or 'not reported'}\n"
            f"Please check the printer and reprint the ticket."
        )


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def send_sms(
        self,
        to_phone: str,
        message: str,
    ) -> NotificationResult:
        """Send an SMS message."""
        pass

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""
        pass

    @abstractmethod
    async def send_print_failure_alert(
        self,
        alert: PrintFailureAlert,
        to_email: Optional[str] = None,
        to_phone: Optional[str] = None,
    ) -> NotificationResult:
        """Alert the owner via email and/or SMS that an order did not print."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass
