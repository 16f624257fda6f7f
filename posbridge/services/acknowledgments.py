"""
Print Acknowledgment Processor

POS terminals report the outcome of each print attempt here. The report
moves the order's print tracking to ``printed`` or ``failed`` and appends an
entry to the sync log that the health dashboard reads.

Repeated acknowledgments overwrite each other (last write wins); there is no
sequencing guard against a late ``printed`` replacing a newer ``failed``.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional, Union

from fastapi import BackgroundTasks
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from posbridge.core.config import get_settings
from posbridge.core.exceptions import AuthenticationError, NotFoundError, ValidationError
from posbridge.database import utcnow
from posbridge.models import Order, PosSyncLog, PrintStatus, SyncLogStatus
from posbridge.schemas import AckOrderSummary, AckResponse, PrintStatusView
from posbridge.services.auth import AuthenticatorChain, Principal
from posbridge.services.notifications import BaseNotificationService, PrintFailureAlert

logger = logging.getLogger(__name__)

EVENT_PRINT_ACKNOWLEDGMENT = "print_acknowledgment"
ACK_STATUSES = (PrintStatus.PRINTED.value, PrintStatus.FAILED.value)
UNKNOWN_DEVICE = "unknown"


def parse_id(order_id: Union[int, str, None]) -> Optional[int]:
    """Ids arrive as JSON numbers or numeric strings; anything else matches nothing."""
    if isinstance(order_id, bool):
        return None
    try:
        return int(order_id)
    except (TypeError, ValueError):
        return None


class AcknowledgmentProcessor:
    """
    Args:
        db: Request-scoped session
        authenticators: Ordered credential schemes (device key, then tenant key)
        notifier: Receives print-failure alerts; None disables alerts
        background_tasks: When given, alerts are sent after the response
            instead of before it
    """

    def __init__(
        self,
        db: AsyncSession,
        authenticators: AuthenticatorChain,
        notifier: Optional[BaseNotificationService] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ):
        self.db = db
        self.authenticators = authenticators
        self.notifier = notifier
        self.background_tasks = background_tasks

    async def acknowledge(
        self,
        api_key: Optional[str],
        tenant: Optional[str],
        order_id: Union[int, str, None],
        status: Optional[str],
        printed_at: Optional[datetime] = None,
        device_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AckResponse:
        """
        Record one print outcome.

        Raises:
            AuthenticationError: missing key, or no scheme accepts it for ``tenant``
            ValidationError: missing field or status other than printed/failed
            NotFoundError: order does not exist for the tenant
        """
        if not api_key:
            raise AuthenticationError("Missing or invalid authorization header")

        if not tenant or order_id in (None, "") or not status:
            raise ValidationError("Missing required fields: tenant, order_id, status")

        if status not in ACK_STATUSES:
            raise ValidationError('Invalid status. Must be "printed" or "failed"')

        logger.info(f"📥 ACK received: order {order_id}, status {status}, device {device_id or UNKNOWN_DEVICE}")

        principal = await self.authenticators.authenticate(api_key, tenant)

        order = await self._find_order(order_id, principal)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")

        status_value = PrintStatus(status)
        acted_at = printed_at or utcnow()
        acting_device = principal.device_id or device_id or UNKNOWN_DEVICE
        error_value = reason if status_value == PrintStatus.FAILED and reason else None

        order.print_status = status_value
        order.print_status_updated_at = acted_at
        order.last_pos_device_id = acting_device
        order.last_print_error = error_value
        order.updated_at = utcnow()
        await self.db.commit()
        order_pk, order_number = order.id, order.order_number

        if status_value == PrintStatus.PRINTED:
            logger.info(f"✅ Order {order_number} printed successfully by {acting_device}")
        else:
            logger.error(f"❌ Order {order_number} print failed by {acting_device}: {reason or 'Unknown error'}")

        await self._write_sync_log(principal, {
            "order_id": order_pk,
            "order_number": order_number,
            "print_status": status,
            "device_id": acting_device,
            "reason": error_value,
            "printed_at": acted_at.isoformat(),
        }, success=status_value == PrintStatus.PRINTED)

        if status_value == PrintStatus.FAILED:
            await self._alert(principal, order_number, acting_device, reason)

        return AckResponse(
            success=True,
            message=f"Order {order_number} marked as {status}",
            order=AckOrderSummary(
                order_number=order_number,
                print_status=status,
                updated_at=acted_at,
                device_id=acting_device,
            ),
        )

    async def _find_order(self, order_id: Union[int, str], principal: Principal) -> Optional[Order]:
        parsed = parse_id(order_id)
        if parsed is None:
            return None
        result = await self.db.execute(
            select(Order).where(Order.id == parsed, Order.tenant_id == principal.tenant_id)
        )
        return result.scalar_one_or_none()

    async def _write_sync_log(self, principal: Principal, data: dict[str, Any], success: bool) -> None:
        """Append the audit entry; a failure here never fails the acknowledgment."""
        try:
            self.db.add(PosSyncLog(
                tenant_id=principal.tenant_id,
                event_type=EVENT_PRINT_ACKNOWLEDGMENT,
                event_data=json.dumps(data),
                status=SyncLogStatus.SUCCESS if success else SyncLogStatus.FAILED,
                created_at=utcnow(),
            ))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"⚠️ Failed to write pos_sync_logs entry: {e}")

    async def _alert(
        self,
        principal: Principal,
        order_number: str,
        device_id: str,
        reason: Optional[str],
    ) -> None:
        logger.error(f"🚨 ALERT: Print failed for order {order_number} on device {device_id}")
        if self.notifier is None:
            return

        alert = PrintFailureAlert(
            tenant_name=principal.tenant_name,
            order_number=order_number,
            device_id=device_id,
            reason=reason,
        )
        if self.background_tasks is not None:
            self.background_tasks.add_task(self.send_alert, alert)
        else:
            await self.send_alert(alert)

    async def send_alert(self, alert: PrintFailureAlert) -> None:
        """Deliver one alert to the configured operator; failures are only logged."""
        settings = get_settings()
        try:
            result = await self.notifier.send_print_failure_alert(
                alert,
                to_email=settings.alert_email,
                to_phone=settings.alert_phone,
            )
        except Exception as e:
            logger.error(f"Print failure alert raised: {e}")
            return

        if not result.success:
            logger.warning(f"Print failure alert not delivered: {result.error_message}")

    async def print_status(self, order_id: Union[int, str, None]) -> PrintStatusView:
        """
        Debug read of an order's print tracking.

        Raises:
            ValidationError: no order id given
            NotFoundError: unknown order
        """
        if order_id in (None, ""):
            raise ValidationError("Missing order_id parameter")

        parsed = parse_id(order_id)
        order = None
        if parsed is not None:
            result = await self.db.execute(select(Order).where(Order.id == parsed))
            order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found")

        return PrintStatusView(
            id=order.id,
            order_number=order.order_number,
            print_status=order.print_status.value,
            print_status_updated_at=order.print_status_updated_at,
            last_pos_device_id=order.last_pos_device_id,
            last_print_error=order.last_print_error,
            websocket_sent=order.websocket_sent,
            websocket_sent_at=order.websocket_sent_at,
        )
