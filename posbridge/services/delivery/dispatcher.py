"""
Delivery Dispatcher

Makes a newly placed order reachable by the tenant's POS:

- webhook push: one POST to the tenant's (or the caller's) webhook URL,
  bounded by a timeout. Failure returns the prepared payload so the caller
  can retry or queue it; nothing is retried here.
- no webhook: the order is broadcast to the tenant's live WebSocket/SSE
  connections and stays visible to pull-orders polling.

Delivery outcome is tracked separately from print outcome: ``sent_to_pos``
means a transport accepted the order, not that a ticket was printed.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, Optional

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from posbridge.core.config import get_settings
from posbridge.core.exceptions import NotFoundError, TransportError, ValidationError
from posbridge.database import utcnow
from posbridge.models import Order, OrderStatus, PrintStatus, Tenant
from posbridge.services.delivery.payload import (
    EVENT_ORDER_CREATED,
    build_new_order_event,
    build_order_payload,
    serialize_order,
    serialize_tenant,
    to_iso,
)
from posbridge.services.realtime import BroadcastResult, ConnectionManager

logger = logging.getLogger(__name__)


@dataclass
class DeliveryOutcome:
    """
    Result of one dispatch attempt.

    ``payload`` is always the fully prepared order payload, on failure too.
    """
    success: bool
    order_id: int
    order_number: str
    payload: dict[str, Any]
    webhook_url: Optional[str] = None
    webhook_status: Optional[str] = None
    error: Optional[TransportError] = None
    broadcast: Optional[BroadcastResult] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def pushed(self) -> bool:
        return self.webhook_url is not None

    def to_response(self) -> dict[str, Any]:
        """JSON body returned by push-order."""
        if self.pushed and self.success:
            return {
                "success": True,
                "message": "Order pushed to POS successfully",
                "data": {
                    "orderId": self.order_id,
                    "orderNumber": self.order_number,
                    "webhookUrl": self.webhook_url,
                    "webhookStatus": self.webhook_status,
                    "timestamp": to_iso(self.timestamp),
                },
            }

        if self.pushed:
            return {
                "success": False,
                "error": self.error.message if self.error else "Webhook delivery failed",
                "details": (self.error.details.get("reason") if self.error else None),
                "orderData": self.payload,
            }

        response = {
            "success": True,
            "message": "Order data prepared (no webhook configured)",
            "data": self.payload,
        }
        if self.broadcast is not None:
            response["broadcast"] = {
                "delivered": self.broadcast.delivered,
                "failed": len(self.broadcast.failed),
            }
        return response


@dataclass
class PullResult:
    """Orders returned to a polling POS, with conditional-request metadata."""
    tenant: Tenant
    orders: list[dict[str, Any]]
    last_modified: datetime
    etag: str
    filters: dict[str, Any]

    @property
    def last_modified_http(self) -> str:
        return format_datetime(self.last_modified.replace(tzinfo=timezone.utc), usegmt=True)

    def not_modified(
        self,
        if_none_match: Optional[str] = None,
        if_modified_since: Optional[str] = None,
    ) -> bool:
        """True when the client's cached copy is still current."""
        if if_none_match and if_none_match == self.etag:
            return True

        if if_modified_since:
            try:
                client_time = parsedate_to_datetime(if_modified_since)
            except (TypeError, ValueError):
                return False
            if client_time.tzinfo is not None:
                client_time = client_time.astimezone(timezone.utc).replace(tzinfo=None)
            # HTTP dates carry whole seconds only
            return self.last_modified.replace(microsecond=0) <= client_time
        return False

    def to_response(self) -> dict[str, Any]:
        return {
            "success": True,
            "tenant": serialize_tenant(self.tenant),
            "orders": self.orders,
            "count": len(self.orders),
            "filters": self.filters,
            "timestamp": to_iso(utcnow()),
            "lastModified": to_iso(self.last_modified),
        }


class DeliveryDispatcher:
    """
    Args:
        db: Request-scoped session
        connections: The application's connection manager
        http_client: Shared ``httpx.AsyncClient`` for webhook calls
        timeout: Webhook timeout in seconds (defaults to settings)
    """

    def __init__(
        self,
        db: AsyncSession,
        connections: ConnectionManager,
        http_client: httpx.AsyncClient,
        timeout: Optional[float] = None,
    ):
        self.db = db
        self.connections = connections
        self.http_client = http_client
        self.timeout = timeout if timeout is not None else get_settings().webhook_timeout_seconds

    # =========================================================================
    # PUSH
    # =========================================================================

    async def dispatch(
        self,
        tenant_id: int,
        order_id: int,
        webhook_url: Optional[str] = None,
    ) -> DeliveryOutcome:
        """
        Deliver one order through the tenant's configured transport.

        Raises:
            NotFoundError: unknown tenant, or the order is not the tenant's
            ValidationError: tenant has no POS API key
        """
        result = await self.db.execute(select(Tenant).where(Tenant.id == tenant_id))
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found", {"tenantId": tenant_id})

        if not tenant.pos_api_key:
            logger.warning(f"POS integration not configured for tenant {tenant_id}")
            raise ValidationError("POS integration not configured")

        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(Order.id == order_id, Order.tenant_id == tenant.id)
        )
        order = result.scalar_one_or_none()
        if order is None:
            raise NotFoundError("Order not found", {"orderId": order_id})

        payload = build_order_payload(order, order.items, tenant)
        target = webhook_url or tenant.pos_webhook_url

        if target:
            return await self._push_webhook(order, tenant, payload, target)
        return await self._broadcast(order, tenant, payload)

    async def _push_webhook(
        self,
        order: Order,
        tenant: Tenant,
        payload: dict[str, Any],
        url: str,
    ) -> DeliveryOutcome:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {tenant.pos_api_key}",
            "X-Tenant-ID": str(tenant.id),
            "X-Event-Type": EVENT_ORDER_CREATED,
        }

        outcome = DeliveryOutcome(
            success=False,
            order_id=order.id,
            order_number=order.order_number,
            payload=payload,
            webhook_url=url,
        )

        logger.info(f"Sending order #{order.order_number} to POS webhook {url}")
        try:
            response = await self.http_client.post(
                url,
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            logger.error(f"Webhook timed out after {self.timeout:.0f}s: {url}")
            outcome.error = TransportError(
                "Webhook delivery failed",
                {"reason": f"Timed out after {self.timeout:.0f} seconds"},
            )
            return outcome
        except httpx.HTTPError as e:
            logger.error(f"Webhook error for {url}: {e}")
            outcome.error = TransportError(
                "Webhook delivery failed",
                {"reason": str(e) or e.__class__.__name__},
            )
            return outcome

        if not response.is_success:
            logger.error(f"Webhook failed: {response.status_code} {response.reason_phrase}")
            outcome.error = TransportError(
                "Failed to send webhook to POS",
                {"reason": f"HTTP {response.status_code}: {response.reason_phrase}"},
                status_code_received=response.status_code,
            )
            return outcome

        self._mark_sent(order)
        await self.db.commit()

        logger.info(f"Webhook delivered order #{order.order_number} to POS")
        outcome.success = True
        outcome.webhook_status = "sent"
        return outcome

    async def _broadcast(
        self,
        order: Order,
        tenant: Tenant,
        payload: dict[str, Any],
    ) -> DeliveryOutcome:
        broadcast = await self.connections.broadcast(tenant.slug, build_new_order_event(payload))

        now = utcnow()
        order.websocket_sent = True
        order.websocket_sent_at = now
        if broadcast.any_delivered:
            self._mark_sent(order)
        await self.db.commit()

        logger.info(
            f"No webhook for tenant {tenant.slug}; order #{order.order_number} "
            f"broadcast to {broadcast.delivered} live connection(s)"
        )
        return DeliveryOutcome(
            success=True,
            order_id=order.id,
            order_number=order.order_number,
            payload=payload,
            broadcast=broadcast,
        )

    @staticmethod
    def _mark_sent(order: Order) -> None:
        if order.print_status == PrintStatus.PENDING:
            now = utcnow()
            order.print_status = PrintStatus.SENT_TO_POS
            order.print_status_updated_at = now
            order.updated_at = now

    # =========================================================================
    # PULL
    # =========================================================================

    async def pull_orders(
        self,
        tenant: Tenant,
        status: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> PullResult:
        """
        Orders for a polling POS, oldest first, with items.

        Raises:
            ValidationError: unknown status value or non-positive limit
        """
        status = status or OrderStatus.CONFIRMED.value
        try:
            order_status = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid status: {status}")

        if limit is None:
            limit = get_settings().pull_default_limit
        if limit < 1:
            raise ValidationError("limit must be a positive integer")

        window_start = since or (utcnow() - timedelta(hours=24))

        result = await self.db.execute(
            select(Order)
            .options(selectinload(Order.items))
            .where(
                Order.tenant_id == tenant.id,
                Order.status == order_status,
                Order.created_at >= window_start,
            )
            .order_by(Order.created_at.asc(), Order.id.asc())
            .limit(limit)
        )
        orders = list(result.scalars().all())
        serialized = [serialize_order(order, order.items) for order in orders]

        last_modified = max((order.created_at for order in orders), default=utcnow())
        digest = hashlib.sha256(
            json.dumps(serialized, sort_keys=True, default=str).encode()
        ).hexdigest()

        logger.info(f"Pull orders for {tenant.slug}: {len(serialized)} order(s)")
        return PullResult(
            tenant=tenant,
            orders=serialized,
            last_modified=last_modified,
            etag=f'"{digest[:32]}"',
            filters={"status": status, "since": to_iso(since), "limit": limit},
        )
