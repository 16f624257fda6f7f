"""
Order payloads as POS integrations receive them.

Keys are camelCase because existing POS clients parse them that way.
"""

import json
import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from posbridge.database import utcnow
from posbridge.models import Order, OrderItem, Tenant

logger = logging.getLogger(__name__)

EVENT_ORDER_CREATED = "order_created"
EVENT_NEW_ORDER = "new_order"


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Naive UTC datetime -> ISO 8601 with a ``Z`` suffix."""
    if value is None:
        return None
    return value.isoformat() + "Z"


def decode_addons(raw: Optional[str]) -> list:
    if not raw:
        return []
    try:
        addons = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Unparseable selected_addons: {raw[:80]!r}")
        return []
    return addons if isinstance(addons, list) else []


def serialize_item(item: OrderItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "menuItemId": item.menu_item_id,
        "name": item.name,
        "price": item.price,
        "quantity": item.quantity,
        "selectedAddons": decode_addons(item.selected_addons),
        "specialInstructions": item.special_instructions,
    }


def serialize_order(order: Order, items: Optional[Iterable[OrderItem]] = None) -> dict[str, Any]:
    """Order header, plus ``items`` when given."""
    data = {
        "id": order.id,
        "orderNumber": order.order_number,
        "customerName": order.customer_name,
        "customerEmail": order.customer_email,
        "customerPhone": order.customer_phone,
        "total": order.total,
        "subtotal": order.subtotal,
        "deliveryFee": order.delivery_fee,
        "tax": order.tax,
        "status": order.status.value,
        "orderType": order.order_type,
        "paymentMethod": order.payment_method,
        "address": order.address,
        "specialInstructions": order.special_instructions,
        "createdAt": to_iso(order.created_at),
        "scheduledTime": to_iso(order.scheduled_time),
    }
    if items is not None:
        data["items"] = [serialize_item(item) for item in items]
    return data


def serialize_tenant(tenant: Tenant) -> dict[str, Any]:
    return {"id": tenant.id, "name": tenant.name, "slug": tenant.slug}


def build_order_payload(
    order: Order,
    items: Iterable[OrderItem],
    tenant: Tenant,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Full ``order_created`` payload sent to webhooks and returned as fallback.

    Structure: ``{order: {...header, items}, tenant: {id, name, slug},
    timestamp, event}``.
    """
    return {
        "order": serialize_order(order, items),
        "tenant": serialize_tenant(tenant),
        "timestamp": to_iso(now or utcnow()),
        "event": EVENT_ORDER_CREATED,
    }


def build_new_order_event(payload: dict[str, Any]) -> dict[str, Any]:
    """
    Broadcast message for live connections.

    Carries both ``type`` (WebSocket clients) and ``event`` (SSE clients).
    """
    return {
        "type": EVENT_NEW_ORDER,
        "event": EVENT_NEW_ORDER,
        "order": payload["order"],
        "tenant": payload["tenant"],
        "timestamp": payload["timestamp"],
    }
