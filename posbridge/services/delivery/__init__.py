"""
Order delivery to POS terminals: webhook push, broadcast, pull and SSE.
"""

from posbridge.services.delivery.dispatcher import (
    DeliveryDispatcher,
    DeliveryOutcome,
    PullResult,
)
from posbridge.services.delivery.payload import (
    build_new_order_event,
    build_order_payload,
    serialize_order,
    to_iso,
)
from posbridge.services.delivery.stream import OrderStream, sse_frame

__all__ = [
    "DeliveryDispatcher",
    "DeliveryOutcome",
    "OrderStream",
    "PullResult",
    "build_new_order_event",
    "build_order_payload",
    "serialize_order",
    "sse_frame",
    "to_iso",
]
