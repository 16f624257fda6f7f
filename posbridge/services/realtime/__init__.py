"""
Realtime POS connections (WebSocket and SSE).
"""

from posbridge.services.realtime.manager import (
    KIND_SSE,
    KIND_WEBSOCKET,
    BroadcastResult,
    Connection,
    ConnectionManager,
)
from posbridge.services.realtime.transports import (
    BaseTransport,
    QueueTransport,
    WebSocketTransport,
)

__all__ = [
    "KIND_SSE",
    "KIND_WEBSOCKET",
    "BaseTransport",
    "BroadcastResult",
    "Connection",
    "ConnectionManager",
    "QueueTransport",
    "WebSocketTransport",
]
