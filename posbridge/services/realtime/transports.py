"""
Live transport handles.

A transport is the only thing the Connection Manager knows about a client:
something that can ``send`` a JSON-able dict and be ``close``d.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class BaseTransport(ABC):

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Deliver one message; raise on transport failure."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class WebSocketTransport(BaseTransport):
    """Wraps an accepted FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, message: dict[str, Any]) -> None:
        await self.websocket.send_json(message)

    async def close(self) -> None:
        if self.websocket.client_state == WebSocketState.CONNECTED:
            await self.websocket.close()


class QueueTransport(BaseTransport):
    """
    Buffer drained by an SSE response generator.

    ``send`` fails once the stream is closed, so a broadcast to a finished
    stream counts as a failed delivery. A full buffer closes the transport,
    which ends the stream that drains it.
    """

    def __init__(self, maxsize: int = 100):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise ConnectionError("stream closed")
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.closed = True
            logger.warning("SSE buffer full, closing stream")
            raise ConnectionError("stream buffer full")

    async def close(self) -> None:
        self.closed = True

    def get_nowait(self) -> Optional[dict[str, Any]]:
        """Next queued message, or None when the queue is empty."""
        try:
            return self.queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
