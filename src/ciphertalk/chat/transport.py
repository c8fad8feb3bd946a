# CipherTalk: Message Transport
#
# A single logical, order-preserving channel of JSON-shaped frames between
# one client and the relay. Connection management, authentication and
# reconnects belong to the concrete transport, not to the session.

import logging
from typing import Any, Dict, Optional

import websockets
from websockets.exceptions import ConnectionClosed

from ..core.exceptions import TransportClosed
from .protocol import decode_json, encode_json

logger = logging.getLogger(__name__)


class Transport:
    """Abstract frame transport."""

    async def send(self, frame: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def receive(self) -> Dict[str, Any]:
        """Next inbound frame. Raises TransportClosed at end of stream."""
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    @property
    def closed(self) -> bool:
        raise NotImplementedError


class WebSocketTransport(Transport):
    """JSON text frames over a WebSocket client connection.

    Usage::

        transport = await WebSocketTransport.connect("ws://127.0.0.1:8765/ws")
        await transport.send({"type": "public-chat", "username": "alice", "text": "hi"})
        frame = await transport.receive()
    """

    def __init__(self, connection):
        self._ws = connection
        self._closed = False

    @classmethod
    async def connect(cls, url: str, open_timeout: Optional[float] = 10) -> "WebSocketTransport":
        connection = await websockets.connect(url, open_timeout=open_timeout)
        logger.info("Connected to relay at %s", url)
        return cls(connection)

    async def send(self, frame: Dict[str, Any]) -> None:
        if self._closed:
            raise TransportClosed("WebSocket transport is closed")
        try:
            await self._ws.send(encode_json(frame))
        except ConnectionClosed as exc:
            self._closed = True
            raise TransportClosed("WebSocket connection closed") from exc

    async def receive(self) -> Dict[str, Any]:
        if self._closed:
            raise TransportClosed("WebSocket transport is closed")
        try:
            text = await self._ws.recv()
        except ConnectionClosed as exc:
            self._closed = True
            raise TransportClosed("WebSocket connection closed") from exc
        return decode_json(text)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._ws.close()

    @property
    def closed(self) -> bool:
        return self._closed
