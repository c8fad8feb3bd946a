# CipherTalk: In-Process Loopback Transport
#
# Connects a ChatSession directly to a RelayState in the same event loop.
# Frames are round-tripped through JSON so both sides see exactly what a
# network transport would carry.

import asyncio
from typing import Any, Dict

from ..chat.protocol import decode_json, encode_json
from ..chat.transport import Transport
from ..core.exceptions import TransportClosed
from .state import RelayState

_EOF = object()


class LoopbackConnection:
    """Relay-side half of an in-process connection."""

    def __init__(self, inbox: asyncio.Queue):
        self._inbox = inbox

    async def send_json(self, frame: Dict[str, Any]) -> None:
        await self._inbox.put(decode_json(encode_json(frame)))


class LoopbackTransport(Transport):
    """Client-side half: ``send`` hands frames to the relay, ``receive``
    returns what the relay pushed back."""

    def __init__(self, relay: RelayState):
        self.relay = relay
        self._inbox: asyncio.Queue = asyncio.Queue()
        self.connection = LoopbackConnection(self._inbox)
        self._closed = False
        self.sent: list = []

    async def send(self, frame: Dict[str, Any]) -> None:
        if self._closed:
            raise TransportClosed("Loopback transport is closed")
        wire = decode_json(encode_json(frame))
        self.sent.append(wire)
        await self.relay.handle(self.connection, wire)

    async def receive(self) -> Dict[str, Any]:
        if self._closed and self._inbox.empty():
            raise TransportClosed("Loopback transport is closed")
        item = await self._inbox.get()
        if item is _EOF:
            raise TransportClosed("Loopback transport is closed")
        return item

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.relay.disconnect(self.connection)
        self._inbox.put_nowait(_EOF)

    def inject(self, frame: Any) -> None:
        """Queue a raw inbound frame as if the relay had sent it."""
        self._inbox.put_nowait(frame)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_inbound(self) -> int:
        return self._inbox.qsize()
