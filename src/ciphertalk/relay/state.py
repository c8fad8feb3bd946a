# CipherTalk: Development Relay State
#
# Transport-agnostic relay + public-key directory used for local
# development, demos and tests. It never sees plaintext of private messages.
#
# Behaviour per inbound frame:
#   register-username   → bind connection; reply init-public + init-private
#   register-publickey  → store the identity's base64 SPKI key
#   request-publickey   → reply response-publickey (publicKey omitted if unknown)
#   private-chat        → timestamp, store, deliver to recipient, echo to sender
#   public-chat         → timestamp, store, broadcast to every connection
#
# Security:
#   - No authentication: a connection speaks for the username it registered
#   - Frames whose sender field does not match the bound username are dropped
#   - Directory responses are trusted by clients (no signatures)

from typing import Any, Dict, List, Optional, Protocol

import structlog

from ..chat.protocol import (
    InitPrivate,
    InitPublic,
    PrivateChat,
    PublicChat,
    RegisterPublicKey,
    RegisterUsername,
    RequestPublicKey,
    ResponsePublicKey,
    dump_frame,
    parse_frame,
)
from ..core.exceptions import MalformedFrame
from ..e2e.envelope import PrivateMessageEnvelope, PublicMessage
from ..e2e.message_codec import now_timestamp

log = structlog.get_logger(__name__)


class RelayConnection(Protocol):
    """Anything the relay can push frames to."""

    async def send_json(self, frame: Dict[str, Any]) -> None:
        ...


class RelayState:
    """In-memory directory, history and routing table."""

    def __init__(self):
        self.public_keys: Dict[str, str] = {}
        self.public_history: List[PublicMessage] = []
        self.private_history: List[PrivateMessageEnvelope] = []
        self._connections: Dict[str, List[RelayConnection]] = {}
        self._bound: Dict[RelayConnection, str] = {}

    # ── Connections ──────────────────────────────────────────────────

    def username_of(self, conn: RelayConnection) -> Optional[str]:
        return self._bound.get(conn)

    def online_users(self) -> List[str]:
        return [u for u, conns in self._connections.items() if conns]

    def disconnect(self, conn: RelayConnection) -> None:
        username = self._bound.pop(conn, None)
        if username is None:
            return
        conns = self._connections.get(username, [])
        if conn in conns:
            conns.remove(conn)
        log.info("relay_disconnect", username=username)

    async def _deliver(self, conns: List[RelayConnection], frame: Dict[str, Any]) -> None:
        dead = []
        for conn in conns:
            try:
                await conn.send_json(frame)
            except Exception:
                log.exception("relay_delivery_failed", username=self.username_of(conn))
                dead.append(conn)
        for conn in dead:
            self.disconnect(conn)

    # ── Frame Handling ───────────────────────────────────────────────

    async def handle(self, conn: RelayConnection, data: Any) -> None:
        """Process one inbound frame from ``conn``. Malformed frames are dropped."""
        try:
            frame = parse_frame(data)
        except MalformedFrame as exc:
            log.error("relay_malformed_frame", error=str(exc))
            return
        if frame is None:
            log.debug("relay_unknown_frame", frame_type=data.get("type"))
            return

        if isinstance(frame, RegisterUsername):
            await self._register_username(conn, frame.username)
            return

        username = self.username_of(conn)
        if username is None:
            log.warning("relay_unbound_connection", frame_type=frame.type)
            return

        if isinstance(frame, RegisterPublicKey):
            if frame.username != username:
                log.warning("relay_spoofed_key", bound=username, claimed=frame.username)
                return
            self.public_keys[username] = frame.public_key
            log.info("relay_key_registered", username=username)

        elif isinstance(frame, RequestPublicKey):
            response = ResponsePublicKey(
                username=frame.for_user,
                public_key=self.public_keys.get(frame.for_user),
            )
            await self._deliver([conn], dump_frame(response))

        elif isinstance(frame, PrivateChat):
            if frame.from_identity != username:
                log.warning("relay_spoofed_sender", bound=username, claimed=frame.from_identity)
                return
            envelope = frame.to_envelope()
            if envelope.timestamp is None:
                envelope = envelope.model_copy(update={"timestamp": now_timestamp()})
            self.private_history.append(envelope)
            out = dump_frame(PrivateChat.from_envelope(envelope))
            targets = list(self._connections.get(envelope.to_identity, []))
            if envelope.to_identity != username:
                targets += self._connections.get(username, [])
            await self._deliver(targets, out)

        elif isinstance(frame, PublicChat):
            if frame.username != username:
                log.warning("relay_spoofed_sender", bound=username, claimed=frame.username)
                return
            message = frame.to_message()
            if message.timestamp is None:
                message = message.model_copy(update={"timestamp": now_timestamp()})
            self.public_history.append(message)
            out = dump_frame(PublicChat.from_message(message))
            targets = [c for conns in self._connections.values() for c in conns]
            await self._deliver(targets, out)

        else:
            log.debug("relay_ignored_frame", frame_type=frame.type)

    async def _register_username(self, conn: RelayConnection, username: str) -> None:
        previous = self._bound.get(conn)
        if previous is not None and previous != username:
            self.disconnect(conn)
        self._bound[conn] = username
        conns = self._connections.setdefault(username, [])
        if conn not in conns:
            conns.append(conn)
        log.info("relay_connect", username=username)

        public = [m.to_dict() for m in self.public_history]
        await self._deliver([conn], dump_frame(InitPublic(messages=public)))
        mine = [
            env.to_dict() for env in self.private_history
            if username in (env.from_identity, env.to_identity)
        ]
        await self._deliver([conn], dump_frame(InitPrivate(messages=mine)))

