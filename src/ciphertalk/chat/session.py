# CipherTalk: Chat Session
#
# ChatSession is the explicit session context for one local identity on one
# transport connection. It owns the key pair, the public-key directory
# client, the private conversation reconciler and the public broadcast log,
# and runs the dispatch loop that feeds them.
#
# Dispatch discipline:
#   - One asyncio task reads frames in transport order
#   - Each frame is handled to completion (including decryption) before the
#     next is read, so conversations keep arrival order
#   - Directory responses complete pending resolve() futures; sends waiting
#     on a key resume exactly when the matching response arrives
#   - When the transport closes, pending resolutions fail with
#     DirectoryCancelled
#   - Sync listeners run inline; coroutine listeners run as tracked tasks,
#     so a listener may await send_private() while dispatch keeps reading
#     the directory responses it depends on
#
# Listener kinds (sync or async callables):
#   "private"         - ConversationEntry appended from a live private-chat
#   "private_history" - list of ConversationEntry after init-private
#   "public"          - PublicMessage from a live public-chat
#   "public_history"  - list of PublicMessage after init-public
#   "closed"          - None, once the dispatch loop stops

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set

import structlog

from ..core.exceptions import MalformedFrame, TransportClosed
from ..e2e.cipher_engine import KeyPair, check_plaintext_size
from ..e2e.directory import (
    DEFAULT_TIMEOUT,
    PublicKeyDirectory,
    PublicKeyDirectoryClient,
)
from ..e2e.envelope import PrivateMessageEnvelope, PublicMessage
from ..e2e.key_codec import export_public_key, fingerprint
from ..e2e.key_store import KeyStore
from ..e2e.message_codec import build_envelope, build_public_message, now_timestamp
from ..e2e.reconciler import BroadcastLog, ConversationEntry, ConversationReconciler
from .protocol import (
    InitPrivate,
    InitPublic,
    PrivateChat,
    PublicChat,
    RegisterPublicKey,
    RegisterUsername,
    ResponsePublicKey,
    dump_frame,
    parse_frame,
)
from .transport import Transport

log = structlog.get_logger(__name__)
logger = logging.getLogger(__name__)

# Type alias for session listener callbacks
SessionListener = Callable[[Any], Any]

LISTENER_KINDS = ("private", "private_history", "public", "public_history", "closed")


class ChatSession:
    """Client-side session for one identity.

    Args:
        identity: Local identity (username), validated by an external service.
        transport: Connected frame transport.
        key_store: Local key persistence.
        directory: Optional alternate directory; defaults to a
            PublicKeyDirectoryClient over ``transport``.
        directory_timeout: Seconds to wait for a directory response.

    Usage::

        session = ChatSession("alice", transport, KeyStore("data/keys.db"))
        await session.start()
        await session.send_private("bob", "hello")
        session.conversation("bob")
    """

    def __init__(
        self,
        identity: str,
        transport: Transport,
        key_store: KeyStore,
        directory: Optional[PublicKeyDirectory] = None,
        directory_timeout: float = DEFAULT_TIMEOUT,
    ):
        if not identity:
            raise ValueError("identity must be a non-empty string")
        self.identity = identity
        self.transport = transport
        self._key_store = key_store
        self.directory = directory or PublicKeyDirectoryClient(
            requester=identity, send=transport.send, timeout=directory_timeout,
        )
        self.key_pair: Optional[KeyPair] = None
        self.reconciler: Optional[ConversationReconciler] = None
        self.broadcast = BroadcastLog()
        self.history_received = asyncio.Event()
        self._listeners: Dict[str, List[SessionListener]] = {}
        self._listener_tasks: Set[asyncio.Task] = set()
        self._dispatch_task: Optional[asyncio.Task] = None
        self._log = log.bind(identity=identity)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Load or create keys, publish the public key, start dispatching.

        Raises:
            KeyStorageError: If stored keys for this identity are corrupted.
        """
        if self._dispatch_task is not None:
            return

        self.key_pair = self._key_store.ensure_key_pair(self.identity)
        self.reconciler = ConversationReconciler(self.identity, self.key_pair.private_key)
        if isinstance(self.directory, PublicKeyDirectoryClient):
            self.directory.prime(self.identity, self.key_pair.public_key)

        await self.transport.send(dump_frame(RegisterUsername(username=self.identity)))
        await self.transport.send(dump_frame(RegisterPublicKey(
            username=self.identity,
            public_key=export_public_key(self.key_pair.public_key),
        )))
        self._log.info(
            "session_started",
            fingerprint=fingerprint(self.key_pair.public_key),
        )

        self._dispatch_task = asyncio.create_task(
            self._dispatch_loop(), name=f"ciphertalk-dispatch-{self.identity}",
        )

    async def close(self) -> None:
        """Cancel pending resolutions, stop dispatching, close the transport.

        Listener tasks still running are awaited; a listener that calls
        close() itself is not waited on.
        """
        self.directory.cancel_all()
        task = self._dispatch_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self.transport.close()

        current = asyncio.current_task()
        pending = [t for t in self._listener_tasks if t is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_closed(self) -> None:
        """Block until the dispatch loop stops (transport closed)."""
        if self._dispatch_task is not None:
            await asyncio.shield(self._dispatch_task)

    @property
    def running(self) -> bool:
        return self._dispatch_task is not None and not self._dispatch_task.done()

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        try:
            while True:
                try:
                    raw = await self.transport.receive()
                    await self.handle_frame(raw)
                except MalformedFrame as exc:
                    self._log.error("malformed_frame", error=str(exc))
        except TransportClosed:
            self._log.info("transport_closed")
        finally:
            self.directory.cancel_all()
            self._notify("closed", None)

    async def handle_frame(self, data: Dict[str, Any]) -> None:
        """Route one decoded inbound frame.

        Raises:
            MalformedFrame: If the frame is of a known type but invalid.
        """
        frame = parse_frame(data)
        if frame is None:
            logger.debug("Ignoring frame type %r", data.get("type"))
            return
        if self.reconciler is None:
            raise RuntimeError("ChatSession.start() must be called before dispatching")

        if isinstance(frame, ResponsePublicKey):
            handle_response = getattr(self.directory, "handle_response", None)
            if handle_response is not None:
                handle_response(frame.username, frame.public_key)

        elif isinstance(frame, InitPrivate):
            entries = self.reconciler.install_history(frame.envelopes())
            self.history_received.set()
            self._notify("private_history", entries)

        elif isinstance(frame, PrivateChat):
            entry = self.reconciler.append(frame.to_envelope())
            if entry is not None:
                self._notify("private", entry)

        elif isinstance(frame, InitPublic):
            self.broadcast.install_history(frame.public_messages())
            self._notify("public_history", self.broadcast.messages())

        elif isinstance(frame, PublicChat):
            message = frame.to_message()
            self.broadcast.append(message)
            self._notify("public", message)

        else:
            logger.debug("Ignoring outbound-only frame %s", type(frame).__name__)

    # ------------------------------------------------------------------
    # Send
    # ------------------------------------------------------------------

    async def send_private(self, to: str, text: str) -> PrivateMessageEnvelope:
        """Encrypt ``text`` for ``to`` and for ourselves, then send it.

        Waits for the recipient's key if it is not cached yet. Nothing is
        transmitted if any step fails.

        Raises:
            ValueError: Empty recipient or message.
            PlaintextTooLarge: Message exceeds the RSA-OAEP bound.
            RecipientKeyUnavailable: Recipient has no registered key.
            DirectoryTimeout / DirectoryCancelled: Resolution did not complete.
            EnvelopeEncryptionFailed: Either encryption failed.
        """
        if self.key_pair is None:
            raise RuntimeError("ChatSession.start() must be called before sending")
        text = text.strip()
        if not to:
            raise ValueError("Recipient must be a non-empty identity")
        if not text:
            raise ValueError("Message text is empty")

        # Reject oversized messages before any directory traffic
        check_plaintext_size(self.key_pair.public_key, text)

        recipient_key = await self.directory.require(to)
        envelope = build_envelope(
            from_identity=self.identity,
            to_identity=to,
            plaintext=text,
            recipient_public_key=recipient_key,
            sender_public_key=self.key_pair.public_key,
            timestamp=now_timestamp(),
        )
        await self.transport.send(dump_frame(PrivateChat.from_envelope(envelope)))
        self._log.debug("private_message_sent", to=to)
        return envelope

    async def send_public(self, text: str) -> PublicMessage:
        """Send a plaintext broadcast message."""
        text = text.strip()
        if not text:
            raise ValueError("Message text is empty")
        message = build_public_message(self.identity, text, timestamp=now_timestamp())
        await self.transport.send(dump_frame(PublicChat.from_message(message)))
        return message

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def conversation(self, peer: str) -> List[ConversationEntry]:
        if self.reconciler is None:
            return []
        return self.reconciler.conversation(peer)

    def public_messages(self) -> List[PublicMessage]:
        return self.broadcast.messages()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, kind: str, listener: SessionListener) -> None:
        """Subscribe to session events of ``kind`` (see LISTENER_KINDS)."""
        if kind not in LISTENER_KINDS:
            raise ValueError(f"Unknown listener kind: {kind!r}")
        self._listeners.setdefault(kind, []).append(listener)

    def unsubscribe(self, kind: str, listener: SessionListener) -> None:
        listeners = self._listeners.get(kind, [])
        if listener in listeners:
            listeners.remove(listener)

    def _notify(self, kind: str, payload: Any) -> None:
        for listener in list(self._listeners.get(kind, [])):
            try:
                result = listener(payload)
            except Exception:
                logger.exception(f"Listener error for kind={kind}")
                continue
            if asyncio.iscoroutine(result):
                task = asyncio.create_task(
                    result, name=f"ciphertalk-listener-{self.identity}-{kind}",
                )
                self._listener_tasks.add(task)
                task.add_done_callback(self._listener_done)

    def _listener_done(self, task: asyncio.Task) -> None:
        self._listener_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Listener error in {task.get_name()}", exc_info=exc)
