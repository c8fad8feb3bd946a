# E2E Messaging: Public Key Directory Client
#
# Resolves identities to RSA public keys over the chat transport.
#
# Protocol:
#   → {"type": "request-publickey", "from": <requester>, "forUser": <target>}
#   ← {"type": "response-publickey", "username": <target>, "publicKey": <b64>|absent}
#
# Responses carry no request ID, only the target identity, so:
#   - At most one request per identity is outstanding; concurrent resolve()
#     calls for the same identity share one future
#   - Different identities resolve concurrently
#   - Each outstanding request has a timer; expiry fails the shared future
#     with DirectoryTimeout and a later resolve() sends a fresh request
#   - cancel_all() (transport closed) fails pending futures with
#     DirectoryCancelled
#
# Caching:
#   - Positive results are cached for the session, never expired
#   - "Unknown" (no key) is not cached, so a later registration is visible

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional, Tuple

from cryptography.hazmat.primitives.asymmetric import rsa

from ..core.exceptions import (
    DirectoryCancelled,
    DirectoryError,
    DirectoryTimeout,
    KeyEncodingError,
    RecipientKeyUnavailable,
)
from .key_codec import import_public_key

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# Sends one protocol frame (a JSON-shaped dict) on the transport
FrameSender = Callable[[Dict[str, object]], Awaitable[None]]


class PublicKeyDirectory:
    """Capability interface: identity → public key (or None if unknown)."""

    async def resolve(self, identity: str) -> Optional[rsa.RSAPublicKey]:
        raise NotImplementedError

    async def require(self, identity: str) -> rsa.RSAPublicKey:
        """Resolve ``identity`` or raise RecipientKeyUnavailable."""
        key = await self.resolve(identity)
        if key is None:
            raise RecipientKeyUnavailable(identity)
        return key

    def cancel_all(self) -> None:
        """Abandon outstanding resolutions (no-op when nothing is pending)."""


class StaticDirectory(PublicKeyDirectory):
    """Directory backed by a fixed mapping (tests, pinned keys)."""

    def __init__(self, keys: Optional[Mapping[str, rsa.RSAPublicKey]] = None):
        self._keys: Dict[str, rsa.RSAPublicKey] = dict(keys or {})

    def add(self, identity: str, key: rsa.RSAPublicKey) -> None:
        self._keys[identity] = key

    async def resolve(self, identity: str) -> Optional[rsa.RSAPublicKey]:
        return self._keys.get(identity)


class PublicKeyDirectoryClient(PublicKeyDirectory):
    """Cache + request/response resolution over the transport.

    Args:
        requester: Local identity placed in the request ``from`` field.
        send: Coroutine function that transmits one frame.
        timeout: Seconds to wait for a response before DirectoryTimeout.
    """

    def __init__(
        self,
        requester: str,
        send: FrameSender,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.requester = requester
        self.timeout = timeout
        self._send = send
        self._cache: Dict[str, rsa.RSAPublicKey] = {}
        self._pending: Dict[str, Tuple[asyncio.Future, asyncio.TimerHandle]] = {}
        self.requests_sent = 0

    # ── Cache ────────────────────────────────────────────────────────

    def cached(self, identity: str) -> Optional[rsa.RSAPublicKey]:
        return self._cache.get(identity)

    def prime(self, identity: str, key: rsa.RSAPublicKey) -> None:
        """Seed the cache, e.g. with the local identity's own key."""
        self._cache[identity] = key

    def is_pending(self, identity: str) -> bool:
        return identity in self._pending

    # ── Resolution ───────────────────────────────────────────────────

    async def resolve(self, identity: str) -> Optional[rsa.RSAPublicKey]:
        """Return the cached key or query the directory.

        Returns None if the directory has no key for ``identity``.

        Raises:
            DirectoryTimeout: No response within ``timeout`` seconds.
            DirectoryCancelled: Transport closed while waiting.
            DirectoryError: The response carried an invalid key encoding.
        """
        key = self._cache.get(identity)
        if key is not None:
            return key

        entry = self._pending.get(identity)
        if entry is None:
            loop = asyncio.get_running_loop()
            future = loop.create_future()
            timer = loop.call_later(self.timeout, self._expire, identity, future)
            self._pending[identity] = (future, timer)
            try:
                await self._send({
                    "type": "request-publickey",
                    "from": self.requester,
                    "forUser": identity,
                })
            except Exception as exc:
                self._fail(identity, future, DirectoryError(
                    f"Could not send public key request for {identity!r}: {exc}"
                ))
                raise DirectoryError(
                    f"Could not send public key request for {identity!r}"
                ) from exc
            self.requests_sent += 1
            logger.debug("Requested public key for %s", identity)
        else:
            future = entry[0]

        # shield: one caller being cancelled must not cancel the shared future
        return await asyncio.shield(future)

    def handle_response(self, username: str, public_key: Optional[str]) -> None:
        """Apply a ``response-publickey`` frame from the transport."""
        entry = self._pending.pop(username, None)
        future = None
        if entry is not None:
            future, timer = entry
            timer.cancel()

        if not public_key:
            logger.info("Directory has no public key for %s", username)
            if future is not None and not future.done():
                future.set_result(None)
            return

        try:
            key = import_public_key(public_key)
        except KeyEncodingError as exc:
            logger.error("Directory returned an invalid key for %s: %s", username, exc)
            if future is not None and not future.done():
                future.set_exception(DirectoryError(
                    f"Directory returned an invalid public key for {username!r}"
                ))
                # Callers may already be gone; mark the exception retrieved
                future.exception()
            return

        self._cache[username] = key
        logger.debug("Cached public key for %s", username)
        if future is not None and not future.done():
            future.set_result(key)

    def cancel_all(self) -> None:
        """Fail every outstanding resolution with DirectoryCancelled."""
        pending = list(self._pending.items())
        for identity, (future, _timer) in pending:
            self._fail(identity, future, DirectoryCancelled(
                f"Public key resolution for {identity!r} cancelled: transport closed"
            ))
        if pending:
            logger.info("Cancelled %d pending public key resolution(s)", len(pending))

    # ── Internals ────────────────────────────────────────────────────

    def _expire(self, identity: str, future: asyncio.Future) -> None:
        logger.warning(
            "No public key response for %s within %.1fs", identity, self.timeout,
        )
        self._fail(identity, future, DirectoryTimeout(
            f"No directory response for {identity!r} within {self.timeout}s"
        ))

    def _fail(self, identity: str, future: asyncio.Future, exc: Exception) -> None:
        entry = self._pending.get(identity)
        if entry is not None and entry[0] is future:
            del self._pending[identity]
            entry[1].cancel()
        if not future.done():
            future.set_exception(exc)
            future.exception()
