# E2E Messaging: Conversation Reconciler
#
# Merges the historical replay (init-private, once per connection) with live
# private-chat envelopes into per-peer conversations, decrypting each
# envelope with the local private key.
#
# Ordering:
#   - Transport delivery order is the only ordering guarantee
#   - Each envelope is decrypted to completion before it is appended, and
#     every entry carries a monotonic sequence number
#   - Timestamps are display-only and never consulted
#
# Failure handling:
#   - Undecryptable envelopes are kept (raw ciphertext in entry.envelope)
#     with text = UNDECRYPTABLE and readable = False
#   - Envelopes that do not involve the local identity are dropped

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from .envelope import PrivateMessageEnvelope, PublicMessage
from .message_codec import UNDECRYPTABLE, resolve_display_text, role_of

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationEntry:
    """One private message as seen by the local identity."""
    sequence: int
    envelope: PrivateMessageEnvelope
    peer: str
    text: str
    readable: bool
    # sent by the local identity (self-addressed notes included)
    outgoing: bool

    @property
    def sender(self) -> str:
        return self.envelope.from_identity


class ConversationReconciler:
    """Per-peer private conversations for one local identity."""

    def __init__(self, local_identity: str, private_key: rsa.RSAPrivateKey):
        self.local_identity = local_identity
        self._private_key = private_key
        self._conversations: Dict[str, List[ConversationEntry]] = {}
        self._entries: List[ConversationEntry] = []
        self._sequence = 0

    def _peer_of(self, envelope: PrivateMessageEnvelope) -> str:
        if envelope.from_identity == self.local_identity:
            return envelope.to_identity
        return envelope.from_identity

    def _admit(self, envelope: PrivateMessageEnvelope) -> Optional[ConversationEntry]:
        if role_of(envelope, self.local_identity) is None:
            logger.debug(
                "Dropping private message %s -> %s not addressed to %s",
                envelope.from_identity, envelope.to_identity, self.local_identity,
            )
            return None

        text = resolve_display_text(envelope, self.local_identity, self._private_key)
        self._sequence += 1
        peer = self._peer_of(envelope)
        entry = ConversationEntry(
            sequence=self._sequence,
            envelope=envelope,
            peer=peer,
            text=text,
            readable=text != UNDECRYPTABLE,
            outgoing=envelope.from_identity == self.local_identity,
        )
        self._conversations.setdefault(peer, []).append(entry)
        self._entries.append(entry)
        return entry

    # ── Inputs ───────────────────────────────────────────────────────

    def install_history(
        self, envelopes: Iterable[PrivateMessageEnvelope],
    ) -> List[ConversationEntry]:
        """Replace all state with a replay batch, in delivery order."""
        self._conversations = {}
        self._entries = []
        installed = []
        for envelope in envelopes:
            entry = self._admit(envelope)
            if entry is not None:
                installed.append(entry)
        unreadable = sum(1 for e in installed if not e.readable)
        logger.info(
            "Installed %d private message(s) from history (%d undecryptable)",
            len(installed), unreadable,
        )
        return installed

    def append(self, envelope: PrivateMessageEnvelope) -> Optional[ConversationEntry]:
        """Append a live envelope. Returns None if it is not ours."""
        return self._admit(envelope)

    # ── Views ────────────────────────────────────────────────────────

    def conversation(self, peer: str) -> List[ConversationEntry]:
        """Messages exchanged with ``peer`` in arrival order."""
        return list(self._conversations.get(peer, []))

    def peers(self) -> List[str]:
        """Peers in order of first appearance."""
        return list(self._conversations)

    def entries(self) -> List[ConversationEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class BroadcastLog:
    """Public (plaintext) messages in arrival order."""

    def __init__(self):
        self._messages: List[PublicMessage] = []

    def install_history(self, messages: Iterable[PublicMessage]) -> None:
        self._messages = list(messages)

    def append(self, message: PublicMessage) -> None:
        self._messages.append(message)

    def messages(self) -> List[PublicMessage]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)
