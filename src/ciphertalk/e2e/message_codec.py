# E2E Messaging: Message Codec
#
# Builds and reads private/public envelopes.
#
# Outbound private message:
#   ciphertextForRecipient = RSA-OAEP(recipient_public_key, plaintext)
#   ciphertextForSender    = RSA-OAEP(sender_public_key, plaintext)
# Both must succeed or nothing is produced.
#
# Inbound private message:
#   local == to   → decrypt ciphertextForRecipient
#   local == from → decrypt ciphertextForSender
#   otherwise     → not our conversation (filtered upstream)
# A failed decryption yields the UNDECRYPTABLE marker, never an exception.

import logging
from datetime import datetime, timezone
from typing import Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from ..core.exceptions import (
    DecryptionFailed,
    EnvelopeEncryptionFailed,
    PlaintextTooLarge,
)
from . import cipher_engine
from .envelope import PrivateMessageEnvelope, PublicMessage, Timestamp

logger = logging.getLogger(__name__)

UNDECRYPTABLE = "[undecryptable message]"

ROLE_RECIPIENT = "recipient"
ROLE_SENDER = "sender"


def now_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Role Helpers ─────────────────────────────────────────────────────


def role_of(envelope: PrivateMessageEnvelope, identity: str) -> Optional[str]:
    """Which ciphertext field ``identity`` can read, or None if not a party.

    A self-addressed envelope is read through the recipient field.
    """
    if envelope.to_identity == identity:
        return ROLE_RECIPIENT
    if envelope.from_identity == identity:
        return ROLE_SENDER
    return None


def involves(envelope: PrivateMessageEnvelope, local: str, peer: str) -> bool:
    """True if the envelope belongs to the local/peer conversation."""
    return envelope.participants() == frozenset((local, peer))


# ── Outbound ─────────────────────────────────────────────────────────


def build_envelope(
    from_identity: str,
    to_identity: str,
    plaintext: str,
    recipient_public_key: rsa.RSAPublicKey,
    sender_public_key: rsa.RSAPublicKey,
    timestamp: Timestamp = None,
) -> PrivateMessageEnvelope:
    """Encrypt ``plaintext`` for both parties.

    Raises:
        PlaintextTooLarge: If the message exceeds either key's OAEP bound.
        EnvelopeEncryptionFailed: If either encryption fails.
    """
    # Size check against both keys before any encryption
    for key in (recipient_public_key, sender_public_key):
        cipher_engine.check_plaintext_size(key, plaintext)

    try:
        for_recipient = cipher_engine.encrypt(recipient_public_key, plaintext)
        for_sender = cipher_engine.encrypt(sender_public_key, plaintext)
    except PlaintextTooLarge:
        raise
    except Exception as exc:
        raise EnvelopeEncryptionFailed(
            f"Could not encrypt message from {from_identity!r} to {to_identity!r}"
        ) from exc

    return PrivateMessageEnvelope(
        from_identity=from_identity,
        to_identity=to_identity,
        ciphertext_for_recipient=for_recipient,
        ciphertext_for_sender=for_sender,
        timestamp=timestamp,
    )


def build_public_message(
    username: str, text: str, timestamp: Timestamp = None,
) -> PublicMessage:
    return PublicMessage(username=username, text=text, timestamp=timestamp)


# ── Inbound ──────────────────────────────────────────────────────────


def resolve_display_text(
    envelope: PrivateMessageEnvelope,
    local_identity: str,
    local_private_key: rsa.RSAPrivateKey,
) -> str:
    """Decrypt the ciphertext matching ``local_identity``'s role.

    Returns UNDECRYPTABLE when decryption fails.

    Raises:
        ValueError: If ``local_identity`` is neither sender nor recipient.
    """
    role = role_of(envelope, local_identity)
    if role is None:
        raise ValueError(
            f"Envelope {envelope.from_identity!r} -> {envelope.to_identity!r} "
            f"does not involve {local_identity!r}"
        )

    ciphertext = (
        envelope.ciphertext_for_recipient
        if role == ROLE_RECIPIENT
        else envelope.ciphertext_for_sender
    )
    try:
        return cipher_engine.decrypt(local_private_key, ciphertext)
    except DecryptionFailed:
        logger.warning(
            "Could not decrypt private message %s -> %s as %s",
            envelope.from_identity, envelope.to_identity, role,
        )
        return UNDECRYPTABLE
