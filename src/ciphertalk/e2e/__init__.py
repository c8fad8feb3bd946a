# CipherTalk: End-to-End Encryption Core
#
# RSA-OAEP key lifecycle, public-key directory resolution, dual-ciphertext
# private envelopes and per-peer conversation reconciliation.

from .cipher_engine import KeyPair, decrypt, encrypt, max_plaintext_bytes
from .directory import PublicKeyDirectory, PublicKeyDirectoryClient, StaticDirectory
from .envelope import PrivateMessageEnvelope, PublicMessage
from .key_codec import (
    export_private_key,
    export_public_key,
    fingerprint,
    import_private_key,
    import_public_key,
)
from .key_store import KeyStore
from .message_codec import (
    UNDECRYPTABLE,
    build_envelope,
    build_public_message,
    resolve_display_text,
)
from .reconciler import BroadcastLog, ConversationEntry, ConversationReconciler

__all__ = [
    "BroadcastLog",
    "ConversationEntry",
    "ConversationReconciler",
    "KeyPair",
    "KeyStore",
    "PrivateMessageEnvelope",
    "PublicKeyDirectory",
    "PublicKeyDirectoryClient",
    "PublicMessage",
    "StaticDirectory",
    "UNDECRYPTABLE",
    "build_envelope",
    "build_public_message",
    "decrypt",
    "encrypt",
    "export_private_key",
    "export_public_key",
    "fingerprint",
    "import_private_key",
    "import_public_key",
    "max_plaintext_bytes",
    "resolve_display_text",
]
