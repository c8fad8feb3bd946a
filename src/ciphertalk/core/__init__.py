# CipherTalk: Core Module
#
# Shared functionality across ciphertalk packages:
# - Configuration
# - Logging setup
# - Exception taxonomy

from .config import Settings
from .exceptions import (
    CipherTalkError,
    DecryptionFailed,
    DirectoryCancelled,
    DirectoryError,
    DirectoryTimeout,
    EnvelopeEncryptionFailed,
    KeyEncodingError,
    KeyStorageError,
    MalformedFrame,
    PlaintextTooLarge,
    RecipientKeyUnavailable,
    TransportClosed,
)
from .logging import configure_logging

__all__ = [
    # Configuration
    "Settings",
    "configure_logging",
    # Errors
    "CipherTalkError",
    "DecryptionFailed",
    "DirectoryCancelled",
    "DirectoryError",
    "DirectoryTimeout",
    "EnvelopeEncryptionFailed",
    "KeyEncodingError",
    "KeyStorageError",
    "MalformedFrame",
    "PlaintextTooLarge",
    "RecipientKeyUnavailable",
    "TransportClosed",
]
