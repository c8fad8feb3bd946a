# E2E Messaging: Key Codec
#
# Text encodings for RSA keys and ciphertext at the transport boundary:
#   - Public keys:  base64(DER SubjectPublicKeyInfo)
#   - Private keys: base64(DER PKCS8, unencrypted)
#   - Ciphertext:   base64(raw RSA-OAEP output)
#
# Design:
#   - Pure functions, no side effects
#   - Key objects in memory, base64 text only at serialization boundary
#   - Imports validate that the key really is RSA

import base64
import binascii
import hashlib

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from ..core.exceptions import KeyEncodingError


def encode_bytes(data: bytes) -> str:
    """Encode raw bytes as a base64 string."""
    return base64.b64encode(data).decode("ascii")


def decode_bytes(text: str) -> bytes:
    """Decode a base64 string. Raises ValueError on invalid input."""
    if not isinstance(text, str):
        raise ValueError("Expected base64 text")
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"Invalid base64: {exc}") from exc


# ── Public Keys ──────────────────────────────────────────────────────


def public_key_der(key: rsa.RSAPublicKey) -> bytes:
    return key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def export_public_key(key: rsa.RSAPublicKey) -> str:
    """Export an RSA public key as base64 SPKI."""
    return encode_bytes(public_key_der(key))


def import_public_key(text: str) -> rsa.RSAPublicKey:
    """Import a base64 SPKI RSA public key.

    Raises:
        KeyEncodingError: If the text is not base64 or not an RSA SPKI key.
    """
    try:
        key = serialization.load_der_public_key(decode_bytes(text))
    except ValueError as exc:
        raise KeyEncodingError(f"Invalid public key encoding: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyEncodingError(
            f"Expected RSA public key, got {type(key).__name__}"
        )
    return key


# ── Private Keys ─────────────────────────────────────────────────────


def export_private_key(key: rsa.RSAPrivateKey) -> str:
    """Export an RSA private key as base64 PKCS8 (unencrypted)."""
    der = key.private_bytes(
        serialization.Encoding.DER,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    return encode_bytes(der)


def import_private_key(text: str) -> rsa.RSAPrivateKey:
    """Import a base64 PKCS8 RSA private key.

    Raises:
        KeyEncodingError: If the text is not base64 or not an RSA PKCS8 key.
    """
    try:
        key = serialization.load_der_private_key(decode_bytes(text), password=None)
    except (ValueError, TypeError) as exc:
        raise KeyEncodingError(f"Invalid private key encoding: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyEncodingError(
            f"Expected RSA private key, got {type(key).__name__}"
        )
    return key


# ── Fingerprints ─────────────────────────────────────────────────────


def fingerprint(key: rsa.RSAPublicKey) -> str:
    """SHA-256 fingerprint of the SPKI encoding.

    Returns colon-separated hex string for human-readable verification.
    Example: "AB:CD:EF:12:34:..."
    """
    digest = hashlib.sha256(public_key_der(key)).hexdigest().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))
