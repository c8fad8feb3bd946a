# E2E Messaging: Cipher Engine
#
# RSA-OAEP encryption of short text messages:
#   - 2048-bit modulus, public exponent 65537
#   - OAEP with MGF1(SHA-256) and SHA-256, no label
#   - Plaintext is UTF-8; ciphertext is base64 text
#
# Security:
#   - Payload bound: modulus_bytes - 2 * hash_len - 2 (190 bytes for 2048-bit)
#     Oversized plaintext is rejected, never truncated
#   - Decryption failures are a normal outcome (wrong key, corrupted data)
#     and surface as DecryptionFailed for the caller to turn into a marker

import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..core.exceptions import DecryptionFailed, PlaintextTooLarge
from .key_codec import decode_bytes, encode_bytes

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────

KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537
HASH_LENGTH = hashes.SHA256.digest_size


def oaep_padding() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


# ── Key Pairs ────────────────────────────────────────────────────────


@dataclass
class KeyPair:
    """RSA-OAEP key pair for one identity."""
    private_key: rsa.RSAPrivateKey
    public_key: rsa.RSAPublicKey

    @classmethod
    def generate(cls) -> "KeyPair":
        """Generate a new random 2048-bit RSA key pair."""
        private = rsa.generate_private_key(
            public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE,
        )
        return cls(private_key=private, public_key=private.public_key())

    def __repr__(self) -> str:
        return f"KeyPair(rsa-{self.public_key.key_size})"


# ── Encrypt / Decrypt ────────────────────────────────────────────────


def max_plaintext_bytes(key) -> int:
    """Largest UTF-8 payload OAEP-SHA256 accepts for ``key``'s modulus."""
    return key.key_size // 8 - 2 * HASH_LENGTH - 2


def check_plaintext_size(key, plaintext: str) -> bytes:
    """Encode ``plaintext`` and enforce the OAEP bound. Returns UTF-8 bytes."""
    data = plaintext.encode("utf-8")
    limit = max_plaintext_bytes(key)
    if len(data) > limit:
        raise PlaintextTooLarge(len(data), limit)
    return data


def encrypt(public_key: rsa.RSAPublicKey, plaintext: str) -> str:
    """Encrypt text under ``public_key``. Returns base64 ciphertext.

    Raises:
        PlaintextTooLarge: If the UTF-8 plaintext exceeds the OAEP bound.
    """
    data = check_plaintext_size(public_key, plaintext)
    return encode_bytes(public_key.encrypt(data, oaep_padding()))


def decrypt(private_key: rsa.RSAPrivateKey, ciphertext: str) -> str:
    """Decrypt base64 ciphertext with ``private_key``.

    Raises:
        DecryptionFailed: Wrong key, corrupted ciphertext, bad base64,
            or a plaintext that is not UTF-8.
    """
    try:
        raw = decode_bytes(ciphertext)
        data = private_key.decrypt(raw, oaep_padding())
        return data.decode("utf-8")
    except (ValueError, TypeError) as exc:
        # UnicodeDecodeError is a ValueError
        logger.debug("RSA-OAEP decryption failed: %s", type(exc).__name__)
        raise DecryptionFailed("Ciphertext could not be decrypted with this key") from exc
