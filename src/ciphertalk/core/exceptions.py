"""
CipherTalk Exception Classes
"""


class CipherTalkError(Exception):
    """Base exception for ciphertalk operations"""
    pass


class KeyEncodingError(CipherTalkError):
    """Raised when text is not a valid base64 RSA key encoding"""
    pass


class KeyStorageError(CipherTalkError):
    """Raised when stored key material is present but cannot be imported"""
    pass


class PlaintextTooLarge(CipherTalkError):
    """Raised when a message exceeds the RSA-OAEP payload bound"""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Plaintext is {size} bytes, limit is {limit} bytes"
        )
        self.size = size
        self.limit = limit


class DecryptionFailed(CipherTalkError):
    """Raised when ciphertext was not produced for the supplied private key"""
    pass


class EnvelopeEncryptionFailed(CipherTalkError):
    """Raised when either encryption of a private envelope fails"""
    pass


class DirectoryError(CipherTalkError):
    """Base exception for public-key directory resolution"""
    pass


class DirectoryTimeout(DirectoryError):
    """Raised when no directory response arrives within the timeout"""
    pass


class DirectoryCancelled(DirectoryError):
    """Raised when a pending resolution is abandoned because the transport closed"""
    pass


class RecipientKeyUnavailable(DirectoryError):
    """Raised when the directory has no public key for the recipient"""

    def __init__(self, identity: str):
        super().__init__(f"No public key registered for {identity!r}")
        self.identity = identity


class MalformedFrame(CipherTalkError):
    """Raised when a transport frame cannot be parsed or validated"""
    pass


class TransportClosed(CipherTalkError):
    """Raised when sending or receiving on a closed transport"""
    pass
