# CipherTalk - Main Package
#
# End-to-end encrypted one-to-one messaging over a relayed JSON channel,
# alongside a plaintext broadcast channel.
# Version: 0.1.0

__version__ = "0.1.0"
__author__ = "CipherTalk Team"
__description__ = "End-to-end encrypted chat client core with RSA-OAEP dual-ciphertext envelopes"

from .core import (
    CipherTalkError,
    Settings,
    configure_logging,
)

__all__ = [
    "__version__",
    "CipherTalkError",
    "Settings",
    "configure_logging",
]
