# E2E Messaging: Envelope Models
#
# Immutable message units exchanged over the transport:
#   - PrivateMessageEnvelope: one plaintext encrypted twice, once under the
#     recipient's public key and once under the sender's own public key
#   - PublicMessage: plaintext broadcast message
#
# Field names use Python style; wire aliases match the JSON protocol
# ("from", "to", "ciphertextForRecipient", "ciphertextForSender").
# Timestamps are display-only and never used for ordering.

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

Timestamp = Optional[Union[int, float, str]]


class PrivateMessageEnvelope(BaseModel):
    """A dual-ciphertext private message."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_identity: str = Field(..., alias="from", min_length=1)
    to_identity: str = Field(..., alias="to", min_length=1)
    ciphertext_for_recipient: str = Field(..., alias="ciphertextForRecipient")
    ciphertext_for_sender: str = Field(..., alias="ciphertextForSender")
    timestamp: Timestamp = None

    def participants(self) -> frozenset:
        return frozenset((self.from_identity, self.to_identity))

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PublicMessage(BaseModel):
    """A plaintext broadcast message."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    username: str = Field(..., min_length=1)
    text: str
    timestamp: Timestamp = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
