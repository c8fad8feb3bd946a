# CipherTalk: Wire Protocol
#
# JSON frames with a "type" discriminator:
#
#   register-username   →  {username}
#   register-publickey  →  {username, publicKey}
#   request-publickey   →  {from, forUser}
#   response-publickey  ←  {username, publicKey?}
#   init-private        ←  {messages: [PrivateMessageEnvelope]}
#   private-chat        ↔  {from, to, ciphertextForRecipient, ciphertextForSender, timestamp}
#   public-chat         ↔  {username, text, timestamp}
#   init-public         ←  {messages: [PublicMessage]}
#
# Unknown frame types are ignored (parse_frame returns None). A frame of a
# known type with missing or invalid fields raises MalformedFrame. Items of
# init-private / init-public are validated one by one when read, so one bad
# replayed message is skipped without losing the rest of the history.

import json
import logging
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.exceptions import MalformedFrame
from ..e2e.envelope import PrivateMessageEnvelope, PublicMessage

logger = logging.getLogger(__name__)

# Replay items are validated one by one; a bad item never costs the batch
_ReplayItem = TypeVar("_ReplayItem", bound=BaseModel)


def _validate_items(
    model: Type[_ReplayItem], items: List[Any], frame_type: str,
) -> List[_ReplayItem]:
    valid = []
    for index, item in enumerate(items):
        try:
            valid.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid %s item %d (%d validation error(s))",
                frame_type, index, exc.error_count(),
            )
    return valid


# Frame types whose payload may arrive wrapped as {"type": ..., "message": {...}}
_WRAPPED_TYPES = {"private-chat", "public-chat"}


class RegisterUsername(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["register-username"] = "register-username"
    username: str = Field(..., min_length=1)


class RegisterPublicKey(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["register-publickey"] = "register-publickey"
    username: str = Field(..., min_length=1)
    public_key: str = Field(..., alias="publicKey", min_length=1)


class RequestPublicKey(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["request-publickey"] = "request-publickey"
    from_identity: str = Field(..., alias="from", min_length=1)
    for_user: str = Field(..., alias="forUser", min_length=1)


class ResponsePublicKey(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["response-publickey"] = "response-publickey"
    username: str = Field(..., min_length=1)
    public_key: Optional[str] = Field(None, alias="publicKey")


class PrivateChat(PrivateMessageEnvelope):
    type: Literal["private-chat"] = "private-chat"

    @classmethod
    def from_envelope(cls, envelope: PrivateMessageEnvelope) -> "PrivateChat":
        return cls.model_validate(envelope.model_dump(by_alias=True))

    def to_envelope(self) -> PrivateMessageEnvelope:
        return PrivateMessageEnvelope.model_validate(
            self.model_dump(by_alias=True, exclude={"type"})
        )


class PublicChat(PublicMessage):
    type: Literal["public-chat"] = "public-chat"

    @classmethod
    def from_message(cls, message: PublicMessage) -> "PublicChat":
        return cls.model_validate(message.model_dump(by_alias=True))

    def to_message(self) -> PublicMessage:
        return PublicMessage.model_validate(
            self.model_dump(by_alias=True, exclude={"type"})
        )


class InitPrivate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["init-private"] = "init-private"
    messages: List[Any] = Field(default_factory=list)

    def envelopes(self) -> List[PrivateMessageEnvelope]:
        """Valid envelopes of the replay, in order; invalid items are skipped."""
        return _validate_items(PrivateMessageEnvelope, self.messages, self.type)


class InitPublic(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: Literal["init-public"] = "init-public"
    messages: List[Any] = Field(default_factory=list)

    def public_messages(self) -> List[PublicMessage]:
        return _validate_items(PublicMessage, self.messages, self.type)


Frame = Union[
    RegisterUsername,
    RegisterPublicKey,
    RequestPublicKey,
    ResponsePublicKey,
    PrivateChat,
    PublicChat,
    InitPrivate,
    InitPublic,
]

FRAME_TYPES = {
    "register-username": RegisterUsername,
    "register-publickey": RegisterPublicKey,
    "request-publickey": RequestPublicKey,
    "response-publickey": ResponsePublicKey,
    "private-chat": PrivateChat,
    "public-chat": PublicChat,
    "init-private": InitPrivate,
    "init-public": InitPublic,
}


def parse_frame(data: Any) -> Optional[Frame]:
    """Validate a decoded JSON frame.

    Returns None for frame types this client does not handle.

    Raises:
        MalformedFrame: Not an object, missing ``type``, or invalid fields.
    """
    if not isinstance(data, dict):
        raise MalformedFrame(f"Frame must be a JSON object, got {type(data).__name__}")
    frame_type = data.get("type")
    if not isinstance(frame_type, str):
        raise MalformedFrame("Frame has no string 'type' field")

    model = FRAME_TYPES.get(frame_type)
    if model is None:
        return None

    if frame_type in _WRAPPED_TYPES and isinstance(data.get("message"), dict):
        data = {**data["message"], "type": frame_type}

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedFrame(
            f"Invalid {frame_type} frame: {exc.error_count()} validation error(s)"
        ) from exc


def dump_frame(frame: BaseModel) -> Dict[str, Any]:
    """Serialize a frame to its wire dict (aliases, no null fields)."""
    return frame.model_dump(by_alias=True, exclude_none=True)


def encode_json(frame: Union[BaseModel, Dict[str, Any]]) -> str:
    if isinstance(frame, BaseModel):
        frame = dump_frame(frame)
    return json.dumps(frame, ensure_ascii=False)


def decode_json(text: Union[str, bytes]) -> Dict[str, Any]:
    """Decode one JSON text frame.

    Raises:
        MalformedFrame: Invalid JSON or not a JSON object.
    """
    try:
        data = json.loads(text)
    except (ValueError, TypeError) as exc:
        raise MalformedFrame(f"Invalid JSON frame: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedFrame("Frame must be a JSON object")
    return data
