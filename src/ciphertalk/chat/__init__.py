# CipherTalk: Chat Package
#
# Wire protocol, transport abstraction and the per-identity ChatSession.

from .protocol import (
    FRAME_TYPES,
    InitPrivate,
    InitPublic,
    PrivateChat,
    PublicChat,
    RegisterPublicKey,
    RegisterUsername,
    RequestPublicKey,
    ResponsePublicKey,
    dump_frame,
    parse_frame,
)
from .session import ChatSession
from .transport import Transport, WebSocketTransport

__all__ = [
    "ChatSession",
    "FRAME_TYPES",
    "InitPrivate",
    "InitPublic",
    "PrivateChat",
    "PublicChat",
    "RegisterPublicKey",
    "RegisterUsername",
    "RequestPublicKey",
    "ResponsePublicKey",
    "Transport",
    "WebSocketTransport",
    "dump_frame",
    "parse_frame",
]
