# CipherTalk: Development Relay
#
# In-memory relay and public-key directory speaking the client protocol,
# reachable in-process (LoopbackTransport) or over WebSocket (create_app).

from .loopback import LoopbackTransport
from .server import create_app, start_relay_server
from .state import RelayState

__all__ = [
    "LoopbackTransport",
    "RelayState",
    "create_app",
    "start_relay_server",
]
