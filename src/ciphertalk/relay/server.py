# CipherTalk: Development Relay Server
#
# FastAPI WebSocket endpoint in front of RelayState:
#   GET /health  - liveness + online users
#   WS  /ws      - JSON text frames, one logical channel per client
#
# Intended for local development only: no authentication, no TLS, all state
# in memory.

import json
from typing import Any, Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from .state import RelayState

log = structlog.get_logger(__name__)


class WebSocketConnection:
    """Adapts a Starlette WebSocket to the RelayConnection interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_json(self, frame: Dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(frame, ensure_ascii=False))


def create_app(state: Optional[RelayState] = None) -> FastAPI:
    """Build the relay application around ``state`` (fresh state by default)."""
    relay = state or RelayState()
    app = FastAPI(title="CipherTalk Relay", docs_url=None, redoc_url=None)
    app.state.relay = relay

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "online": relay.online_users(),
            "registered_keys": len(relay.public_keys),
        }

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await websocket.accept()
        conn = WebSocketConnection(websocket)
        try:
            while True:
                text = await websocket.receive_text()
                try:
                    data = json.loads(text)
                except ValueError:
                    log.error("relay_invalid_json", length=len(text))
                    continue
                await relay.handle(conn, data)
        except WebSocketDisconnect:
            pass
        finally:
            relay.disconnect(conn)

    return app


def start_relay_server(
    host: str = "127.0.0.1",
    port: int = 8765,
    state: Optional[RelayState] = None,
    log_level: str = "info",
):
    """
    Start the relay server.

    Args:
        host: Host to bind to (default: localhost only)
        port: Port to listen on
    """
    uvicorn.run(create_app(state), host=host, port=port, log_level=log_level.lower())
