"""
WebSocket Server for the robot control front-end.

Handles:
- FastAPI WebSocket endpoint on any path of the HTTP port
- Tracking of open connections and broadcast to all of them
- Joystick command parsing and forwarding to the router
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Union

from fastapi import FastAPI, WebSocket
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)

Number = Union[int, float]


def _require_number(data: dict, key: str) -> Number:
    value = data[key]
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number, got {type(value).__name__}")
    try:
        finite = math.isfinite(value)
    except OverflowError:
        finite = False
    if not finite:
        raise ValueError(f"{key} must be finite")
    return value


@dataclass
class CommandMessage:
    """Parsed joystick command from a client."""
    speed: Number
    angle: Number

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> 'CommandMessage':
        """Parse from JSON text or UTF-8 bytes {"velocidade": ..., "angulo": ...}."""
        try:
            d = json.loads(data)
        except RecursionError:
            raise ValueError("command nested too deeply") from None
        if not isinstance(d, dict):
            raise ValueError("command must be a JSON object")
        return cls(
            speed=_require_number(d, 'velocidade'),
            angle=_require_number(d, 'angulo'),
        )

    def to_payload(self) -> dict:
        """Broker-side representation."""
        return {"velocidade": self.speed, "angulo": self.angle}


class SocketHub:
    """
    Set of open WebSocket connections.

    Only the hub adds and removes connections; other components reach
    them through broadcast().
    """

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}
        self._client_counter = 0

        # Statistics
        self._broadcasts = 0
        self._send_failures = 0

    def register(self, websocket: WebSocket) -> str:
        """Add an accepted connection and return its id."""
        self._client_counter += 1
        client_id = f"client_{self._client_counter}"
        self._connections[client_id] = websocket
        return client_id

    def unregister(self, client_id: str) -> None:
        """Remove a connection. No-op if already removed."""
        self._connections.pop(client_id, None)

    @staticmethod
    def is_open(websocket: WebSocket) -> bool:
        return (
            websocket.client_state == WebSocketState.CONNECTED
            and websocket.application_state == WebSocketState.CONNECTED
        )

    async def broadcast(self, payload: str) -> int:
        """
        Send a text payload to every open connection.

        Connections that are not open are skipped and left in place until
        their disconnect is seen. A failed send skips that client only.

        Returns:
            Number of clients the payload was sent to
        """
        self._broadcasts += 1
        sent = 0
        # Copy, the set may change while we await a send
        for client_id, websocket in list(self._connections.items()):
            if not self.is_open(websocket):
                continue
            try:
                await websocket.send_text(payload)
                sent += 1
            except Exception as e:
                self._send_failures += 1
                logger.warning(f"Failed to send to {client_id}: {e}")
        logger.debug(f"Broadcast to {sent} client(s): {payload}")
        return sent

    async def iter_messages(self, websocket: WebSocket) -> AsyncIterator[Union[str, bytes]]:
        """Yield text or binary messages from a connection until it disconnects."""
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                return
            if message.get("text") is not None:
                yield message["text"]
            elif message.get("bytes") is not None:
                yield message["bytes"]

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def get_stats(self) -> dict:
        return {
            "connected_clients": len(self._connections),
            "broadcasts": self._broadcasts,
            "send_failures": self._send_failures,
        }


class WebSocketServer:
    """
    WebSocket server for the control front-end.

    Features:
    - Any number of concurrent clients, no authentication
    - Command parsing with per-message error isolation
    - Command forwarding callback
    """

    def __init__(
        self,
        hub: Optional[SocketHub] = None,
        on_command: Optional[Callable[[CommandMessage], Awaitable[None]]] = None,
        stats_provider: Optional[Callable[[], dict]] = None,
    ):
        """
        Initialize WebSocket server.

        Args:
            hub: Connection set shared with the router
            on_command: Callback for parsed client commands
            stats_provider: Extra statistics reported by /health
        """
        self.hub = hub or SocketHub()
        self.on_command = on_command
        self.stats_provider = stats_provider

        # Statistics
        self._total_messages = 0
        self._invalid_messages = 0

        # FastAPI app
        self.app = FastAPI(title="Robot Control Bridge")

        # Register routes
        self._setup_routes()

    def _setup_routes(self):
        """Set up FastAPI routes."""

        @self.app.get("/health")
        async def health_check():
            """Health check endpoint."""
            health = {
                "status": "ok",
                "connected_clients": self.hub.connection_count,
                "total_messages": self._total_messages,
                "invalid_messages": self._invalid_messages,
            }
            if self.stats_provider:
                health["bridge"] = self.stats_provider()
            return health

        @self.app.websocket("/{path:path}")
        async def websocket_control(websocket: WebSocket, path: str):
            """WebSocket endpoint for joystick commands and robot feedback."""
            await self._handle_websocket(websocket)

    async def _handle_websocket(self, websocket: WebSocket) -> None:
        """Handle incoming WebSocket connection."""
        await websocket.accept()
        client_id = self.hub.register(websocket)

        logger.info(f"Client connected: {client_id} from {websocket.client}")

        try:
            await self._receive_messages(websocket, client_id)
        except Exception as e:
            logger.error(f"Error handling client {client_id}: {e}")
        finally:
            self.hub.unregister(client_id)
            logger.info(f"Client disconnected: {client_id}")

    async def _receive_messages(self, websocket: WebSocket, client_id: str) -> None:
        """Receive and process messages from a client."""
        async for data in self.hub.iter_messages(websocket):
            self._total_messages += 1

            try:
                command = CommandMessage.from_json(data)
            except (json.JSONDecodeError, KeyError, ValueError) as e:
                self._invalid_messages += 1
                logger.warning(f"Invalid message from {client_id}: {e}")
                continue

            logger.debug(f"Command from {client_id}: {command}")

            if self.on_command:
                try:
                    await self.on_command(command)
                except Exception as e:
                    logger.error(f"Error in command callback: {e}")

    def get_stats(self) -> dict:
        """Get server statistics."""
        stats = self.hub.get_stats()
        stats["total_messages"] = self._total_messages
        stats["invalid_messages"] = self._invalid_messages
        return stats
