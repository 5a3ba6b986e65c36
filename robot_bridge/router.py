"""
Bridge Router between the MQTT broker and WebSocket clients.

Broker -> clients:
    robo/status      full status object
    robo/bateria     full battery object
    robo/velocidade  {"velocidade": <value>} only
    anything else    ignored

Clients -> broker:
    {"velocidade": speed, "angulo": angle} on robo/comandos
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional, Protocol

from .mqtt_bridge import (
    TOPIC_BATTERY,
    TOPIC_COMMANDS,
    TOPIC_STATUS,
    TOPIC_VELOCITY,
    BrokerMessage,
)
from .ws_server import CommandMessage

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):
    async def broadcast(self, payload: str) -> int: ...


class Publisher(Protocol):
    async def publish(self, topic: str, payload: str) -> bool: ...


def dumps(value: Any) -> str:
    """Compact JSON, as sent on the wire."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _load(payload: bytes) -> Any:
    try:
        return json.loads(payload.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise ValueError(f"payload is not UTF-8: {e}") from e
    except RecursionError:
        raise ValueError("payload nested too deeply") from None


def passthrough(data: Any) -> Any:
    return data


def project_velocity(data: Any) -> dict:
    if not isinstance(data, dict) or "velocidade" not in data:
        raise ValueError("velocity payload has no 'velocidade' field")
    return {"velocidade": data["velocidade"]}


class BridgeRouter:
    """
    Topic dispatch between the broker and the socket hub.

    Holds no per-message state; each broker message and each client
    command is handled on its own.
    """

    DISPATCH: dict = {
        TOPIC_STATUS: passthrough,
        TOPIC_BATTERY: passthrough,
        TOPIC_VELOCITY: project_velocity,
    }

    def __init__(
        self,
        hub: Broadcaster,
        broker: Publisher,
        command_topic: str = TOPIC_COMMANDS,
    ):
        """
        Initialize the router.

        Args:
            hub: Fan-out target for broker messages
            broker: Publish target for client commands
            command_topic: Topic client commands are published on
        """
        self.hub = hub
        self.broker = broker
        self.command_topic = command_topic

        # Statistics
        self._forwarded = 0
        self._dropped = 0
        self._ignored = 0
        self._commands = 0

    def transform(self, message: BrokerMessage) -> Optional[str]:
        """
        Build the broadcast payload for a broker message.

        Returns:
            Serialized payload, or None if the topic is not forwarded

        Raises:
            ValueError: if the payload is malformed
        """
        handler: Optional[Callable[[Any], Any]] = self.DISPATCH.get(message.topic)
        if handler is None:
            return None
        return dumps(handler(_load(message.payload)))

    async def handle_broker_message(self, message: BrokerMessage) -> int:
        """Forward one broker message to all open clients."""
        try:
            payload = self.transform(message)
        except ValueError as e:
            self._dropped += 1
            logger.warning(f"Dropping malformed payload on {message.topic}: {e}")
            return 0

        if payload is None:
            self._ignored += 1
            logger.debug(f"Ignoring message on {message.topic}")
            return 0

        sent = await self.hub.broadcast(payload)
        self._forwarded += 1
        logger.debug(f"Forwarded {message.topic} to {sent} client(s)")
        return sent

    async def run(self, messages: AsyncIterator[BrokerMessage]) -> None:
        """Consume the broker stream until cancelled."""
        logger.info("Bridge router started")
        try:
            async for message in messages:
                try:
                    await self.handle_broker_message(message)
                except Exception as e:
                    logger.error(f"Error forwarding {message.topic}: {e}")
        except asyncio.CancelledError:
            logger.info("Bridge router stopped")
            raise

    async def handle_command(self, command: CommandMessage) -> bool:
        """Publish one client command to the broker."""
        payload = dumps(command.to_payload())
        self._commands += 1
        published = await self.broker.publish(self.command_topic, payload)
        logger.debug(f"Command sent to {self.command_topic}: {payload}")
        return published

    def get_stats(self) -> dict:
        return {
            "forwarded": self._forwarded,
            "dropped": self._dropped,
            "ignored": self._ignored,
            "commands": self._commands,
        }
