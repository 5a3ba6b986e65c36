"""
MQTT Bridge for robot broker communication.

Handles:
- Subscribing to robot feedback topics (battery, status, velocity)
- Publishing joystick commands to robo/comandos
- Handing inbound messages to the asyncio loop through a queue
- Reconnecting with backoff when the broker drops
"""

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Dict, Optional

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)


# Broker topics, fixed for the process lifetime
TOPIC_BATTERY = "robo/bateria"
TOPIC_STATUS = "robo/status"
TOPIC_VELOCITY = "robo/velocidade"
TOPIC_COMMANDS = "robo/comandos"

SUBSCRIBED_TOPICS = (TOPIC_BATTERY, TOPIC_STATUS, TOPIC_VELOCITY)


class ConnectionState(enum.Enum):
    """Broker connection state."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class BrokerMessage:
    """Message received from the broker."""
    topic: str
    payload: bytes


class MQTTBridge:
    """
    MQTT bridge for the robot broker.

    Runs the paho network loop in a background thread. Every message
    received on a subscribed topic is passed to on_message as a
    BrokerMessage. Reconnection is left to paho's loop with an
    exponential retry delay; topics are re-subscribed on every connect.
    """

    def __init__(
        self,
        host: str,
        port: int = 1883,
        keepalive: int = 60,
        topics: tuple = SUBSCRIBED_TOPICS,
        connect_timeout: float = 5.0,
        min_reconnect_delay: int = 1,
        max_reconnect_delay: int = 30,
        on_message: Optional[Callable[[BrokerMessage], None]] = None,
    ):
        """
        Initialize MQTT bridge.

        Args:
            host: MQTT broker host
            port: MQTT broker port
            keepalive: Keepalive interval in seconds
            topics: Topics to subscribe to on every connect
            connect_timeout: Seconds start() waits for the first connection
            min_reconnect_delay: Initial reconnect delay in seconds
            max_reconnect_delay: Maximum reconnect delay in seconds
            on_message: Callback for inbound broker messages
        """
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.topics = tuple(topics)
        self.connect_timeout = connect_timeout
        self.min_reconnect_delay = min_reconnect_delay
        self.max_reconnect_delay = max_reconnect_delay
        self.on_message = on_message

        # MQTT client
        self._client: Optional[mqtt.Client] = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False

        # Pending SUBACKs, message id -> topic
        self._pending_subscriptions: Dict[int, str] = {}

        # Statistics
        self._messages_sent = 0
        self._messages_received = 0
        self._subscription_failures = 0
        self._last_send_time: Optional[float] = None

    def start(self) -> bool:
        """
        Start the MQTT bridge.

        Returns:
            True if connected within connect_timeout, False otherwise.
            The network loop keeps retrying in the background either way.
        """
        if self._running:
            return self.connected

        try:
            client_id = f"robot_bridge_{int(time.time())}"
            self._client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
            )

            # Set callbacks
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_subscribe = self._on_subscribe
            self._client.on_message = self._on_message
            self._client.reconnect_delay_set(
                min_delay=self.min_reconnect_delay,
                max_delay=self.max_reconnect_delay,
            )

            logger.info(f"Connecting to MQTT broker at {self.host}:{self.port}")
            self._state = ConnectionState.CONNECTING
            self._client.connect_async(self.host, self.port, keepalive=self.keepalive)

            # Network loop in background thread, retries until stop()
            self._running = True
            self._client.loop_start()

        except Exception as e:
            logger.error(f"Failed to connect to MQTT broker: {e}")
            self._state = ConnectionState.DISCONNECTED
            return False

        deadline = time.monotonic() + self.connect_timeout
        while time.monotonic() < deadline:
            if self.connected:
                return True
            time.sleep(0.1)

        logger.warning("MQTT connection timeout - retrying in background")
        return False

    def stop(self) -> None:
        """Stop the MQTT bridge."""
        if not self._running:
            return

        self._running = False

        if self._client:
            self._client.disconnect()
            self._client.loop_stop()
            self._client = None

        self._state = ConnectionState.DISCONNECTED
        self._pending_subscriptions.clear()
        logger.info("MQTT bridge stopped")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        """MQTT connection callback."""
        if reason_code.is_failure:
            logger.error(f"MQTT connection failed: {reason_code}")
            return

        self._state = ConnectionState.CONNECTED
        logger.info("Connected to MQTT broker")

        for topic in self.topics:
            self._subscribe(client, topic)

    def _subscribe(self, client, topic: str) -> None:
        try:
            result, mid = client.subscribe(topic)
        except Exception as e:
            self._subscription_failures += 1
            logger.error(f"Failed to subscribe to {topic}: {e}")
            return

        if result != mqtt.MQTT_ERR_SUCCESS:
            self._subscription_failures += 1
            logger.error(f"Failed to subscribe to {topic}: {mqtt.error_string(result)}")
            return

        self._pending_subscriptions[mid] = topic

    def _on_subscribe(self, client, userdata, mid, reason_code_list, properties=None):
        """MQTT SUBACK callback."""
        topic = self._pending_subscriptions.pop(mid, None)
        for reason_code in reason_code_list:
            if reason_code.is_failure:
                self._subscription_failures += 1
                logger.error(f"Broker rejected subscription to {topic}: {reason_code}")
            else:
                logger.info(f"Subscribed to {topic}")

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        """MQTT disconnection callback."""
        if self._running:
            # paho's loop reconnects on its own until stop()
            self._state = ConnectionState.CONNECTING
            logger.warning(f"Unexpected MQTT disconnection: {reason_code}, reconnecting")
        else:
            self._state = ConnectionState.DISCONNECTED
            logger.info("Disconnected from MQTT broker")

    def _on_message(self, client, userdata, msg):
        """MQTT message callback."""
        self._messages_received += 1
        logger.debug(f"Message received on {msg.topic}: {msg.payload!r}")

        if self.on_message:
            try:
                self.on_message(BrokerMessage(topic=msg.topic, payload=bytes(msg.payload)))
            except Exception as e:
                logger.error(f"Error handing off message from {msg.topic}: {e}")

    def publish(self, topic: str, payload: str) -> bool:
        """
        Publish a payload to a topic.

        QoS 0, no acknowledgment tracking and no retry.

        Args:
            topic: Destination topic
            payload: Serialized message

        Returns:
            True if handed to the client successfully
        """
        if not self.connected or not self._client:
            logger.warning(f"Not connected to MQTT broker, dropping message for {topic}")
            return False

        try:
            info = self._client.publish(topic, payload, qos=0)
        except Exception as e:
            logger.error(f"Failed to publish to {topic}: {e}")
            return False

        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Failed to publish to {topic}: {mqtt.error_string(info.rc)}")
            return False

        self._messages_sent += 1
        self._last_send_time = time.time()
        logger.debug(f"Published to {topic}: {payload}")
        return True

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._state

    @property
    def connected(self) -> bool:
        """Check if connected to MQTT broker."""
        return self._state is ConnectionState.CONNECTED

    def get_stats(self) -> dict:
        """Get bridge statistics."""
        return {
            "state": self._state.value,
            "connected": self.connected,
            "messages_sent": self._messages_sent,
            "messages_received": self._messages_received,
            "subscription_failures": self._subscription_failures,
            "last_send_time": self._last_send_time,
        }


class AsyncMQTTBridge:
    """
    Async wrapper for MQTTBridge.

    Owns the queue between paho's network thread and the event loop,
    and exposes inbound messages as an async iterator.
    """

    def __init__(self, queue_size: int = 1000, **kwargs):
        """Initialize with the same keyword arguments as MQTTBridge."""
        kwargs.setdefault("on_message", self._on_broker_message)
        self._bridge = MQTTBridge(**kwargs)
        self._queue_size = queue_size
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._dropped = 0

    async def start(self) -> bool:
        """Start the MQTT bridge."""
        self._loop = asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._queue_size)
        return await self._loop.run_in_executor(None, self._bridge.start)

    async def stop(self) -> None:
        """Stop the MQTT bridge."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._bridge.stop)

    def _on_broker_message(self, message: BrokerMessage) -> None:
        """Called from the paho thread."""
        if self._loop is None or self._loop.is_closed():
            logger.warning(f"Event loop not running, dropping message from {message.topic}")
            return
        self._loop.call_soon_threadsafe(self._enqueue, message)

    def _enqueue(self, message: BrokerMessage) -> None:
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(f"Inbound queue full, dropping message from {message.topic}")

    async def messages(self) -> AsyncIterator[BrokerMessage]:
        """Yield inbound broker messages in delivery order, forever."""
        if self._queue is None:
            raise RuntimeError("AsyncMQTTBridge.start() must be called first")
        while True:
            yield await self._queue.get()

    async def publish(self, topic: str, payload: str) -> bool:
        """Publish a payload to a topic."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._bridge.publish, topic, payload)

    @property
    def state(self) -> ConnectionState:
        """Current connection state."""
        return self._bridge.state

    @property
    def connected(self) -> bool:
        """Check if connected."""
        return self._bridge.connected

    def get_stats(self) -> dict:
        """Get statistics."""
        stats = self._bridge.get_stats()
        stats["queue_dropped"] = self._dropped
        return stats
