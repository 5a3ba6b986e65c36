"""Unit tests for the MQTT bridge without a running broker."""

import asyncio
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.reasoncodes import ReasonCode

from robot_bridge.mqtt_bridge import (
    SUBSCRIBED_TOPICS,
    TOPIC_BATTERY,
    TOPIC_COMMANDS,
    TOPIC_STATUS,
    TOPIC_VELOCITY,
    AsyncMQTTBridge,
    BrokerMessage,
    ConnectionState,
    MQTTBridge,
)


class FakeClient:
    """Records subscribe/publish calls; can fail subscriptions per topic."""

    def __init__(self, failing_topics=(), raising_topics=()):
        self.failing_topics = set(failing_topics)
        self.raising_topics = set(raising_topics)
        self.subscribed: list[str] = []
        self.published: list[tuple] = []
        self._mid = 0

    def subscribe(self, topic):
        if topic in self.raising_topics:
            raise ValueError("invalid topic")
        self._mid += 1
        if topic in self.failing_topics:
            return mqtt.MQTT_ERR_NO_CONN, self._mid
        self.subscribed.append(topic)
        return mqtt.MQTT_ERR_SUCCESS, self._mid

    def publish(self, topic, payload, qos=0):
        self.published.append((topic, payload, qos))
        return SimpleNamespace(rc=mqtt.MQTT_ERR_SUCCESS)


def _connack_success() -> ReasonCode:
    return ReasonCode(PacketTypes.CONNACK, "Success")


def test_connect_subscribes_to_all_topics():
    bridge = MQTTBridge(host="localhost")
    client = FakeClient()

    bridge._on_connect(client, None, {}, _connack_success(), None)

    assert bridge.state is ConnectionState.CONNECTED
    assert client.subscribed == [TOPIC_BATTERY, TOPIC_STATUS, TOPIC_VELOCITY]
    assert TOPIC_COMMANDS not in client.subscribed


def test_failed_subscription_does_not_abort_the_others(caplog):
    bridge = MQTTBridge(host="localhost")
    client = FakeClient(failing_topics={TOPIC_BATTERY}, raising_topics={TOPIC_STATUS})

    bridge._on_connect(client, None, {}, _connack_success(), None)

    assert client.subscribed == [TOPIC_VELOCITY]
    assert bridge.get_stats()["subscription_failures"] == 2
    assert "Failed to subscribe to robo/bateria" in caplog.text
    assert "Failed to subscribe to robo/status" in caplog.text


def test_rejected_suback_is_logged(caplog):
    bridge = MQTTBridge(host="localhost")
    client = FakeClient()
    bridge._on_connect(client, None, {}, _connack_success(), None)

    bridge._on_subscribe(client, None, 1, [ReasonCode(PacketTypes.SUBACK, "Unspecified error")], None)
    bridge._on_subscribe(client, None, 2, [ReasonCode(PacketTypes.SUBACK, "Granted QoS 0")], None)

    assert bridge.get_stats()["subscription_failures"] == 1
    assert f"Broker rejected subscription to {SUBSCRIBED_TOPICS[0]}" in caplog.text


def test_refused_connection_stays_unconnected():
    bridge = MQTTBridge(host="localhost")
    client = FakeClient()

    bridge._on_connect(client, None, {}, ReasonCode(PacketTypes.CONNACK, "Not authorized"), None)

    assert not bridge.connected
    assert client.subscribed == []


def test_unexpected_disconnect_moves_back_to_connecting():
    bridge = MQTTBridge(host="localhost")
    bridge._running = True
    bridge._on_connect(FakeClient(), None, {}, _connack_success(), None)

    bridge._on_disconnect(None, None, None, ReasonCode(PacketTypes.DISCONNECT, "Unspecified error"), None)

    assert bridge.state is ConnectionState.CONNECTING


def test_message_is_handed_off_as_broker_message():
    received = []
    bridge = MQTTBridge(host="localhost", on_message=received.append)

    bridge._on_message(None, None, SimpleNamespace(topic=TOPIC_BATTERY, payload=b'{"nivel":80}'))

    assert received == [BrokerMessage(TOPIC_BATTERY, b'{"nivel":80}')]


def test_publish_is_qos0_fire_and_forget():
    bridge = MQTTBridge(host="localhost")
    client = FakeClient()
    bridge._client = client
    bridge._state = ConnectionState.CONNECTED

    assert bridge.publish(TOPIC_COMMANDS, '{"velocidade":5,"angulo":10}')

    assert client.published == [(TOPIC_COMMANDS, '{"velocidade":5,"angulo":10}', 0)]
    assert bridge.get_stats()["messages_sent"] == 1


def test_publish_without_connection_is_dropped():
    bridge = MQTTBridge(host="localhost")

    assert not bridge.publish(TOPIC_COMMANDS, "{}")


@pytest.mark.asyncio
async def test_messages_are_streamed_in_delivery_order(monkeypatch):
    monkeypatch.setattr(MQTTBridge, "start", lambda self: True)
    bridge = AsyncMQTTBridge(host="localhost")
    assert await bridge.start()
    stream = bridge.messages()

    def deliver():
        # paho calls on_message from its network thread
        for level in (80, 79, 78):
            msg = SimpleNamespace(topic=TOPIC_BATTERY, payload=f'{{"nivel":{level}}}'.encode())
            bridge._bridge._on_message(None, None, msg)

    await asyncio.get_running_loop().run_in_executor(None, deliver)
    received = [await asyncio.wait_for(stream.__anext__(), 1.0) for _ in range(3)]
    await stream.aclose()

    assert [m.payload for m in received] == [b'{"nivel":80}', b'{"nivel":79}', b'{"nivel":78}']


@pytest.mark.asyncio
async def test_full_queue_drops_new_messages(monkeypatch):
    monkeypatch.setattr(MQTTBridge, "start", lambda self: True)
    bridge = AsyncMQTTBridge(host="localhost", queue_size=1)
    await bridge.start()

    bridge._enqueue(BrokerMessage(TOPIC_STATUS, b"{}"))
    bridge._enqueue(BrokerMessage(TOPIC_STATUS, b"{}"))

    assert bridge.get_stats()["queue_dropped"] == 1
