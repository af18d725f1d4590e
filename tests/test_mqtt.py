"""Tests for the paho-mqtt adapter using an in-process stand-in client."""

import asyncio
from types import SimpleNamespace

import paho.mqtt.client as mqtt
import pytest

from owl_beacon.adapters.mqtt import MQTTClient, MQTTConnectionError
from owl_beacon.config import SessionConfig
from owl_beacon.core.protocols import LastWill


WILL = LastWill(topic="esp32/test/status", payload="OFFLINE")


class StubPahoClient:
    instances: list["StubPahoClient"] = []
    connect_rc = 0
    acknowledge = True

    def __init__(self, *args, **kwargs):
        self.args = args
        self.kwargs = kwargs
        self.will = None
        self.credentials = None
        self.loop_running = False
        self.published = []
        self.subscribed = []
        self.disconnected = False
        self.publish_rc = mqtt.MQTT_ERR_SUCCESS
        self.on_connect = None
        self.on_disconnect = None
        self.on_message = None
        StubPahoClient.instances.append(self)

    def enable_logger(self, logger):
        self.logger = logger

    def username_pw_set(self, username, password=None):
        self.credentials = (username, password)

    def will_set(self, topic, payload, qos=0, retain=False):
        self.will = (topic, payload, qos, retain)

    def connect_async(self, host, port, keepalive):
        self.target = (host, port, keepalive)

    def loop_start(self):
        self.loop_running = True
        if self.acknowledge:
            self.on_connect(self, None, {}, self.connect_rc, None)

    def loop_stop(self):
        self.loop_running = False

    def disconnect(self):
        self.disconnected = True
        self.on_disconnect(self, None, {}, 0, None)

    def publish(self, topic, payload, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        return SimpleNamespace(rc=self.publish_rc)

    def subscribe(self, topic, qos=0):
        self.subscribed.append((topic, qos))
        return mqtt.MQTT_ERR_SUCCESS, 1


@pytest.fixture
def paho_stub(monkeypatch):
    StubPahoClient.instances = []
    StubPahoClient.connect_rc = 0
    StubPahoClient.acknowledge = True
    monkeypatch.setattr("owl_beacon.adapters.mqtt.mqtt.Client", StubPahoClient)
    return StubPahoClient


def _client(**overrides):
    config = SessionConfig(broker_host="broker.local", broker_port=1884, **overrides)
    return MQTTClient(config, client_id="esp32_a-1b-ff")


@pytest.mark.asyncio
async def test_connect_sets_will_and_clean_session(paho_stub):
    client = _client(username="device", password="secret")

    await client.connect(will=WILL)

    stub = paho_stub.instances[0]
    assert client.is_connected() is True
    assert stub.kwargs["client_id"] == "esp32_a-1b-ff"
    assert stub.kwargs["clean_session"] is True
    assert stub.will == ("esp32/test/status", "OFFLINE", 1, True)
    assert stub.credentials == ("device", "secret")
    assert stub.target == ("broker.local", 1884, 60)
    assert stub.loop_running is True


@pytest.mark.asyncio
async def test_rejected_connection_raises(paho_stub):
    paho_stub.connect_rc = 5
    client = _client()

    with pytest.raises(MQTTConnectionError, match="rc=5"):
        await client.connect(will=WILL)

    assert client.is_connected() is False
    assert paho_stub.instances[0].loop_running is False


@pytest.mark.asyncio
async def test_connect_timeout_raises(paho_stub):
    paho_stub.acknowledge = False
    client = _client()

    with pytest.raises(MQTTConnectionError, match="Timed out"):
        await client.connect(will=WILL, timeout=0.05)

    assert paho_stub.instances[0].loop_running is False


@pytest.mark.asyncio
async def test_reconnect_tears_down_stale_client(paho_stub):
    client = _client()
    await client.connect(will=WILL)
    await client.connect(will=WILL)

    first, second = paho_stub.instances
    assert first.loop_running is False
    assert second.loop_running is True


@pytest.mark.asyncio
async def test_publish_and_subscribe_forward_to_paho(paho_stub):
    client = _client()
    await client.connect(will=WILL)
    stub = paho_stub.instances[0]

    client.publish("esp32/test/result", b"world", qos=0, retain=False)
    client.subscribe("esp32/test/cmd")

    assert stub.published == [("esp32/test/result", b"world", 0, False)]
    assert stub.subscribed == [("esp32/test/cmd", 0)]

    stub.publish_rc = mqtt.MQTT_ERR_NO_CONN
    with pytest.raises(MQTTConnectionError):
        client.publish("esp32/test/result", b"world")


def test_publish_without_session_raises():
    client = _client()
    with pytest.raises(MQTTConnectionError):
        client.publish("esp32/test/result", b"x")
    with pytest.raises(MQTTConnectionError):
        client.subscribe("esp32/test/cmd")


@pytest.mark.asyncio
async def test_inbound_messages_are_parked_until_drained(paho_stub):
    client = _client()
    await client.connect(will=WILL)
    stub = paho_stub.instances[0]

    stub.on_message(stub, None, SimpleNamespace(topic="esp32/test/cmd", payload=b"hello"))
    stub.on_message(stub, None, SimpleNamespace(topic="esp32/test/cmd", payload=b"reset"))
    await asyncio.sleep(0)

    messages = client.drain_messages()
    assert [m.payload for m in messages] == [b"hello", b"reset"]
    assert client.drain_messages() == []


@pytest.mark.asyncio
async def test_disconnect_notifies_handlers(paho_stub):
    client = _client()
    seen = []
    client.register_disconnect_handler(seen.append)
    await client.connect(will=WILL)

    await client.disconnect()
    await asyncio.sleep(0)

    assert client.is_connected() is False
    assert paho_stub.instances[0].disconnected is True
    assert seen == [0]
