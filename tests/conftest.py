from __future__ import annotations

from typing import Optional

import pytest

from owl_beacon.adapters.mqtt import MQTTConnectionError
from owl_beacon.core.protocols import InboundMessage, LastWill


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLink:
    """Link whose status is flipped by the test."""

    def __init__(
        self,
        *,
        connected: bool = True,
        address: str = "192.168.1.42",
        reconnect_restores: bool = True,
        mac: bytes = b"\x24\x0a\xc4\x0a\x1b\xff",
    ) -> None:
        self.connected = connected
        self.address = address
        self.reconnect_restores = reconnect_restores
        self.mac = mac
        self.connect_calls = 0
        self.disconnect_calls = 0

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.reconnect_restores:
            self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def local_address(self) -> Optional[str]:
        return self.address if self.connected else None

    def hardware_address(self) -> bytes:
        return self.mac


class FakeSession:
    """Session that records every call and never touches the network."""

    def __init__(
        self,
        *,
        link: Optional[FakeLink] = None,
        clock: Optional[FakeClock] = None,
        connected: bool = False,
        connect_succeeds: bool = True,
    ) -> None:
        self.link = link
        self.clock = clock
        self.connected = connected
        self.connect_succeeds = connect_succeeds
        self.fail_publish = False
        self.connect_times: list[float] = []
        self.wills: list[LastWill] = []
        self.published: list[tuple[str, bytes, int, bool]] = []
        self.subscribed: list[tuple[str, int]] = []
        self.disconnect_calls = 0
        self.connects_while_link_down = 0
        self.inbox: list[InboundMessage] = []

    async def connect(self, *, will: LastWill) -> None:
        if self.clock is not None:
            self.connect_times.append(self.clock())
        if self.link is not None and not self.link.connected:
            self.connects_while_link_down += 1
        self.wills.append(will)
        if not self.connect_succeeds:
            raise MQTTConnectionError("broker unavailable")
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def is_connected(self) -> bool:
        return self.connected

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> None:
        if self.fail_publish:
            raise MQTTConnectionError("publish failed")
        self.published.append((topic, payload, qos, retain))

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append((topic, qos))

    def drain_messages(self) -> list[InboundMessage]:
        messages = list(self.inbox)
        self.inbox.clear()
        return messages

    def deliver(self, topic: str, payload: bytes) -> None:
        self.inbox.append(InboundMessage(topic=topic, payload=payload))

    def topics_published(self) -> list[str]:
        return [topic for topic, *_ in self.published]

    def payloads_for(self, topic: str) -> list[str]:
        return [payload.decode("utf-8") for t, payload, *_ in self.published if t == topic]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_link() -> FakeLink:
    return FakeLink()


@pytest.fixture
def fake_session(fake_link: FakeLink, clock: FakeClock) -> FakeSession:
    return FakeSession(link=fake_link, clock=clock)
