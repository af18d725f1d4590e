"""Publishing helpers for state snapshots and diagnostics."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Callable, Dict, Optional

from ..adapters.mqtt import MQTTConnectionError
from ..core.protocols import LinkClient, SessionClient
from ..topics import Topics
from . import snapshots

LOGGER = logging.getLogger(__name__)


def encode_snapshot(snapshot: Dict[str, Any]) -> str:
    return json.dumps(snapshot, separators=(",", ":"))


class StatePublisher:
    """Formats snapshots and publishes them only while the session is up."""

    def __init__(
        self,
        *,
        session: SessionClient,
        link: LinkClient,
        topics: Topics,
        client_id: str,
        target: str,
        build_timestamp: Optional[str] = None,
        monotonic: Optional[Callable[[], float]] = None,
    ) -> None:
        self._session = session
        self._link = link
        self._topics = topics
        self._client_id = client_id
        self._target = target
        self._build_timestamp = build_timestamp
        self._monotonic = monotonic or time.monotonic
        self._started_at = self._monotonic()

    @property
    def topics(self) -> Topics:
        return self._topics

    def publish(self, topic: str, message: str, *, echo: bool = True) -> bool:
        """Publish `message` on `topic`; returns False when it was not sent."""

        if echo:
            LOGGER.info("%s: %s", topic, message)

        if not self._session.is_connected():
            LOGGER.error("MQTT connection lost, dropping message for %s", topic)
            return False

        try:
            self._session.publish(topic, message.encode("utf-8"))
        except MQTTConnectionError as exc:
            LOGGER.error("Publish to %s failed: %s", topic, exc)
            return False
        return True

    def log(self, message: str) -> bool:
        return self.publish(self._topics.log, message)

    def send_result(self, response: str) -> bool:
        return self.publish(self._topics.result, response)

    def send_cpu_state(self) -> bool:
        snapshot = snapshots.cpu_snapshot(
            started_at=self._started_at, monotonic=self._monotonic()
        )
        return self.publish(self._topics.cpu, encode_snapshot(snapshot), echo=False)

    def send_network_state(self) -> bool:
        snapshot = snapshots.network_snapshot(
            local_address=self._link.local_address(), client_id=self._client_id
        )
        return self.publish(
            self._topics.network, encode_snapshot(snapshot), echo=False
        )

    def send_sketch_state(self) -> bool:
        snapshot = snapshots.sketch_snapshot(
            target=self._target, build_timestamp=self._build_timestamp
        )
        return self.publish(self._topics.sketch, encode_snapshot(snapshot), echo=False)

    def send_all(self) -> None:
        self.send_cpu_state()
        self.send_network_state()
        self.send_sketch_state()
