"""Link and session supervision.

The supervisor is polled from the control loop. Every monitoring interval it
checks the network link, repairs it in place when it has dropped, and only
with the link up checks the MQTT session, reconnecting it at most once per
retry interval. Failures are logged and retried on the next interval; nothing
here restarts the process.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable, Optional

from .adapters.link import UNSPECIFIED_ADDRESS, LinkError
from .adapters.mqtt import MQTTConnectionError
from .core.protocols import LastWill, LinkClient, SessionClient
from .topics import Topics

if TYPE_CHECKING:
    from .config import BeaconConfig
    from .health import HealthReporter

LOGGER = logging.getLogger(__name__)


class ConnectivityState(str, Enum):
    """Combined link/session state as last observed by the supervisor."""

    UNKNOWN = "unknown"
    LINK_DOWN = "link_down"
    LINK_UP_SESSION_DOWN = "link_up_session_down"
    LINK_UP_SESSION_UP = "link_up_session_up"


class ConnectivitySupervisor:
    """Keeps the link and the session alive with fixed-interval retries.

    Thread-safety: not thread-safe; call only from the control loop.
    """

    def __init__(
        self,
        *,
        link: LinkClient,
        session: SessionClient,
        topics: Topics,
        monitor_interval: float = 10.0,
        session_retry_interval: float = 5.0,
        link_max_tries: int = 10,
        link_retry_seconds: float = 2.0,
        online_payload: str = "ONLINE",
        offline_payload: str = "OFFLINE",
        monotonic: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        health: Optional[HealthReporter] = None,
    ) -> None:
        self._link = link
        self._session = session
        self._topics = topics
        self._monitor_interval = monitor_interval
        self._session_retry_interval = session_retry_interval
        self._link_max_tries = link_max_tries
        self._link_retry_seconds = link_retry_seconds
        self._online_payload = online_payload
        self._offline_payload = offline_payload
        self._monotonic = monotonic or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._health = health

        self._state = ConnectivityState.UNKNOWN
        self._link_connected = False
        self._reconnect_attempts = 0
        self._last_check = self._monotonic()
        self._last_session_attempt: Optional[float] = None

    @classmethod
    def from_config(
        cls,
        config: BeaconConfig,
        *,
        link: LinkClient,
        session: SessionClient,
        topics: Topics,
        monotonic: Optional[Callable[[], float]] = None,
        health: Optional[HealthReporter] = None,
    ) -> "ConnectivitySupervisor":
        return cls(
            link=link,
            session=session,
            topics=topics,
            monitor_interval=config.supervisor.monitor_interval_seconds,
            session_retry_interval=config.supervisor.session_retry_seconds,
            link_max_tries=config.link.max_tries,
            link_retry_seconds=config.link.retry_seconds,
            online_payload=config.session.status_online,
            offline_payload=config.session.status_offline,
            monotonic=monotonic,
            health=health,
        )

    @property
    def state(self) -> ConnectivityState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        """Session attempts since the last successful connect."""
        return self._reconnect_attempts

    @property
    def link_connected(self) -> bool:
        return self._link_connected

    @property
    def last_will(self) -> LastWill:
        return LastWill(
            topic=self._topics.status,
            payload=self._offline_payload,
            qos=1,
            retain=True,
        )

    async def establish(self) -> ConnectivityState:
        """Initial bring-up: wait a bounded time for the link, then try the session once."""

        LOGGER.info("Bringing up network link")
        await self._link_call("connect")

        tries = 0
        while not self._link_up() and tries < self._link_max_tries:
            tries += 1
            LOGGER.warning("Link connection failed, retrying [%d]", tries)
            await self._sleep(self._link_retry_seconds)

        self._last_check = self._monotonic()

        if not self._link_up():
            LOGGER.error("Link connection failed, trying later")
            self._link_connected = False
            await self._set_state(ConnectivityState.LINK_DOWN)
            return self._state

        self._link_connected = True
        LOGGER.info("Link connected, local address %s", self._link.local_address())
        await self._set_state(ConnectivityState.LINK_UP_SESSION_DOWN)
        await self._attempt_session()
        return self._state

    async def poll(self) -> bool:
        """Run :meth:`check_and_repair` when the monitoring interval has elapsed."""

        now = self._monotonic()
        if now - self._last_check < self._monitor_interval:
            return False
        self._last_check = now
        await self.check_and_repair()
        return True

    async def check_and_repair(self) -> ConnectivityState:
        LOGGER.debug("Link local address: %s", self._link.local_address())

        if not self._link_up():
            LOGGER.error("Link connection lost, reconnecting")
            await self._link_call("disconnect")
            await self._link_call("connect")
            if not self._link_up():
                LOGGER.error(
                    "Link reconnection failed, trying again later; "
                    "not monitoring session while link is down"
                )
                self._link_connected = False
                await self._set_state(ConnectivityState.LINK_DOWN)
                return self._state
            LOGGER.error("Link connection restored")
        else:
            LOGGER.debug("Monitoring link... online")

        self._link_connected = True

        if self._session.is_connected():
            LOGGER.debug("Monitoring session... online")
            await self._set_state(ConnectivityState.LINK_UP_SESSION_UP)
            return self._state

        if self._state is not ConnectivityState.LINK_UP_SESSION_DOWN:
            await self._set_state(ConnectivityState.LINK_UP_SESSION_DOWN)

        if self._session_retry_due():
            await self._attempt_session()
        else:
            LOGGER.debug("Session down; next attempt rate-limited")
        return self._state

    def _session_retry_due(self) -> bool:
        if self._last_session_attempt is None:
            return True
        elapsed = self._monotonic() - self._last_session_attempt
        return elapsed >= self._session_retry_interval

    async def _attempt_session(self) -> bool:
        self._last_session_attempt = self._monotonic()
        self._reconnect_attempts += 1
        LOGGER.error(
            "Session connection lost, trying to reconnect [%d]",
            self._reconnect_attempts,
        )

        try:
            await self._session.connect(will=self.last_will)
        except (MQTTConnectionError, OSError) as exc:
            LOGGER.error("Session reconnection failed: %s", exc)
            await self._set_state(ConnectivityState.LINK_UP_SESSION_DOWN)
            return False

        try:
            self._session.publish(
                self._topics.status,
                self._online_payload.encode("utf-8"),
                qos=1,
                retain=True,
            )
            self._session.subscribe(self._topics.cmd)
        except MQTTConnectionError as exc:
            LOGGER.error("Session announce failed, dropping session: %s", exc)
            await self._session.disconnect()
            await self._set_state(ConnectivityState.LINK_UP_SESSION_DOWN)
            return False

        self._reconnect_attempts = 0
        self._last_session_attempt = None
        LOGGER.info("Session successfully connected")
        await self._set_state(ConnectivityState.LINK_UP_SESSION_UP)
        return True

    def _link_up(self) -> bool:
        if not self._link.is_connected():
            return False
        address = self._link.local_address()
        return address is not None and address != UNSPECIFIED_ADDRESS

    async def _link_call(self, action: str) -> None:
        method = self._link.connect if action == "connect" else self._link.disconnect
        try:
            await method()
        except (LinkError, OSError) as exc:
            LOGGER.error("Link %s failed: %s", action, exc)

    async def _set_state(self, state: ConnectivityState) -> None:
        if state is not self._state:
            LOGGER.info(
                "Connectivity state %s -> %s", self._state.value, state.value
            )
            self._state = state

        if self._health is None:
            return

        link_up = state in (
            ConnectivityState.LINK_UP_SESSION_DOWN,
            ConnectivityState.LINK_UP_SESSION_UP,
        )
        session_up = state is ConnectivityState.LINK_UP_SESSION_UP
        await self._health.update("link", link_up, None if link_up else "link down")
        await self._health.update(
            "session",
            session_up,
            None if session_up else f"reconnect attempts={self._reconnect_attempts}",
        )
        await self._health.set_connectivity(
            state.value, reconnect_attempts=self._reconnect_attempts
        )
