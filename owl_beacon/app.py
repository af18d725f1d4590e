"""Main application entry-point for owl-beacon."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import time
from typing import Callable, Optional

from .adapters import HostLink, MQTTClient, MQTTConnectionError
from .commands import CommandDispatcher, register_builtin_commands
from .config import BeaconConfig, load_config
from .connection import ConnectivitySupervisor, ConnectivityState
from .core import InterruptFlag, LinkClient, SessionClient, UpdatePump
from .health import HealthReporter, HealthServer
from .logging import configure_logging
from .reboot import RebootTimer, RestartAction, build_restart_action
from .telemetry import HeartbeatScheduler, StatePublisher, compose_client_id
from .topics import Topics
from .version import __version__

LOGGER = logging.getLogger(__name__)


class BeaconApp:
    """Owns every agent component and drives the cooperative control loop.

    One iteration runs, in order: the reboot check, the connectivity check,
    the inbound message pump, the update pump and the heartbeat tick. A
    command received in an iteration is answered before that iteration's
    scheduled snapshots go out.
    """

    def __init__(
        self,
        config: Optional[BeaconConfig] = None,
        *,
        link: Optional[LinkClient] = None,
        session: Optional[SessionClient] = None,
        restart: Optional[RestartAction] = None,
        update_pump: Optional[UpdatePump] = None,
        monotonic: Optional[Callable[[], float]] = None,
    ) -> None:
        self._config = config or load_config()
        self._monotonic = monotonic or time.monotonic
        self._update_pump = update_pump

        self._link: LinkClient = link or HostLink.from_config(
            self._config.link, self._config.device
        )
        self._client_id = compose_client_id(
            self._config.device.client_id_prefix, self._link.hardware_address()
        )
        self._topics = Topics.from_prefix(self._config.session.topic_prefix)
        self._session: SessionClient = session or MQTTClient(
            self._config.session, client_id=self._client_id
        )
        register_disconnect = getattr(self._session, "register_disconnect_handler", None)
        if register_disconnect is not None:
            register_disconnect(self._on_session_disconnect)

        self._health = HealthReporter()
        self._health_server: Optional[HealthServer] = None

        self._reboot = RebootTimer(
            delay_seconds=self._config.reboot.delay_seconds,
            grace_seconds=self._config.reboot.grace_seconds,
            restart=restart or build_restart_action(self._config.reboot),
            monotonic=self._monotonic,
        )

        self._supervisor = ConnectivitySupervisor.from_config(
            self._config,
            link=self._link,
            session=self._session,
            topics=self._topics,
            monotonic=self._monotonic,
            health=self._health,
        )

        self._publisher = StatePublisher(
            session=self._session,
            link=self._link,
            topics=self._topics,
            client_id=self._client_id,
            target=self._config.device.target,
            build_timestamp=self._config.device.build_timestamp,
            monotonic=self._monotonic,
        )

        self._dispatcher = CommandDispatcher(
            max_response_size=self._config.commands.max_response_size
        )
        register_builtin_commands(self._dispatcher, self._reboot)
        self._dispatcher.seal()

        self._scheduler = HeartbeatScheduler(monotonic=self._monotonic)
        self._scheduler.on(10, self._publisher.send_cpu_state)
        self._scheduler.on(30, self._publisher.send_network_state)
        self._scheduler.on(60, self._publisher.send_sketch_state)
        self._scheduler.seal()

        self._interrupt = InterruptFlag()
        self._stop_event: Optional[asyncio.Event] = None
        self._signals_installed: list[signal.Signals] = []

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def topics(self) -> Topics:
        return self._topics

    @property
    def supervisor(self) -> ConnectivitySupervisor:
        return self._supervisor

    @property
    def dispatcher(self) -> CommandDispatcher:
        return self._dispatcher

    @property
    def scheduler(self) -> HeartbeatScheduler:
        return self._scheduler

    @property
    def reboot_timer(self) -> RebootTimer:
        return self._reboot

    @property
    def interrupt(self) -> InterruptFlag:
        return self._interrupt

    @property
    def health(self) -> HealthReporter:
        return self._health

    async def run(self) -> None:
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()

        LOGGER.info(
            "owl-beacon %s starting (target=%s, client id=%s, config=%s)",
            __version__,
            self._config.device.target,
            self._client_id,
            self._config.path,
        )

        try:
            await self._start_health_server()
            state = await self._supervisor.establish()
            if state is not ConnectivityState.LINK_UP_SESSION_UP:
                LOGGER.warning("Starting main loop without a session (%s)", state.value)
            self._publisher.log("Init complete, starting Main-Loop")

            interval = self._config.supervisor.loop_interval_seconds
            while not self._stop_event.is_set():
                await self.run_iteration()
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            LOGGER.info("owl-beacon received shutdown signal")
            raise
        finally:
            await self._shutdown()

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def run_iteration(self) -> None:
        await self._reboot.check()
        await self._supervisor.poll()
        self._pump_messages()
        await self._pump_updates()
        if self._interrupt.drain():
            LOGGER.info("Interrupt received, publishing state")
            self._publisher.send_all()
        self._scheduler.tick()

    def _pump_messages(self) -> int:
        messages = self._session.drain_messages()
        for message in messages:
            if message.topic != self._topics.cmd:
                LOGGER.debug("Ignoring message on %s", message.topic)
                continue
            text = self._dispatcher.normalize(message.payload)
            self._publisher.log(f'received MQTT-Message: "{text}"')
            response = self._dispatcher.dispatch(message.payload)
            self._publisher.send_result(response)
        return len(messages)

    async def _pump_updates(self) -> None:
        pump = self._update_pump
        if pump is None:
            return
        try:
            result = pump()
            if asyncio.iscoroutine(result):
                await result
        except Exception:
            LOGGER.exception("Update pump failed")

    def _on_session_disconnect(self, rc: int) -> None:
        LOGGER.warning("Session dropped (rc=%s); supervisor will reconnect", rc)
        asyncio.get_running_loop().create_task(
            self._health.update("session", False, f"disconnected (rc={rc})")
        )

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        handlers = {
            signal.SIGTERM: self.stop,
            signal.SIGINT: self.stop,
        }
        usr1 = getattr(signal, "SIGUSR1", None)
        if usr1 is not None:
            handlers[usr1] = self._interrupt.raise_flag

        for signum, handler in handlers.items():
            try:
                loop.add_signal_handler(signum, handler)
            except (NotImplementedError, RuntimeError, ValueError):
                LOGGER.debug("Signal handler for %s not installed", signum)
                continue
            self._signals_installed.append(signum)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for signum in self._signals_installed:
            loop.remove_signal_handler(signum)
        self._signals_installed.clear()

    async def _start_health_server(self) -> None:
        health = self._config.health
        if not health.enabled or health.port <= 0:
            return

        server = HealthServer(self._health, health.host, health.port)
        try:
            await server.start()
        except OSError as exc:
            LOGGER.error("Failed to start health endpoint: %s", exc)
        else:
            self._health_server = server

    async def _shutdown(self) -> None:
        self._remove_signal_handlers()

        if self._session.is_connected():
            with contextlib.suppress(MQTTConnectionError):
                self._session.publish(
                    self._topics.status,
                    self._config.session.status_offline.encode("utf-8"),
                    qos=1,
                    retain=True,
                )
        await self._session.disconnect()

        if self._health_server is not None:
            await self._health_server.stop()
            self._health_server = None

    @classmethod
    def start(cls, config: Optional[BeaconConfig] = None) -> None:
        instance = cls(config=config)
        configure_logging(
            instance._config.logging.level,
            log_path=instance._config.logging.path,
            log_network=instance._config.logging.log_network,
        )
        try:
            asyncio.run(instance.run())
        except KeyboardInterrupt:
            LOGGER.info("owl-beacon received shutdown signal")
