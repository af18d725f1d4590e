"""Configuration loader for owl-beacon."""

from __future__ import annotations

import os
from configparser import ConfigParser
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import constants


@dataclass(slots=True)
class DeviceConfig:
    target: str = constants.DEFAULT_TARGET
    client_id_prefix: str = constants.DEFAULT_CLIENT_ID_PREFIX
    interface: Optional[str] = None
    build_timestamp: Optional[str] = None


@dataclass(slots=True)
class SessionConfig:
    broker_host: str = constants.DEFAULT_BROKER_HOST
    broker_port: int = constants.DEFAULT_BROKER_PORT
    username: Optional[str] = None
    password: Optional[str] = None
    topic_prefix: str = constants.DEFAULT_TOPIC_PREFIX
    keepalive: int = 60
    connect_timeout_seconds: float = 10.0
    status_online: str = constants.STATUS_ONLINE
    status_offline: str = constants.STATUS_OFFLINE


@dataclass(slots=True)
class LinkConfig:
    probe_host: str = "1.1.1.1"
    probe_port: int = 53
    connect_command: Optional[str] = None
    disconnect_command: Optional[str] = None
    command_timeout_seconds: float = 15.0
    max_tries: int = 10
    retry_seconds: float = 2.0


@dataclass(slots=True)
class SupervisorConfig:
    monitor_interval_seconds: float = 10.0
    session_retry_seconds: float = 5.0
    loop_interval_seconds: float = 0.05


@dataclass(slots=True)
class CommandConfig:
    max_response_size: int = 64


@dataclass(slots=True)
class RebootConfig:
    delay_seconds: float = 5.0
    grace_seconds: float = 1.0
    command: Optional[str] = None


@dataclass(slots=True)
class LoggingConfig:
    level: str = "INFO"
    path: Optional[Path] = None
    log_network: bool = False


@dataclass(slots=True)
class HealthConfig:
    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 0


@dataclass(slots=True)
class BeaconConfig:
    device: DeviceConfig
    session: SessionConfig
    link: LinkConfig
    supervisor: SupervisorConfig
    commands: CommandConfig
    reboot: RebootConfig
    logging: LoggingConfig
    health: HealthConfig
    raw: ConfigParser
    path: Path


def default_config_path() -> Path:
    override = os.environ.get(constants.CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return constants.DEFAULT_CONFIG_PATH


def _optional(parser: ConfigParser, section: str, option: str) -> Optional[str]:
    value = parser.get(section, option, fallback="").strip()
    return value or None


def load_config(path: Optional[Path] = None) -> BeaconConfig:
    """Load configuration from disk, applying defaults where necessary."""

    config_path = path or default_config_path()
    parser = ConfigParser()
    parser.read_dict(
        {
            "device": {
                "target": constants.DEFAULT_TARGET,
                "client_id_prefix": constants.DEFAULT_CLIENT_ID_PREFIX,
            },
            "session": {
                "broker_host": constants.DEFAULT_BROKER_HOST,
                "broker_port": str(constants.DEFAULT_BROKER_PORT),
                "topic_prefix": constants.DEFAULT_TOPIC_PREFIX,
                "keepalive": "60",
                "connect_timeout_seconds": "10.0",
                "status_online": constants.STATUS_ONLINE,
                "status_offline": constants.STATUS_OFFLINE,
            },
            "link": {
                "probe_host": "1.1.1.1",
                "probe_port": "53",
                "command_timeout_seconds": "15.0",
                "max_tries": "10",
                "retry_seconds": "2.0",
            },
            "supervisor": {
                "monitor_interval_seconds": "10.0",
                "session_retry_seconds": "5.0",
                "loop_interval_seconds": "0.05",
            },
            "commands": {
                "max_response_size": "64",
            },
            "reboot": {
                "delay_seconds": "5.0",
                "grace_seconds": "1.0",
            },
            "logging": {
                "level": "INFO",
                "log_network": "false",
            },
            "health": {
                "enabled": "false",
                "host": "127.0.0.1",
                "port": "0",
            },
        }
    )

    if config_path.exists():
        parser.read(config_path)

    broker_host_value = parser.get("session", "broker_host")
    broker_port_value = parser.getint(
        "session", "broker_port", fallback=constants.DEFAULT_BROKER_PORT
    )

    if ":" in broker_host_value:
        host_part, port_part = broker_host_value.rsplit(":", 1)
        try:
            parsed_port = int(port_part)
        except ValueError:
            pass
        else:
            broker_host_value = host_part
            broker_port_value = parsed_port
            parser.set("session", "broker_host", host_part)
            parser.set("session", "broker_port", str(parsed_port))

    device = DeviceConfig(
        target=parser.get("device", "target"),
        client_id_prefix=parser.get("device", "client_id_prefix"),
        interface=_optional(parser, "device", "interface"),
        build_timestamp=_optional(parser, "device", "build_timestamp"),
    )

    session = SessionConfig(
        broker_host=broker_host_value,
        broker_port=broker_port_value,
        username=_optional(parser, "session", "username"),
        password=_optional(parser, "session", "password"),
        topic_prefix=parser.get("session", "topic_prefix").strip("/"),
        keepalive=max(1, parser.getint("session", "keepalive", fallback=60)),
        connect_timeout_seconds=max(
            0.1,
            parser.getfloat("session", "connect_timeout_seconds", fallback=10.0),
        ),
        status_online=parser.get("session", "status_online"),
        status_offline=parser.get("session", "status_offline"),
    )

    link = LinkConfig(
        probe_host=parser.get("link", "probe_host"),
        probe_port=parser.getint("link", "probe_port", fallback=53),
        connect_command=_optional(parser, "link", "connect_command"),
        disconnect_command=_optional(parser, "link", "disconnect_command"),
        command_timeout_seconds=max(
            0.1, parser.getfloat("link", "command_timeout_seconds", fallback=15.0)
        ),
        max_tries=max(0, parser.getint("link", "max_tries", fallback=10)),
        retry_seconds=max(0.0, parser.getfloat("link", "retry_seconds", fallback=2.0)),
    )

    supervisor = SupervisorConfig(
        monitor_interval_seconds=max(
            0.0,
            parser.getfloat(
                "supervisor", "monitor_interval_seconds", fallback=10.0
            ),
        ),
        session_retry_seconds=max(
            0.0,
            parser.getfloat("supervisor", "session_retry_seconds", fallback=5.0),
        ),
        loop_interval_seconds=max(
            0.001,
            parser.getfloat("supervisor", "loop_interval_seconds", fallback=0.05),
        ),
    )

    commands = CommandConfig(
        max_response_size=max(
            1, parser.getint("commands", "max_response_size", fallback=64)
        ),
    )

    reboot = RebootConfig(
        delay_seconds=max(
            0.0, parser.getfloat("reboot", "delay_seconds", fallback=5.0)
        ),
        grace_seconds=max(
            0.0, parser.getfloat("reboot", "grace_seconds", fallback=1.0)
        ),
        command=_optional(parser, "reboot", "command"),
    )

    log_path_value = _optional(parser, "logging", "path")
    logging_config = LoggingConfig(
        level=parser.get("logging", "level", fallback="INFO"),
        path=Path(log_path_value).expanduser() if log_path_value else None,
        log_network=parser.getboolean("logging", "log_network", fallback=False),
    )

    health = HealthConfig(
        enabled=parser.getboolean("health", "enabled", fallback=False),
        host=parser.get("health", "host", fallback="127.0.0.1"),
        port=parser.getint("health", "port", fallback=0),
    )

    return BeaconConfig(
        device=device,
        session=session,
        link=link,
        supervisor=supervisor,
        commands=commands,
        reboot=reboot,
        logging=logging_config,
        health=health,
        raw=parser,
        path=config_path,
    )


def save_config(config: BeaconConfig) -> None:
    """Persist the current configuration to disk."""

    config_path = config.path
    config_path.parent.mkdir(parents=True, exist_ok=True)
    with config_path.open("w", encoding="utf-8") as stream:
        config.raw.write(stream)
