"""Constants used across the owl-beacon package."""

from __future__ import annotations

from pathlib import Path

APP_NAME = "owl-beacon"
CONFIG_ENV_VAR = "OWL_BEACON_CONFIG"
DEFAULT_CONFIG_FILENAME = f"{APP_NAME}.cfg"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / APP_NAME / DEFAULT_CONFIG_FILENAME
DEFAULT_LOG_PATH = Path.home() / ".local" / "state" / APP_NAME / f"{APP_NAME}.log"

DEFAULT_BROKER_HOST = "mqtt.ohs42.de"
DEFAULT_BROKER_PORT = 1883
DEFAULT_TOPIC_PREFIX = "esp32/default"
DEFAULT_CLIENT_ID_PREFIX = "esp32"
DEFAULT_TARGET = "UNKNOWN"

STATUS_ONLINE = "ONLINE"
STATUS_OFFLINE = "OFFLINE"

# Sub-topics, joined to the configured prefix
TOPIC_STATUS = "status"
TOPIC_CMD = "cmd"
TOPIC_RESULT = "result"
TOPIC_CPU = "cpu"
TOPIC_NETWORK = "network"
TOPIC_SKETCH = "sketch"
TOPIC_LOG = "log"

HEARTBEAT_TIERS = (1.0, 10.0, 30.0, 60.0)
