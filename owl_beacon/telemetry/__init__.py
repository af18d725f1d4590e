"""Scheduled state reporting: heartbeat cadences and snapshot publishing."""

from .cadence import HeartbeatScheduler, SchedulerConfigurationError
from .publisher import StatePublisher, encode_snapshot
from .snapshots import compose_client_id

__all__ = [
    "HeartbeatScheduler",
    "SchedulerConfigurationError",
    "StatePublisher",
    "compose_client_id",
    "encode_snapshot",
]
