"""Adapter modules for external integrations."""

from .link import HostLink, LinkError
from .mqtt import MQTTClient, MQTTConnectionError

__all__ = [
    "HostLink",
    "LinkError",
    "MQTTClient",
    "MQTTConnectionError",
]
