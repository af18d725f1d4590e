"""owl-beacon: MQTT device agent with connectivity supervision."""

from .version import __version__

__all__ = ["__version__"]
