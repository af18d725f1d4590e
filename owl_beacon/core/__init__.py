"""Core primitives for owl-beacon."""

from .protocols import InboundMessage, LastWill, LinkClient, SessionClient, UpdatePump
from .signals import InterruptFlag

__all__ = [
    "InboundMessage",
    "InterruptFlag",
    "LastWill",
    "LinkClient",
    "SessionClient",
    "UpdatePump",
]
