"""Protocol definitions for the link and session collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol


@dataclass(frozen=True, slots=True)
class LastWill:
    """Message the broker publishes on our behalf if the session drops."""

    topic: str
    payload: str
    qos: int = 1
    retain: bool = True


@dataclass(frozen=True, slots=True)
class InboundMessage:
    topic: str
    payload: bytes


class LinkClient(Protocol):
    """Minimal contract for the underlying network link."""

    async def connect(self) -> None:
        """(Re)establish the link. Must return within its own timeout."""
        ...

    async def disconnect(self) -> None:
        """Drop the link so the next connect starts clean."""
        ...

    def is_connected(self) -> bool:
        ...

    def local_address(self) -> Optional[str]:
        """Local IPv4 address, or None when no route is available."""
        ...

    def hardware_address(self) -> bytes:
        """Six-byte hardware (MAC) address used to derive the client id."""
        ...


class SessionClient(Protocol):
    """Minimal contract for the publish/subscribe session."""

    async def connect(self, *, will: LastWill) -> None:
        """Connect with a last will; raises on rejection or timeout."""
        ...

    async def disconnect(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...

    def publish(
        self, topic: str, payload: bytes, qos: int = 0, retain: bool = False
    ) -> None:
        ...

    def subscribe(self, topic: str, qos: int = 0) -> None:
        ...

    def drain_messages(self) -> list[InboundMessage]:
        """Return and forget every message received since the last drain."""
        ...


UpdatePump = Callable[[], Awaitable[None] | None]
