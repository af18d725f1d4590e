"""Nested heartbeat cadences driven from a single tick.

Tiers are checked strictly inside one another: the 10 s tier is only looked
at when the 1 s tier fires, the 30 s tier only when the 10 s tier fires, and
so on. A firing tier records the 1 s heartbeat's timestamp rather than its
own clock reading, which keeps every cadence phase-locked to the 1 s tick.

Thread-safety: not thread-safe. `tick()` must be called from the control
loop only, and callbacks run synchronously inside it.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .. import constants

LOGGER = logging.getLogger(__name__)

HeartbeatCallback = Callable[[], object]


class SchedulerConfigurationError(RuntimeError):
    """Raised when callbacks are registered against an unknown or sealed schedule."""


@dataclass
class _Tier:
    interval: float
    last_fired: float
    callbacks: List[HeartbeatCallback] = field(default_factory=list)


class HeartbeatScheduler:
    """Fires registered callbacks once per 1/10/30/60 second heartbeat."""

    def __init__(
        self,
        *,
        monotonic: Optional[Callable[[], float]] = None,
        tiers: Sequence[float] = constants.HEARTBEAT_TIERS,
    ) -> None:
        if not tiers:
            raise SchedulerConfigurationError("At least one cadence tier is required")
        if list(tiers) != sorted(tiers) or len(set(tiers)) != len(tiers):
            raise SchedulerConfigurationError(
                f"Cadence tiers must be strictly increasing: {tuple(tiers)}"
            )

        self._monotonic = monotonic or time.monotonic
        start = self._monotonic()
        self._tiers = [_Tier(interval=float(value), last_fired=start) for value in tiers]
        self._by_interval: Dict[float, _Tier] = {tier.interval: tier for tier in self._tiers}
        self._sealed = False

    @property
    def intervals(self) -> Tuple[float, ...]:
        return tuple(tier.interval for tier in self._tiers)

    def on(self, interval: float, callback: HeartbeatCallback) -> None:
        """Register `callback` to run every time the `interval` tier fires."""
        if self._sealed:
            raise SchedulerConfigurationError("Scheduler is sealed")
        tier = self._by_interval.get(float(interval))
        if tier is None:
            raise SchedulerConfigurationError(
                f"No cadence tier for {interval}s (tiers: {self.intervals})"
            )
        tier.callbacks.append(callback)

    def seal(self) -> None:
        self._sealed = True

    def tick(self) -> Tuple[float, ...]:
        """Fire every tier that is due; returns the intervals that fired."""

        heartbeat = self._tiers[0]
        if self._monotonic() - heartbeat.last_fired <= heartbeat.interval:
            return ()

        heartbeat.last_fired = self._monotonic()
        self._fire(heartbeat)
        fired = [heartbeat.interval]

        for tier in self._tiers[1:]:
            if self._monotonic() - tier.last_fired <= tier.interval:
                break
            tier.last_fired = heartbeat.last_fired
            self._fire(tier)
            fired.append(tier.interval)

        return tuple(fired)

    def _fire(self, tier: _Tier) -> None:
        for callback in tier.callbacks:
            try:
                callback()
            except Exception:
                LOGGER.exception("Heartbeat callback for %ss tier failed", tier.interval)
