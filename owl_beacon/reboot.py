"""Deferred, single-shot restart armed by the ``reset`` command."""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import subprocess
import sys
import time
from typing import Awaitable, Callable, Optional

from .config import RebootConfig

LOGGER = logging.getLogger(__name__)

RestartAction = Callable[[], None]


def restart_process() -> None:
    """Replace the running interpreter with a fresh copy of this process."""
    LOGGER.warning("Restarting: re-executing %s", " ".join(sys.argv))
    logging.shutdown()
    os.execv(sys.executable, [sys.executable, *sys.argv])


def run_restart_command(command: str) -> RestartAction:
    argv = shlex.split(command)

    def _restart() -> None:
        LOGGER.warning("Restarting: running %s", command)
        result = subprocess.run(argv, check=False)  # nosec B603 - operator-configured command
        if result.returncode != 0:
            LOGGER.error("Restart command exited with %s", result.returncode)

    return _restart


def build_restart_action(config: RebootConfig) -> RestartAction:
    if config.command:
        return run_restart_command(config.command)
    return restart_process


class RebootTimer:
    """Idle -> Armed -> (delay elapsed) -> restart.

    Re-arming while armed restarts the countdown; there is never more than
    one pending request.
    """

    def __init__(
        self,
        *,
        delay_seconds: float = 5.0,
        grace_seconds: float = 1.0,
        restart: Optional[RestartAction] = None,
        monotonic: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self.delay_seconds = delay_seconds
        self.grace_seconds = grace_seconds
        self._restart = restart or restart_process
        self._monotonic = monotonic or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._armed = False
        self._armed_at = 0.0

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def remaining(self) -> Optional[float]:
        """Seconds left before the restart fires, or None when idle."""
        if not self._armed:
            return None
        return max(0.0, self.delay_seconds - (self._monotonic() - self._armed_at))

    def arm(self) -> None:
        if self._armed:
            LOGGER.info("Reboot already pending; restarting countdown")
        else:
            LOGGER.warning("Reboot requested in %.1f seconds", self.delay_seconds)
        self._armed = True
        self._armed_at = self._monotonic()

    async def check(self) -> bool:
        """Fire the restart once the delay has fully elapsed since the last arm."""

        if not self._armed:
            return False
        if self._monotonic() - self._armed_at <= self.delay_seconds:
            return False

        self._armed = False
        await self._sleep(self.grace_seconds)
        self._restart()
        return True
