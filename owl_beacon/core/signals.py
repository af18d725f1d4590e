"""Single-producer/single-consumer signal flag."""

from __future__ import annotations

import threading


class InterruptFlag:
    """Boolean raised from a signal handler or foreign thread.

    The control loop consumes it with :meth:`drain`, which reports whether the
    flag was raised since the previous drain and clears it in the same step.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._raised = False

    def raise_flag(self) -> None:
        with self._lock:
            self._raised = True

    def drain(self) -> bool:
        with self._lock:
            raised = self._raised
            self._raised = False
        return raised

    @property
    def is_raised(self) -> bool:
        with self._lock:
            return self._raised
