"""Heartbeat tracking for the physical sensor source.

Status is evaluated lazily: ``status()`` compares the age of the last
recorded activity with the timeout at call time, so there are no timers and
no transition events.  One tracker covers the whole source, not each sensor.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import StrEnum
from threading import Lock


class LivenessStatus(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class LivenessTracker:
    def __init__(
        self,
        timeout_s: float = 5.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be positive, got {timeout_s!r}")
        self.timeout_s = float(timeout_s)
        self._clock = clock
        self._last_activity: float | None = None
        self._lock = Lock()

    def record_activity(self) -> None:
        now = self._clock()
        with self._lock:
            self._last_activity = now

    def last_activity_age_s(self) -> float | None:
        with self._lock:
            last = self._last_activity
        if last is None:
            return None
        return max(0.0, self._clock() - last)

    def status(self) -> LivenessStatus:
        age = self.last_activity_age_s()
        if age is not None and age < self.timeout_s:
            return LivenessStatus.ONLINE
        return LivenessStatus.OFFLINE
