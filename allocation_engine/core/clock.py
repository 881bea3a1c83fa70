"""Clock sources. All engine timestamps are monotonic integers."""

from __future__ import annotations

import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time, in integer clock units."""

    @abstractmethod
    def now(self) -> int:
        ...


class TickClock(Clock):
    """
    Manually advanced clock.

    One tick corresponds to one block of the original chain cadence, so the
    default expiration window of 144 ticks is roughly one day.
    """

    def __init__(self, start: int = 0) -> None:
        if start < 0:
            raise ValueError(f"start must be >= 0, got {start}")
        self._now = start

    def now(self) -> int:
        return self._now

    def advance(self, ticks: int = 1) -> int:
        if ticks < 0:
            raise ValueError(f"cannot move clock backwards by {ticks}")
        self._now += ticks
        return self._now


class WallClock(Clock):
    """Integer UNIX seconds; never goes backwards within a process."""

    def __init__(self) -> None:
        self._last = 0

    def now(self) -> int:
        self._last = max(self._last, int(time.time()))
        return self._last


def make_clock(kind: str) -> Clock:
    if kind == "tick":
        return TickClock()
    if kind == "wall":
        return WallClock()
    raise ValueError(f"Unknown clock kind: {kind}")
