"""
Clock sources for vesting computations.

Vesting math only ever sees integer Unix timestamps. SystemClock never moves
backwards even if the host clock does; ManualClock is driven explicitly by
tests and by the CLI's --at option.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol, Union, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    def now(self) -> int:
        """Current Unix timestamp in seconds."""
        ...


class SystemClock:
    """Wall clock clamped to be monotonically non-decreasing."""

    def __init__(self, time_provider: Callable[[], float] | None = None) -> None:
        self._time_provider = time_provider or time.time
        self._last = 0
        self._lock = threading.Lock()

    def now(self) -> int:
        current = int(self._time_provider())
        with self._lock:
            if current > self._last:
                self._last = current
            return self._last


class ManualClock:
    """Settable clock. Refuses to move backwards."""

    def __init__(self, start: int = 0) -> None:
        self._now = int(start)

    def now(self) -> int:
        return self._now

    def set(self, timestamp: int) -> None:
        if timestamp < self._now:
            raise ValueError(f"Clock cannot move backwards ({timestamp} < {self._now})")
        self._now = int(timestamp)

    def advance(self, seconds: int) -> int:
        if seconds < 0:
            raise ValueError("Cannot advance clock by a negative amount")
        self._now += seconds
        return self._now


ClockLike = Union[Clock, Callable[[], int]]


def as_clock(source: ClockLike | None) -> Clock:
    """Accept a Clock, a bare time_provider callable, or None (system time)."""
    if source is None:
        return SystemClock()
    if isinstance(source, Clock):
        return source
    if callable(source):
        return SystemClock(time_provider=source)
    raise TypeError(f"Unsupported clock source: {source!r}")
