"""Injectable time source for visit timestamps and frecency aging."""

from __future__ import annotations

import time
from typing import Callable


class VisitClock:
    """Wall clock in microseconds with strictly increasing default visit times.

    Default visit times advance at least one millisecond per call, so visits
    added in a tight loop still have a well-defined recency order.

    Args:
        time_func: Returns seconds since the epoch. Tests pass a fake.
    """

    def __init__(self, time_func: Callable[[], float] = time.time):
        self._time_func = time_func
        self._last_ms = 0

    def now(self) -> int:
        return int(self._time_func() * 1_000_000)

    def next_visit_time(self) -> int:
        now_ms = int(self._time_func() * 1000)
        if now_ms <= self._last_ms:
            now_ms = self._last_ms + 1
        self._last_ms = now_ms
        return now_ms * 1000
