# couplesim/utils/runtime.py
"""Wall-clock stopwatch for the '[time] ... took N s' progress lines."""
from __future__ import annotations

import time


class RunTime:
    """Start/elapsed pair around ``time.perf_counter``."""

    def __init__(self) -> None:
        self._start: float | None = None

    def start(self) -> "RunTime":
        self._start = time.perf_counter()
        return self

    def elapsed(self) -> float:
        if self._start is None:
            return 0.0
        return time.perf_counter() - self._start
