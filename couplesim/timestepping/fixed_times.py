# couplesim/timestepping/fixed_times.py
"""
External step-size constraints ``(t, dt) -> dt'``.

The time loop applies them after taking the minimum over all controllers'
proposals: one keeps the step from jumping over an output time requested by
any output sink, one keeps it from jumping over the end time.
"""
from __future__ import annotations

import bisect
from typing import Callable, Iterable, List, Sequence

import numpy as np

from .base import time_tolerance

__all__ = [
    "TimeStepConstraint",
    "calculate_unique_fixed_times",
    "possibly_clamp_dt_to_next_fixed_time",
    "fixed_times_constraint",
    "end_time_constraint",
]

TimeStepConstraint = Callable[[float, float], float]


def calculate_unique_fixed_times(outputs: Iterable) -> List[float]:
    """Sorted union of every output's ``get_fixed_output_times()``."""
    times: List[float] = []
    for output in outputs:
        times.extend(float(t) for t in output.get_fixed_output_times())
    return [float(t) for t in np.unique(np.asarray(times, dtype=np.float64))]


def possibly_clamp_dt_to_next_fixed_time(t: float, dt: float,
                                         fixed_output_times: Sequence[float]) -> float:
    """Shorten ``dt`` so that the step lands exactly on the next fixed time.

    A fixed time that ``t`` already sits on (within round-off) is skipped.
    """
    k = bisect.bisect_right(fixed_output_times, t + time_tolerance(t))
    if k == len(fixed_output_times):
        return dt
    t_fixed = fixed_output_times[k]
    if t + dt > t_fixed + time_tolerance(t_fixed):
        return t_fixed - t
    return dt


def fixed_times_constraint(fixed_output_times: Sequence[float]) -> TimeStepConstraint:
    times = sorted(float(t) for t in fixed_output_times)
    return lambda t, dt: possibly_clamp_dt_to_next_fixed_time(t, dt, times)


def end_time_constraint(end_time: float) -> TimeStepConstraint:
    def clamp(t: float, dt: float) -> float:
        if t < end_time and t + dt > end_time:
            return end_time - t
        return dt
    return clamp
