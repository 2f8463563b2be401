# couplesim/timestepping/fixed.py
"""
Fixed time stepping: a predetermined sequence of step sizes.

The sizes are turned into absolute target times
``t_m = t0 + Σ_{i<=m} Δt_i``; ``next`` answers the distance from the current
time to the next target. A step shortened by an external constraint (e.g. a
fixed output time) therefore does not shift the remaining targets: the next
step simply finishes the interrupted one.

Once the end time is reached ``next`` returns ``(False, 0.0)``, the "no more
work" signal, which the time loop does not count as a rejection.
"""
from __future__ import annotations

import math
from typing import List, Sequence, Tuple

import numpy as np

from .base import TimeStepAlgorithm, TimeStepperState, time_tolerance
from .time_step import TimeStep

__all__ = ["FixedTimeStepping"]


class FixedTimeStepping(TimeStepAlgorithm):
    """
    Parameters
    ----------
    t0, t_end : float
        Start and end time.
    dt : float or sequence of float
        Uniform step size (``ceil((t_end - t0)/dt)`` steps, the last one
        shortened to land on ``t_end``) or the explicit list of step sizes.
    """

    def __init__(self, t0: float, t_end: float, dt: float | Sequence[float]) -> None:
        super().__init__(t0, t_end)
        if np.ndim(dt) == 0:
            dt = float(dt)
            if dt <= 0.0:
                raise ValueError("dt must be positive")
            n = max(1, math.ceil((self._t_end - self._t_begin) / dt - 1e-12))
            dts = [dt] * n
        else:
            dts = [float(v) for v in dt]
            if not dts or min(dts) <= 0.0:
                raise ValueError("all step sizes must be positive")

        targets = self._t_begin + np.cumsum(dts)
        if targets[-1] < self._t_end - time_tolerance(self._t_end):
            raise ValueError(
                f"the step sizes add up to {targets[-1]:g}, short of the end time {self._t_end:g}"
            )
        targets = np.minimum(targets, self._t_end)
        self._targets: List[float] = sorted(set(float(t) for t in targets))
        self._dts_used: List[float] = []

    @property
    def target_times(self) -> List[float]:
        return list(self._targets)

    @property
    def used_step_sizes(self) -> List[float]:
        return list(self._dts_used)

    def next(self, solution_error: float, number_iterations: int,
             ts_previous: TimeStep, ts_current: TimeStep) -> Tuple[bool, float]:
        t = ts_current.time
        if self._reached_end(t):
            self.state = TimeStepperState.FINISHED
            return False, 0.0
        self.state = TimeStepperState.STEPPING
        tol = time_tolerance(t)
        t_next = next(tt for tt in self._targets if tt > t + tol)
        return True, t_next - t

    def reset_current_time_step(self, dt: float, ts_previous: TimeStep,
                                ts_current: TimeStep) -> None:
        if dt > 0.0:
            self._dts_used.append(dt)
