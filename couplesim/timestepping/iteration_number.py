# couplesim/timestepping/iteration_number.py
"""
Iteration-number based adaptive stepping.

The nonlinear iteration count of the last step selects a multiplier for the
next step size: few iterations grow the step, many iterations shrink it.

    iter_times  = [1,   4,   8]
    multipliers = [2.0, 1.0, 0.5]
    → 1–3 iterations: ×2, 4–7: ×1, 8 and more: ×0.5

A step whose nonlinear solve failed, or that needed more than
``max_iterations`` iterations, is rejected and retried with the smallest
multiplier applied. The first step uses ``initial_dt`` verbatim; every
proposal is clamped to ``[min_dt, max_dt]``.
"""
from __future__ import annotations

import bisect
from typing import Optional, Sequence, Tuple

from couplesim.utils import logger

from .base import TimeStepAlgorithm, TimeStepperState, time_tolerance
from .time_step import TimeStep

__all__ = ["IterationNumberBasedTimeStepping"]


class IterationNumberBasedTimeStepping(TimeStepAlgorithm):
    def __init__(
        self,
        t0: float,
        t_end: float,
        min_dt: float,
        max_dt: float,
        initial_dt: float,
        iter_times: Sequence[int],
        multipliers: Sequence[float],
        max_iterations: Optional[int] = None,
    ) -> None:
        super().__init__(t0, t_end)
        if not (0.0 < min_dt <= initial_dt <= max_dt):
            raise ValueError("need 0 < min_dt <= initial_dt <= max_dt")
        if not iter_times or len(iter_times) != len(multipliers):
            raise ValueError("iter_times and multipliers must be non-empty and of equal length")
        if list(iter_times) != sorted(iter_times):
            raise ValueError("iter_times must be increasing")
        if min(multipliers) <= 0.0 or min(multipliers) >= 1.0:
            raise ValueError("the smallest multiplier must lie in (0, 1) so that rejections shrink dt")
        self.min_dt = float(min_dt)
        self.max_dt = float(max_dt)
        self.initial_dt = float(initial_dt)
        self.iter_times = [int(n) for n in iter_times]
        self.multipliers = [float(m) for m in multipliers]
        self.max_iterations = None if max_iterations is None else int(max_iterations)
        self._previous_rejected = False

    def can_reduce_timestep_size(self, ts_current: TimeStep, ts_previous: TimeStep) -> bool:
        return ts_current.dt > self.min_dt + time_tolerance(self.min_dt)

    def find_multiplier(self, number_iterations: int) -> float:
        k = bisect.bisect_right(self.iter_times, int(number_iterations)) - 1
        return self.multipliers[max(k, 0)]

    def next(self, solution_error: float, number_iterations: int,
             ts_previous: TimeStep, ts_current: TimeStep) -> Tuple[bool, float]:
        if ts_current.step_number == 0:
            self.state = TimeStepperState.STEPPING
            self._previous_rejected = False
            return True, self.initial_dt

        h_n = ts_current.dt
        too_many = self.max_iterations is not None and number_iterations > self.max_iterations
        if not ts_current.accepted or too_many:
            h_new = self._clamp(h_n * min(self.multipliers))
            logger.warn(
                f"Step rejected after {number_iterations} nonlinear iterations; "
                f"repeating it with step size {h_new:g}."
            )
            self._previous_rejected = True
            return False, h_new

        if self._reached_end(ts_current.time):
            self.state = TimeStepperState.FINISHED

        multiplier = self.find_multiplier(number_iterations)
        if self._previous_rejected:
            multiplier = min(multiplier, 1.0)
        self._previous_rejected = False
        return True, self._clamp(h_n * multiplier)

    def _clamp(self, dt: float) -> float:
        return min(max(dt, self.min_dt), self.max_dt)
