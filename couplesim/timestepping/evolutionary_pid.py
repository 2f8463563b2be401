# couplesim/timestepping/evolutionary_pid.py
"""
Error-based adaptive stepping (PID controller on the relative solution change).

With e_n the relative change of the step just taken and TOL the target,
the new step size is

    h_{n+1} = (e_{n-1}/e_n)^kP · (TOL/e_n)^kI · (e_{n-1}²/(e_n e_{n-2}))^kD · h_n

falling back to the PI / I forms while fewer past errors are known. A step
with e_n > TOL (or a failed nonlinear solve, fed as e_n = +inf) is rejected
and retried with ``h·TOL/e_n`` (halved for a non-finite error).

Every proposal is limited to ``[rel_h_min·h_n, rel_h_max·h_n]``, never grows
right after a rejection, and is clamped to ``[h_min, h_max]``. The very first
step uses ``h0`` verbatim.
"""
from __future__ import annotations

import math
from typing import List, Tuple

import numpy as np

from couplesim.utils import logger

from .base import TimeStepAlgorithm, TimeStepperState, time_tolerance
from .time_step import TimeStep

__all__ = ["EvolutionaryPIDcontroller"]

_EPS = float(np.finfo(np.float64).eps)


class EvolutionaryPIDcontroller(TimeStepAlgorithm):
    kP = 0.075
    kI = 0.175
    kD = 0.01

    def __init__(
        self,
        t0: float,
        t_end: float,
        h0: float,
        h_min: float,
        h_max: float,
        rel_h_min: float,
        rel_h_max: float,
        tol: float,
    ) -> None:
        super().__init__(t0, t_end)
        if not (0.0 < h_min <= h0 <= h_max):
            raise ValueError("need 0 < h_min <= h0 <= h_max")
        if not (0.0 < rel_h_min < 1.0 <= rel_h_max):
            raise ValueError("need 0 < rel_h_min < 1 <= rel_h_max")
        if tol <= 0.0:
            raise ValueError("tol must be positive")
        self.h0 = float(h0)
        self.h_min = float(h_min)
        self.h_max = float(h_max)
        self.rel_h_min = float(rel_h_min)
        self.rel_h_max = float(rel_h_max)
        self.tol = float(tol)

        self._errors: List[float] = []   # e_{n-1}, e_{n-2} (most recent first)
        self._previous_rejected = False
        self._h_predicted = self.h0
        self._forced_smaller = False

    def is_solution_error_computation_needed(self) -> bool:
        return True

    def can_reduce_timestep_size(self, ts_current: TimeStep, ts_previous: TimeStep) -> bool:
        return ts_current.dt > self.h_min + time_tolerance(self.h_min)

    def next(self, solution_error: float, number_iterations: int,
             ts_previous: TimeStep, ts_current: TimeStep) -> Tuple[bool, float]:
        e_n = float(solution_error)

        if ts_current.step_number == 0:
            self.state = TimeStepperState.STEPPING
            self._errors.clear()
            self._previous_rejected = False
            self._h_predicted = self.h0
            return True, self.h0

        if self._reached_end(ts_current.time) and ts_current.accepted and e_n <= self.tol:
            self.state = TimeStepperState.FINISHED

        h_n = ts_current.dt

        # step rejected
        if not ts_current.accepted or not math.isfinite(e_n) or e_n > self.tol:
            if math.isfinite(e_n) and e_n > _EPS:
                h_new = h_n * self.tol / e_n
            else:
                h_new = 0.5 * h_n
            h_new = self._limit_step_size(h_new, h_n, after_rejection=True)
            logger.warn(
                f"This step is rejected due to the relative change from the solution "
                f"of the previous time step to the current solution exceeding the "
                f"tolerance of {self.tol:g}. The time step is repeated with step size {h_new:g}."
            )
            self._previous_rejected = True
            self._forced_smaller = False
            self._h_predicted = h_new
            return False, h_new

        # step accepted
        h_base = self._h_predicted if self._forced_smaller else h_n
        if e_n < _EPS:
            h_new = h_base * self.rel_h_max
        elif len(self._errors) >= 2:
            e1, e2 = (max(e, _EPS) for e in self._errors[:2])
            h_new = (
                (e1 / e_n) ** self.kP
                * (self.tol / e_n) ** self.kI
                * (e1 * e1 / (e_n * e2)) ** self.kD
                * h_base
            )
        elif len(self._errors) == 1:
            e1 = max(self._errors[0], _EPS)
            h_new = (e1 / e_n) ** self.kP * (self.tol / e_n) ** self.kI * h_base
        else:
            h_new = (self.tol / e_n) ** self.kI * h_base

        h_new = self._limit_step_size(h_new, h_base, after_rejection=self._previous_rejected)

        self._errors.insert(0, e_n)
        del self._errors[2:]
        self._previous_rejected = False
        self._h_predicted = h_new
        return True, h_new

    def reset_current_time_step(self, dt: float, ts_previous: TimeStep,
                                ts_current: TimeStep) -> None:
        self._forced_smaller = 0.0 < dt < self._h_predicted - time_tolerance(self._h_predicted)

    def _limit_step_size(self, h_new: float, h_n: float, *, after_rejection: bool) -> float:
        h = min(max(h_new, self.rel_h_min * h_n), self.rel_h_max * h_n)
        if after_rejection:
            h = min(h, h_n)
        return min(max(h, self.h_min), self.h_max)
