# couplesim/timestepping/base.py
"""
Per-process step-size controller interface.

Life cycle: UNINITIALIZED until the first ``next`` call, STEPPING while
steps remain, FINISHED once the end time is reached.

``next`` is fed the relative solution change of the attempted step (``+inf``
when its nonlinear solve did not converge) and the nonlinear iteration
count, and answers ``(accepted, dt)``: whether the attempted step is
acceptable to this controller and the size of the next step.
"""
from __future__ import annotations

import math
from abc import ABC, abstractmethod
from enum import Enum
from typing import Tuple

import numpy as np

from .time_step import TimeStep

__all__ = ["TimeStepperState", "TimeStepAlgorithm", "time_tolerance", "NONCONVERGED_ERROR"]

# Error fed to the controllers for a step whose nonlinear solve failed.
NONCONVERGED_ERROR = math.inf

_EPS = float(np.finfo(np.float64).eps)


def time_tolerance(t: float) -> float:
    """Absolute tolerance for comparing two points of the time axis near ``t``."""
    return 16.0 * _EPS * max(1.0, abs(t))


class TimeStepperState(Enum):
    UNINITIALIZED = "uninitialized"
    STEPPING = "stepping"
    FINISHED = "finished"


class TimeStepAlgorithm(ABC):
    def __init__(self, t0: float, t_end: float) -> None:
        if not t0 < t_end:
            raise ValueError(f"start time {t0:g} must be smaller than end time {t_end:g}")
        self._t_begin = float(t0)
        self._t_end = float(t_end)
        self.state = TimeStepperState.UNINITIALIZED

    def __repr__(self) -> str:
        return f"{type(self).__name__}(t0={self._t_begin:g}, t_end={self._t_end:g})"

    def begin(self) -> float:
        return self._t_begin

    def end(self) -> float:
        return self._t_end

    def _reached_end(self, t: float) -> bool:
        return t >= self._t_end or abs(t - self._t_end) < time_tolerance(self._t_end)

    @abstractmethod
    def next(self, solution_error: float, number_iterations: int,
             ts_previous: TimeStep, ts_current: TimeStep) -> Tuple[bool, float]:
        """Judge the attempted step ``ts_current`` and propose the next dt."""

    def reset_current_time_step(self, dt: float, ts_previous: TimeStep,
                                ts_current: TimeStep) -> None:
        """Record the step size the coupled system actually uses next.

        ``dt`` may be smaller than this controller's proposal because another
        process or an external constraint (output time, end time) asked for less.
        """

    def is_solution_error_computation_needed(self) -> bool:
        return False

    def can_reduce_timestep_size(self, ts_current: TimeStep, ts_previous: TimeStep) -> bool:
        return False
