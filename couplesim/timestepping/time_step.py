# couplesim/timestepping/time_step.py
"""Time-step record kept per process as a (previous, current) pair."""
from __future__ import annotations

from dataclasses import dataclass

__all__ = ["TimeStep", "update_time_steps"]


@dataclass(slots=True)
class TimeStep:
    """One point of the time axis.

    Attributes
    ----------
    time : float
        Time at the end of the step.
    step_number : int
        0 for the initial state, incremented by every accepted step.
    dt : float
        Size of the step that led to ``time`` (0 for the initial state).
    accepted : bool
        Whether the nonlinear solve of this step converged.
    """
    time: float
    step_number: int = 0
    dt: float = 0.0
    accepted: bool = True

    def assign(self, other: "TimeStep") -> None:
        self.time = other.time
        self.step_number = other.step_number
        self.dt = other.dt
        self.accepted = other.accepted

    def advanced(self, dt: float) -> "TimeStep":
        return TimeStep(self.time + dt, self.step_number + 1, dt, True)


def update_time_steps(dt: float, previous: TimeStep, current: TimeStep) -> None:
    """Shift the pair by one step of size ``dt`` (in place)."""
    previous.assign(current)
    current.assign(current.advanced(dt))
