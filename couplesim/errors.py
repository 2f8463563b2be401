# couplesim/errors.py
"""
Fatal conditions of a time-loop run.

Per-step numerical failures (a nonlinear solve that does not converge, a
staggered coupling loop that runs out of iterations) are *not* exceptions:
the time loop logs them and recovers by rejecting the step or by carrying on
with the last coupled state. Only the classes below terminate a run.
"""
from __future__ import annotations

__all__ = [
    "TimeLoopError",
    "SetupError",
    "UnsupportedSchemeConfiguration",
    "SolverTypeMismatch",
    "StepSizeStalled",
    "ConfigError",
]


class TimeLoopError(RuntimeError):
    """Base class for everything that aborts a time-loop run."""


class SetupError(TimeLoopError):
    """Raised by ``TimeLoop.initialize()`` before any stepping begins."""


class UnsupportedSchemeConfiguration(SetupError):
    """A process is configured for a coupling scheme it cannot be solved with."""


class SolverTypeMismatch(SetupError):
    """A Newton solver was attached to a process without Jacobian assembly."""


class StepSizeStalled(TimeLoopError):
    """The step size cannot be reduced any further after a rejected step.

    Attributes
    ----------
    process_id : int or None
        Process whose controller produced the offending step size
        (None when an external constraint determined it).
    dt : float
        Newly proposed step size.
    previous_dt : float
        Step size of the rejected step.
    """

    def __init__(self, message: str, *, process_id: int | None = None,
                 dt: float = float("nan"), previous_dt: float = float("nan")) -> None:
        super().__init__(message)
        self.process_id = process_id
        self.dt = dt
        self.previous_dt = previous_dt


class ConfigError(ValueError):
    """Malformed YAML run configuration."""
