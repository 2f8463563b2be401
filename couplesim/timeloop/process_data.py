# couplesim/timeloop/process_data.py
"""Per-process bundle and solution state owned by the time loop."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from couplesim.process.base import Process
from couplesim.process.ode_system import PicardODESystem
from couplesim.process.time_discretization import BackwardEuler
from couplesim.solver.convergence import ConvergenceCriterion
from couplesim.solver.nonlinear import NonlinearSolver, NonlinearSolverStatus
from couplesim.timestepping.base import TimeStepAlgorithm
from couplesim.timestepping.time_step import TimeStep

__all__ = ["ProcessBundle", "ProcessState"]


@dataclass(eq=False)
class ProcessBundle:
    """One process with the solver, step controller and criterion driving it.

    The fields below the configuration block are run-time state written by
    the time loop only.
    """
    process: Process
    nonlinear_solver: NonlinearSolver
    timestep_algorithm: TimeStepAlgorithm
    conv_crit: ConvergenceCriterion
    time_disc: BackwardEuler = field(default_factory=BackwardEuler)

    process_id: int = -1
    timestep_previous: Optional[TimeStep] = None
    timestep_current: Optional[TimeStep] = None
    nonlinear_solver_status: NonlinearSolverStatus = field(default_factory=NonlinearSolverStatus)
    ode_sys: Optional[PicardODESystem] = None


@dataclass(eq=False)
class ProcessState:
    """``previous`` is the last accepted solution; ``current`` may be tentative."""
    current: np.ndarray
    previous: np.ndarray

    def push(self) -> None:
        np.copyto(self.previous, self.current)

    def pop(self) -> None:
        np.copyto(self.current, self.previous)

    def time_derivative(self, time_disc: BackwardEuler, out: np.ndarray | None = None) -> np.ndarray:
        return time_disc.get_x_dot(self.current, self.previous, out=out)
