# couplesim/process/ode_system.py
"""
Time-discretized ODE systems: a process + backward Euler, seen from a solver.

Semi-discrete form assembled by the process::

    M ẋ + K(x) x = b(x),        ẋ = (x − x_prev)/dt

Picard view (fixed point on the linearized operator)::

    (M/dt + K(x_k)) x_{k+1} = b(x_k) + M x_prev/dt

Newton view::

    r(x) = M ẋ + K x − b,       J(x) = M/dt + ∂(K x − b)/∂x

``create_ode_system`` resolves the solver tag once, at setup: a Newton solver
gets a ``NewtonODESystem`` or the setup fails with ``SolverTypeMismatch``.
"""
from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from couplesim.errors import SolverTypeMismatch
from couplesim.solver.nonlinear import SolverTag

from .base import Process
from .coupled_solutions import CoupledSolutions
from .time_discretization import BackwardEuler

__all__ = ["PicardODESystem", "NewtonODESystem", "create_ode_system"]


class PicardODESystem:
    tag = SolverTag.PICARD

    def __init__(self, process: Process, process_id: int, time_disc: BackwardEuler) -> None:
        self.process = process
        self.process_id = process_id
        self.time_disc = time_disc
        self.coupled: Optional[CoupledSolutions] = None

    @property
    def t(self) -> float:
        return self.time_disc.t

    @property
    def dt(self) -> float:
        return self.time_disc.dt

    @property
    def number_of_dofs(self) -> int:
        return self.process.number_of_dofs

    def set_coupled_solutions(self, coupled: Optional[CoupledSolutions]) -> None:
        self.coupled = coupled

    def project_known_solutions(self, x: np.ndarray) -> None:
        self.process.project_known_solutions(self.t, x)

    def assemble(self, x: np.ndarray, x_prev: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Picard matrix and right-hand side at the trial solution ``x``."""
        M, K, b = self.process.assemble(self.t, self.dt, x, x_prev, self.coupled)
        w = self.time_disc.get_new_x_weight()
        A = M * w + K
        rhs = b + (M @ x_prev) * w
        return A, rhs

    def residual(self, x: np.ndarray, x_prev: np.ndarray) -> np.ndarray:
        M, K, b = self.process.assemble(self.t, self.dt, x, x_prev, self.coupled)
        x_dot = self.time_disc.get_x_dot(x, x_prev)
        return M @ x_dot + K @ x - b


class NewtonODESystem(PicardODESystem):
    tag = SolverTag.NEWTON

    def assemble_newton(self, x: np.ndarray, x_prev: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Residual and Jacobian at the trial solution ``x``."""
        M, K, b, jac = self.process.assemble_with_jacobian(self.t, self.dt, x, x_prev, self.coupled)
        x_dot = self.time_disc.get_x_dot(x, x_prev)
        r = M @ x_dot + K @ x - b
        J = M * self.time_disc.get_new_x_weight() + jac
        return r, J


def create_ode_system(process: Process, process_id: int, time_disc: BackwardEuler,
                      tag: SolverTag) -> PicardODESystem:
    """Pick the ODE-system flavour matching the nonlinear solver's tag."""
    if tag is SolverTag.PICARD:
        # A Newton-ready process also works with Picard; no further checks.
        return PicardODESystem(process, process_id, time_disc)
    if tag is SolverTag.NEWTON:
        if not process.provides_jacobian:
            raise SolverTypeMismatch(
                f"Process #{process_id} ({process.name}) cannot assemble a Jacobian; "
                f"you are trying to solve a non-Newton-ready system with the "
                f"Newton-Raphson method."
            )
        return NewtonODESystem(process, process_id, time_disc)
    raise SolverTypeMismatch(f"Encountered unknown nonlinear solver type {tag!r}.")
