# -*- coding: utf-8 -*-
"""
Nonlinear solver drivers: common types and the factory.

Two strategies, a closed set resolved once at setup:
  - Picard: fixed point on the linearized operator, see picard.py
  - Newton: Newton–Raphson with an explicit Jacobian, see newton.py

Non-convergence is an expected outcome, reported through
``NonlinearSolverStatus.converged``; solvers never raise for it.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from couplesim.solver.linear import LinearSolve, get_linear_solver

__all__ = [
    "SolverTag",
    "NonlinearSolverStatus",
    "PostIterationCallback",
    "NonlinearSolver",
    "create_nonlinear_solver",
]

PostIterationCallback = Callable[[int, List[np.ndarray]], None]


class SolverTag(Enum):
    PICARD = "Picard"
    NEWTON = "Newton"


@dataclass(slots=True)
class NonlinearSolverStatus:
    converged: bool = True
    iteration_count: int = 0


class NonlinearSolver:
    """State shared by the Picard and Newton drivers.

    Parameters
    ----------
    max_iter : int
        Iteration budget of one solve.
    linear_solver : str or callable
        Backend name for ``get_linear_solver`` or a ``solve(A, b)`` callable.
    compensate_non_equilibrium_initial_residuum : bool
        Store the residual of the initial state once and subtract it in every
        later solve (initial states that are not in equilibrium).
    debug : bool
        Print one line per iteration.
    """

    tag: SolverTag

    def __init__(
        self,
        *,
        max_iter: int = 50,
        linear_solver: str | LinearSolve = "dense",
        compensate_non_equilibrium_initial_residuum: bool = False,
        debug: bool = False,
    ) -> None:
        if int(max_iter) < 1:
            raise ValueError("max_iter must be >= 1")
        self.max_iter = int(max_iter)
        self.linear_solve: LinearSolve = (
            get_linear_solver(linear_solver) if isinstance(linear_solver, str) else linear_solver
        )
        self.compensate_non_equilibrium_initial_residuum = bool(
            compensate_non_equilibrium_initial_residuum
        )
        self.debug = bool(debug)
        self._ode_sys = None
        self._conv_crit = None
        self._r_neq: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(max_iter={self.max_iter})"

    def set_equation_system(self, ode_sys, conv_crit) -> None:
        self._ode_sys = ode_sys
        self._conv_crit = conv_crit

    def calculate_non_equilibrium_initial_residuum(
        self, x: List[np.ndarray], x_prev: List[np.ndarray], process_id: int
    ) -> None:
        if not self.compensate_non_equilibrium_initial_residuum:
            return
        self._r_neq = self._initial_residuum(x[process_id], x_prev[process_id])

    def _initial_residuum(self, x: np.ndarray, x_prev: np.ndarray) -> np.ndarray:
        return self._ode_sys.residual(x, x_prev)

    def solve(
        self,
        x: List[np.ndarray],
        x_prev: List[np.ndarray],
        post_iteration_callback: Optional[PostIterationCallback],
        process_id: int,
    ) -> NonlinearSolverStatus:
        raise NotImplementedError


def create_nonlinear_solver(config: Dict[str, Any]) -> NonlinearSolver:
    """Build a solver from ``{type: Newton|Picard, max_iter: ..., ...}``."""
    from couplesim.solver.newton import NewtonSolver
    from couplesim.solver.picard import PicardSolver

    cfg = dict(config)
    kind = str(cfg.pop("type", "Newton"))
    try:
        tag = SolverTag(kind)
    except ValueError:
        raise ValueError(f"Unknown nonlinear solver type {kind!r} (use Picard or Newton)") from None
    if tag is SolverTag.NEWTON:
        return NewtonSolver(**cfg)
    return PicardSolver(**cfg)
