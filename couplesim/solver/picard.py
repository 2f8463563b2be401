# couplesim/solver/picard.py
# Fixed-point (Picard) solver for one time-discretized process.
# Re-assembles the linearized operator at the latest iterate and solves it;
# no Jacobian required, so any process can be driven by it.

from __future__ import annotations

from typing import List, Optional

import numpy as np

from couplesim.solver.linear import LINEAR_SOLVER_ERRORS, LinearSolve
from couplesim.solver.nonlinear import (
    NonlinearSolver,
    NonlinearSolverStatus,
    PostIterationCallback,
    SolverTag,
)
from couplesim.utils import diagnostics as diag
from couplesim.utils import logger

__all__ = ["PicardSolver"]


def _inf_norm(x: np.ndarray) -> float:
    return float(np.linalg.norm(x, ord=np.inf)) if x.size else 0.0


class PicardSolver(NonlinearSolver):
    """Picard fixed point ``A(x_k) x_{k+1} = rhs(x_k)``.

    Treats the coefficients as *fixed* within each iteration; typically more
    robust than raw Newton on a first contact with a strongly nonlinear
    problem, at the price of linear convergence.

    Parameters
    ----------
    max_iter : int, default 50
    relaxation : float, default 1.0
        Under-relaxation ``x ← x + ω (x_sol − x)``, 0 < ω <= 1.
    linear_solver, compensate_non_equilibrium_initial_residuum, debug
        See ``NonlinearSolver``.
    """

    tag = SolverTag.PICARD

    def __init__(
        self,
        *,
        max_iter: int = 50,
        relaxation: float = 1.0,
        linear_solver: str | LinearSolve = "dense",
        compensate_non_equilibrium_initial_residuum: bool = False,
        debug: bool = False,
    ) -> None:
        super().__init__(
            max_iter=max_iter,
            linear_solver=linear_solver,
            compensate_non_equilibrium_initial_residuum=compensate_non_equilibrium_initial_residuum,
            debug=debug,
        )
        if not (0.0 < float(relaxation) <= 1.0):
            raise ValueError("relaxation must be in (0, 1]")
        self.relaxation = float(relaxation)

    def solve(
        self,
        x: List[np.ndarray],
        x_prev: List[np.ndarray],
        post_iteration_callback: Optional[PostIterationCallback],
        process_id: int,
    ) -> NonlinearSolverStatus:
        ode_sys = self._ode_sys
        conv_crit = self._conv_crit
        xp = x_prev[process_id]

        x_cur = x[process_id].copy()
        ode_sys.project_known_solutions(x_cur)

        conv_crit.pre_first_iteration()
        converged = False
        it = 0

        if self.debug:
            diag.log_solver_start(solver="Picard", res_inf=_inf_norm(ode_sys.residual(x_cur, xp)),
                                  x_min=float(x_cur.min()), x_max=float(x_cur.max()))

        for it in range(1, self.max_iter + 1):
            conv_crit.reset()

            A, rhs = ode_sys.assemble(x_cur, xp)
            if self._r_neq is not None:
                rhs = rhs + self._r_neq

            if conv_crit.has_residual_check():
                r = A @ x_cur - rhs
                conv_crit.check_residual(r)
                if not conv_crit.has_delta_x_check() and conv_crit.is_satisfied():
                    converged = True
                    break

            try:
                x_sol = self.linear_solve(A, rhs)
            except LINEAR_SOLVER_ERRORS as exc:
                logger.error(f"Picard: the linear solver failed in iteration {it} ({exc}).")
                break
            if not np.all(np.isfinite(x_sol)):
                logger.error(f"Picard: non-finite iterate in iteration {it}.")
                break

            x_next = x_cur + self.relaxation * (x_sol - x_cur)
            ode_sys.project_known_solutions(x_next)
            minus_dx = x_cur - x_next

            x_cur = x_next
            x[process_id][:] = x_cur

            if post_iteration_callback is not None:
                post_iteration_callback(it, x)

            if conv_crit.has_delta_x_check():
                conv_crit.check_delta_x(minus_dx, x_cur)

            if self.debug:
                res_inf = _inf_norm(ode_sys.residual(x_cur, xp))
                diag.log_solver_iter(solver="Picard", it=it, res_inf=res_inf,
                                     damping=self.relaxation, max_dx=_inf_norm(minus_dx))

            if conv_crit.is_satisfied():
                converged = True
                break

            conv_crit.set_no_first_iteration()

        x[process_id][:] = x_cur

        if self.debug:
            diag.log_convergence_summary(solver="Picard", converged=converged, iters=it)

        return NonlinearSolverStatus(converged=converged, iteration_count=it)
