# couplesim/solver/newton.py
# Newton–Raphson nonlinear solver for one time-discretized process.
# Linear solves go through the pluggable backend in linear.py.

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

__all__ = ["NewtonSolver"]


# ---- numerics ---------------------------------------------------------------


def _inf_norm(x: np.ndarray) -> float:
    return float(np.linalg.norm(x, ord=np.inf)) if x.size else 0.0


# ---- solver -----------------------------------------------------------------


class NewtonSolver(NonlinearSolver):
    """Newton solve using the process Jacobian.

    Each iteration assembles ``r(x)`` and ``J(x)``, solves ``J (−Δx) = r``
    through the linear backend and updates ``x ← x − damping·(−Δx)``.
    With ``line_search=True`` the damping is halved until the residual
    ∞-norm decreases (and grows back by 1.25 after a successful step),
    as in a classic backtracking scheme.

    Parameters
    ----------
    max_iter : int, default 50
    damping : float, default 1.0
        Fixed relaxation of the Newton update (0 < damping <= 1).
    line_search : bool, default False
    min_damping : float, default 1e-12
        Lower bound for the line search before giving up.
    linear_solver, compensate_non_equilibrium_initial_residuum, debug
        See ``NonlinearSolver``.
    """

    tag = SolverTag.NEWTON

    def __init__(
        self,
        *,
        max_iter: int = 50,
        damping: float = 1.0,
        line_search: bool = False,
        min_damping: float = 1e-12,
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
        if not (0.0 < float(damping) <= 1.0):
            raise ValueError("damping must be in (0, 1]")
        self.damping = float(damping)
        self.line_search = bool(line_search)
        self.min_damping = float(min_damping)

    def _residual(self, x: np.ndarray, x_prev: np.ndarray) -> np.ndarray:
        r = self._ode_sys.residual(x, x_prev)
        if self._r_neq is not None:
            r = r - self._r_neq
        return r

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

        x_new = x[process_id].copy()
        ode_sys.project_known_solutions(x_new)

        conv_crit.pre_first_iteration()
        converged = False
        damping = self.damping
        it = 0

        if self.debug:
            r0 = self._residual(x_new, xp)
            diag.log_solver_start(solver="Newton", res_inf=_inf_norm(r0),
                                  x_min=float(x_new.min()), x_max=float(x_new.max()))

        for it in range(1, self.max_iter + 1):
            conv_crit.reset()

            r, J = ode_sys.assemble_newton(x_new, xp)
            if self._r_neq is not None:
                r = r - self._r_neq

            if conv_crit.has_residual_check():
                conv_crit.check_residual(r)
                if not conv_crit.has_delta_x_check() and conv_crit.is_satisfied():
                    converged = True
                    break

            try:
                minus_dx = self.linear_solve(J, r)
            except LINEAR_SOLVER_ERRORS as exc:
                logger.error(f"Newton: the linear solver failed in iteration {it} ({exc}).")
                break
            if not np.all(np.isfinite(minus_dx)):
                logger.error(f"Newton: non-finite update in iteration {it}.")
                break

            if self.line_search:
                res_inf = _inf_norm(r)
                local_damp = damping
                accepted = False
                while local_damp >= self.min_damping:
                    x_trial = x_new - local_damp * minus_dx
                    ode_sys.project_known_solutions(x_trial)
                    if _inf_norm(self._residual(x_trial, xp)) <= res_inf:
                        accepted = True
                        break
                    local_damp *= 0.5  # backtrack
                if not accepted:
                    # no descent left at round-off level: the iterate may already be the solution
                    if conv_crit.has_delta_x_check():
                        conv_crit.check_delta_x(damping * minus_dx, x_new)
                        if conv_crit.is_satisfied():
                            converged = True
                            break
                    if self.debug:
                        diag.log_solver_backtrack_fail(solver="Newton", it=it, res_inf=res_inf,
                                                       min_damping=self.min_damping)
                    break
                damping = min(self.damping, local_damp * 1.25)
                step = local_damp
            else:
                x_trial = x_new - damping * minus_dx
                ode_sys.project_known_solutions(x_trial)
                step = damping

            x_new = x_trial
            x[process_id][:] = x_new

            if post_iteration_callback is not None:
                post_iteration_callback(it, x)

            if conv_crit.has_delta_x_check():
                conv_crit.check_delta_x(step * minus_dx, x_new)

            if self.debug:
                diag.log_solver_iter(solver="Newton", it=it, res_inf=_inf_norm(r),
                                     damping=step, max_dx=_inf_norm(step * minus_dx))

            if conv_crit.is_satisfied():
                converged = True
                break

            conv_crit.set_no_first_iteration()

        x[process_id][:] = x_new

        if self.debug:
            diag.log_convergence_summary(solver="Newton", converged=converged, iters=it)

        return NonlinearSolverStatus(converged=converged, iteration_count=it)
