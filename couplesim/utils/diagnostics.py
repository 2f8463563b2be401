"""
couplesim/utils/diagnostics.py

Targeted, low-noise diagnostics to understand why a step or a solve fails.
Solvers call the iteration helpers only when debug=True; the time loop uses
the step helpers for its regular progress lines.
"""

from __future__ import annotations

import numpy as np

from couplesim.utils import logger


def _fmt_range(x: np.ndarray, name: str) -> str:
    if x.size == 0:
        return f"{name}: (empty)"
    return f"{name}∈[{np.min(x):+.3e},{np.max(x):+.3e}]"


def log_state_summary(*, x: np.ndarray, name: str = "x", resid: np.ndarray | None = None,
                      prefix: str = "[diag]") -> None:
    """Print compact ranges for one solution vector."""
    msg = [prefix, _fmt_range(x, name)]
    if resid is not None:
        msg.append(f"||res||_inf={float(np.linalg.norm(resid, ord=np.inf)):.3e}")
    logger.debug(" | ".join(msg))


def log_solver_start(
    *,
    solver: str,
    res_inf: float,
    x_min: float,
    x_max: float,
    prefix: str = "[sol]",
) -> None:
    logger.info(
        f"{prefix} {solver} start | ||res||_inf={res_inf:.3e} | "
        f"x∈[{x_min:+.3e},{x_max:+.3e}]"
    )


def log_solver_iter(
    *,
    solver: str,
    it: int,
    res_inf: float,
    damping: float,
    max_dx: float,
    prefix: str = "[sol]",
) -> None:
    logger.info(
        f"{prefix} {solver} iter {it:02d} | ||res||_inf={res_inf:.3e} | "
        f"damping={damping:.2e} | max|Δx|={max_dx:.3e}"
    )


def log_solver_backtrack_fail(
    *,
    solver: str,
    it: int,
    res_inf: float,
    min_damping: float,
    prefix: str = "[sol]",
) -> None:
    logger.info(
        f"{prefix} {solver} iter {it:02d} | line-search failed | "
        f"||res||_inf={res_inf:.3e} | damping_min={min_damping:.1e}"
    )


def log_convergence_summary(
    *,
    solver: str,
    converged: bool,
    iters: int,
    prefix: str = "[sol]",
) -> None:
    logger.info(f"{prefix} {solver} done | converged={converged} | iters={iters}")


def log_criterion(
    *,
    name: str,
    norm_dx: float,
    norm_x: float,
    satisfied: bool,
    prefix: str = "[crit]",
) -> None:
    rel = norm_dx / norm_x if norm_x > 0.0 else float("nan")
    logger.debug(
        f"{prefix} {name} | |dx|={norm_dx:.4e} | |x|={norm_x:.4e} | "
        f"|dx|/|x|={rel:.4e} | satisfied={satisfied}"
    )


def log_time_step_start(*, step: int, t: float, dt: float, prefix: str = "===") -> None:
    logger.info(f"{prefix} Time stepping at step #{step:d} and time {t:g} with step size {dt:g}")


def log_step_rejected(*, step: int, repeats: int) -> None:
    logger.warn(
        f"Time step {step:d} was rejected {repeats:d} times and it will be "
        f"repeated with a reduced step size."
    )


def log_run_summary(*, accepted: int, rejected: int) -> None:
    logger.info(
        f"The whole computation of the time stepping took {accepted + rejected:d} steps, "
        f"in which the accepted steps are {accepted:d}, and the rejected steps are {rejected:d}."
    )
