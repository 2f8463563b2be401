# couplesim/solver/convergence.py
"""
Convergence criteria for nonlinear solves and for staggered coupling loops.

A criterion is pure evaluation plus two pieces of state: the accumulated
"satisfied" flag (cleared by ``reset``) and the "first iteration" flag
(raised by ``pre_first_iteration``). Residual-based criteria use the first
iteration to record their reference norm.

Usage inside a solver::

    crit.pre_first_iteration()
    for it in ...:
        crit.reset()
        crit.check_residual(r)         # if crit.has_residual_check()
        crit.check_delta_x(minus_dx, x)  # if crit.has_delta_x_check()
        if crit.is_satisfied():
            break
        crit.set_no_first_iteration()
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional, Sequence

import numpy as np

from couplesim.utils import diagnostics as diag
from couplesim.utils import logger

__all__ = [
    "VecNormType",
    "norm",
    "compute_relative_change",
    "ConvergenceCriterion",
    "DeltaX",
    "Residual",
    "PerComponentDeltaX",
    "create_convergence_criterion",
]

_EPS = np.finfo(np.float64).eps


class VecNormType(Enum):
    NORM1 = "NORM1"
    NORM2 = "NORM2"
    INFINITY_N = "INFINITY_N"

    @classmethod
    def parse(cls, name: str | "VecNormType") -> "VecNormType":
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).upper())
        except ValueError:
            raise ValueError(
                f"Unknown vector norm type {name!r} (use NORM1, NORM2 or INFINITY_N)"
            ) from None


_ORD = {VecNormType.NORM1: 1, VecNormType.NORM2: 2, VecNormType.INFINITY_N: np.inf}


def norm(x: np.ndarray, norm_type: VecNormType = VecNormType.NORM2) -> float:
    if x.size == 0:
        return 0.0
    return float(np.linalg.norm(x, ord=_ORD[norm_type]))


def compute_relative_change(x: np.ndarray, x_prev: np.ndarray,
                            norm_type: VecNormType = VecNormType.NORM2) -> float:
    """‖x − x_prev‖ / ‖x‖, or the absolute change when ‖x‖ vanishes."""
    dx_norm = norm(x - x_prev, norm_type)
    x_norm = norm(x, norm_type)
    if x_norm < _EPS:
        return dx_norm
    return dx_norm / x_norm


def _check_relative(reltol: Optional[float], numerator: float, denominator: float) -> bool:
    if reltol is None:
        return False
    if abs(denominator) < _EPS:
        return numerator < _EPS
    return numerator < reltol * abs(denominator)


def _check_absolute(abstol: Optional[float], value: float) -> bool:
    return abstol is not None and value < abstol


# ---- criteria ---------------------------------------------------------------


class ConvergenceCriterion(ABC):
    """Tolerance test on a solution update or on a residual."""

    name = "ConvergenceCriterion"

    def __init__(self, norm_type: VecNormType | str = VecNormType.NORM2) -> None:
        self._norm_type = VecNormType.parse(norm_type)
        self._satisfied = True
        self._is_first_iteration = True

    @property
    def norm_type(self) -> VecNormType:
        return self._norm_type

    @abstractmethod
    def has_delta_x_check(self) -> bool: ...

    @abstractmethod
    def has_residual_check(self) -> bool: ...

    def check_delta_x(self, minus_delta_x: np.ndarray, x: np.ndarray) -> None:
        """Fold the test on the update ``minus_delta_x`` into the satisfied flag."""

    def check_residual(self, residual: np.ndarray) -> None:
        """Fold the test on ``residual`` into the satisfied flag."""

    def pre_first_iteration(self) -> None:
        self._is_first_iteration = True

    def set_no_first_iteration(self) -> None:
        self._is_first_iteration = False

    def reset(self) -> None:
        self._satisfied = True

    def is_satisfied(self) -> bool:
        return self._satisfied

    def set_dof_table(self, dof_table) -> None:
        """Only component-wise criteria need the DOF table; others ignore it."""


class DeltaX(ConvergenceCriterion):
    """Satisfied when ‖Δx‖ < abstol or ‖Δx‖ < reltol·‖x‖."""

    name = "DeltaX"

    def __init__(self, abstol: Optional[float] = None, reltol: Optional[float] = None,
                 norm_type: VecNormType | str = VecNormType.NORM2) -> None:
        if abstol is None and reltol is None:
            raise ValueError("DeltaX criterion needs at least one of abstol, reltol")
        super().__init__(norm_type)
        self.abstol = abstol
        self.reltol = reltol

    def has_delta_x_check(self) -> bool:
        return True

    def has_residual_check(self) -> bool:
        return False

    def check_delta_x(self, minus_delta_x: np.ndarray, x: np.ndarray) -> None:
        error_dx = norm(minus_delta_x, self._norm_type)
        norm_x = norm(x, self._norm_type)
        ok = _check_absolute(self.abstol, error_dx) or _check_relative(self.reltol, error_dx, norm_x)
        diag.log_criterion(name=self.name, norm_dx=error_dx, norm_x=norm_x, satisfied=ok)
        self._satisfied = self._satisfied and ok


class Residual(ConvergenceCriterion):
    """Satisfied when ‖r‖ < abstol or ‖r‖ < reltol·‖r₀‖ (r₀: first-iteration residual)."""

    name = "Residual"

    def __init__(self, abstol: Optional[float] = None, reltol: Optional[float] = None,
                 norm_type: VecNormType | str = VecNormType.NORM2) -> None:
        if abstol is None and reltol is None:
            raise ValueError("Residual criterion needs at least one of abstol, reltol")
        super().__init__(norm_type)
        self.abstol = abstol
        self.reltol = reltol
        self._residual_norm_0 = np.nan

    def has_delta_x_check(self) -> bool:
        return False

    def has_residual_check(self) -> bool:
        return True

    def check_residual(self, residual: np.ndarray) -> None:
        norm_res = norm(residual, self._norm_type)
        if self._is_first_iteration:
            self._residual_norm_0 = norm_res
            logger.debug(f"[crit] {self.name} | initial residual norm {norm_res:.4e}")
        ok = _check_absolute(self.abstol, norm_res)
        if not ok and self.reltol is not None:
            if self._residual_norm_0 < _EPS:
                ok = norm_res < _EPS
            elif not self._is_first_iteration:
                ok = norm_res < self.reltol * self._residual_norm_0
        logger.debug(f"[crit] {self.name} | |r|={norm_res:.4e} | satisfied={ok}")
        self._satisfied = self._satisfied and ok


class PerComponentDeltaX(ConvergenceCriterion):
    """DeltaX test applied to every component of a DOF table separately."""

    name = "PerComponentDeltaX"

    def __init__(self, abstols: Optional[Sequence[float]] = None,
                 reltols: Optional[Sequence[float]] = None,
                 norm_type: VecNormType | str = VecNormType.NORM2) -> None:
        if not abstols and not reltols:
            raise ValueError("PerComponentDeltaX needs abstols and/or reltols")
        if abstols and reltols and len(abstols) != len(reltols):
            raise ValueError("abstols and reltols must have the same length")
        super().__init__(norm_type)
        self.abstols = list(abstols) if abstols else None
        self.reltols = list(reltols) if reltols else None
        self._dof_table = None

    def has_delta_x_check(self) -> bool:
        return True

    def has_residual_check(self) -> bool:
        return False

    def set_dof_table(self, dof_table) -> None:
        n_tol = len(self.abstols or self.reltols)
        if dof_table.number_of_components != n_tol:
            raise ValueError(
                f"PerComponentDeltaX has {n_tol} tolerances but the DOF table has "
                f"{dof_table.number_of_components} components"
            )
        self._dof_table = dof_table

    def check_delta_x(self, minus_delta_x: np.ndarray, x: np.ndarray) -> None:
        if self._dof_table is None:
            raise RuntimeError("PerComponentDeltaX used before set_dof_table()")
        for c, (cname, idx) in enumerate(self._dof_table.items()):
            error_dx = norm(minus_delta_x[idx], self._norm_type)
            norm_x = norm(x[idx], self._norm_type)
            abstol = self.abstols[c] if self.abstols else None
            reltol = self.reltols[c] if self.reltols else None
            ok = _check_absolute(abstol, error_dx) or _check_relative(reltol, error_dx, norm_x)
            diag.log_criterion(name=f"{self.name}[{cname}]", norm_dx=error_dx,
                               norm_x=norm_x, satisfied=ok)
            self._satisfied = self._satisfied and ok


# ---- factory ----------------------------------------------------------------


def _opt_float(value: Any) -> Optional[float]:
    # YAML 1.1 reads "1e-8" (no dot) as a string
    return None if value is None else float(value)


def _opt_floats(values: Any) -> Optional[list]:
    return None if values is None else [float(v) for v in values]


def create_convergence_criterion(config: Dict[str, Any]) -> ConvergenceCriterion:
    """Build a criterion from a mapping such as ``{type: DeltaX, reltol: 1e-8}``."""
    cfg = dict(config)
    kind = str(cfg.pop("type", "DeltaX"))
    norm_type = cfg.pop("norm_type", "NORM2")
    if kind == "DeltaX":
        return DeltaX(abstol=_opt_float(cfg.get("abstol")), reltol=_opt_float(cfg.get("reltol")),
                      norm_type=norm_type)
    if kind == "Residual":
        return Residual(abstol=_opt_float(cfg.get("abstol")), reltol=_opt_float(cfg.get("reltol")),
                        norm_type=norm_type)
    if kind == "PerComponentDeltaX":
        return PerComponentDeltaX(abstols=_opt_floats(cfg.get("abstols")),
                                  reltols=_opt_floats(cfg.get("reltols")), norm_type=norm_type)
    raise ValueError(f"Unknown convergence criterion type {kind!r}")
