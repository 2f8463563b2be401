# couplesim/models/decay.py
"""
Linear relaxation toward a source term, one independent ODE per DOF:

    ẋ = −λ (x − x_∞)      ⇔      M = I,  K = λ I,  b = λ x_∞

Exact solution under backward Euler with step dt:
    x_{n+1} = (x_n + λ dt x_∞) / (1 + λ dt)
which makes it the reference process for the time-loop tests.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import numpy as np

from couplesim.process.base import Process
from couplesim.process.coupled_solutions import CoupledSolutions

__all__ = ["LinearDecay"]


class LinearDecay(Process):
    supports_monolithic_scheme = True
    supports_staggered_scheme = True
    provides_jacobian = True

    def __init__(self, name: str, rate: float, x0: Sequence[float], *,
                 x_inf: float = 0.0, use_monolithic_scheme: bool = True) -> None:
        super().__init__(name, use_monolithic_scheme=use_monolithic_scheme)
        if rate < 0.0:
            raise ValueError("rate must be non-negative")
        self.rate = float(rate)
        self.x_inf = float(x_inf)
        self._x0 = np.atleast_1d(np.asarray(x0, dtype=np.float64)).copy()
        self.n_post_timestep = 0

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], *, use_monolithic_scheme: bool = True) -> "LinearDecay":
        return cls(str(cfg["name"]), float(cfg["rate"]), [float(v) for v in np.atleast_1d(cfg["x0"])],
                   x_inf=float(cfg.get("x_inf", 0.0)), use_monolithic_scheme=use_monolithic_scheme)

    @property
    def number_of_dofs(self) -> int:
        return int(self._x0.size)

    def initial_conditions(self, t0: float) -> np.ndarray:
        return self._x0.copy()

    def assemble(self, t: float, dt: float, x: np.ndarray, x_prev: np.ndarray,
                 coupled: Optional[CoupledSolutions]):
        n = self.number_of_dofs
        M = np.eye(n)
        K = self.rate * np.eye(n)
        b = np.full(n, self.rate * self.x_inf)
        return M, K, b

    def assemble_with_jacobian(self, t, dt, x, x_prev, coupled):
        M, K, b = self.assemble(t, dt, x, x_prev, coupled)
        return M, K, b, K.copy()

    def compute_secondary_variable(self, t, dt, x, x_dot, process_id) -> None:
        self.secondary_variables["rate_of_change"] = np.array(x_dot, copy=True)

    def post_timestep(self, x, x_dot, t, dt, process_id) -> None:
        self.n_post_timestep += 1

    def exact_backward_euler(self, x_n: np.ndarray, dt: float) -> np.ndarray:
        return (x_n + self.rate * dt * self.x_inf) / (1.0 + self.rate * dt)
