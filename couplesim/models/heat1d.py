# couplesim/models/heat1d.py
"""
1-D nonlinear diffusion on a uniform grid with Dirichlet ends:

    ∂u/∂t = ∂/∂z ( k(u) ∂u/∂z ) + q,       k(u) = k0 (1 + β u)

Finite differences, face conductivity from the arithmetic mean of the two
nodes. All matrices are tridiagonal, so the Thomas backend applies.

Boundary rows: M = 0, K = I, b = u_bc, i.e. the residual there is x − u_bc;
``project_known_solutions`` writes the boundary values after every update.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from couplesim.process.base import Process
from couplesim.process.coupled_solutions import CoupledSolutions

__all__ = ["Heat1DParams", "NonlinearHeat1D"]


@dataclass(slots=True)
class Heat1DParams:
    length: float = 1.0
    n_nodes: int = 21
    k0: float = 1.0
    beta: float = 0.0
    source: float = 0.0
    u_left: float = 0.0
    u_right: float = 0.0
    u_initial: float = 0.0


def _tridiag(lower: np.ndarray, diag: np.ndarray, upper: np.ndarray) -> np.ndarray:
    return np.diag(diag) + np.diag(lower, -1) + np.diag(upper, 1)


class NonlinearHeat1D(Process):
    supports_monolithic_scheme = True
    supports_staggered_scheme = False
    provides_jacobian = True

    def __init__(self, name: str, params: Heat1DParams, *, use_monolithic_scheme: bool = True) -> None:
        super().__init__(name, use_monolithic_scheme=use_monolithic_scheme)
        if params.n_nodes < 3:
            raise ValueError("n_nodes must be >= 3")
        if params.length <= 0.0:
            raise ValueError("length must be positive")
        self.params = params
        self.z = np.linspace(0.0, params.length, params.n_nodes)
        self.h = float(self.z[1] - self.z[0])

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], *, use_monolithic_scheme: bool = True) -> "NonlinearHeat1D":
        fields = {k: cfg[k] for k in Heat1DParams.__dataclass_fields__ if k in cfg}
        params = Heat1DParams(**{k: (int(v) if k == "n_nodes" else float(v)) for k, v in fields.items()})
        return cls(str(cfg["name"]), params, use_monolithic_scheme=use_monolithic_scheme)

    @property
    def number_of_dofs(self) -> int:
        return self.params.n_nodes

    def initial_conditions(self, t0: float) -> np.ndarray:
        u = np.full(self.number_of_dofs, self.params.u_initial, dtype=np.float64)
        self.project_known_solutions(t0, u)
        return u

    def project_known_solutions(self, t: float, x: np.ndarray) -> None:
        x[0] = self.params.u_left
        x[-1] = self.params.u_right

    # ---- assembly -------------------------------------------------------------

    def _face_conductivity(self, u: np.ndarray) -> np.ndarray:
        p = self.params
        return p.k0 * (1.0 + p.beta * 0.5 * (u[:-1] + u[1:]))

    def _operator(self, u: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        n = self.number_of_dofs
        kf = self._face_conductivity(u) / self.h**2
        lower = np.zeros(n - 1)
        upper = np.zeros(n - 1)
        diag = np.ones(n)
        # interior rows i = 1..n-2: faces i-1/2 -> kf[i-1], i+1/2 -> kf[i]
        diag[1:-1] = kf[:-1] + kf[1:]
        lower[:-1] = -kf[:-1]
        upper[1:] = -kf[1:]
        return lower, diag, upper

    def assemble(self, t: float, dt: float, x: np.ndarray, x_prev: np.ndarray,
                 coupled: Optional[CoupledSolutions]):
        p = self.params
        n = self.number_of_dofs
        M = np.eye(n)
        M[0, 0] = M[-1, -1] = 0.0
        K = _tridiag(*self._operator(x))
        b = np.full(n, p.source)
        b[0] = p.u_left
        b[-1] = p.u_right
        return M, K, b

    def assemble_with_jacobian(self, t, dt, x, x_prev, coupled):
        M, K, b = self.assemble(t, dt, x, x_prev, coupled)
        p = self.params
        n = self.number_of_dofs
        kf = self._face_conductivity(x) / self.h**2
        g = 0.5 * p.k0 * p.beta / self.h**2
        du = np.diff(x)                       # u_{i+1} - u_i at faces
        d_lo = np.zeros(n - 1)
        d_di = np.ones(n)
        d_up = np.zeros(n - 1)
        # F_i = k_-(u_i - u_{i-1}) - k_+(u_{i+1} - u_i), k_± depend on both face nodes
        d_lo[:-1] = g * du[:-1] - kf[:-1]
        d_di[1:-1] = g * du[:-1] + kf[:-1] - g * du[1:] + kf[1:]
        d_up[1:] = -g * du[1:] - kf[1:]
        return M, K, b, _tridiag(d_lo, d_di, d_up)

    # ---- hooks ----------------------------------------------------------------

    def compute_secondary_variable(self, t, dt, x, x_dot, process_id) -> None:
        u = x[process_id]
        kf = self._face_conductivity(u)
        self.secondary_variables["heat_flux"] = -kf * np.diff(u) / self.h
