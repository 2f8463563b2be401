# couplesim/models/exchange.py
"""
Two-field exchange: each field relaxes toward its partner,

    ẋ_a = −κ_a (x_a − x_b),        ẋ_b = −κ_b (x_b − x_a)

Each field is its own process. Under staggered coupling the partner's latest
solution arrives through the read-only coupled views (Gauss–Seidel order);
solved monolithically (no coupled views) the partner is frozen at
``ambient``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

import numpy as np

from couplesim.process.base import Process
from couplesim.process.coupled_solutions import CoupledSolutions

__all__ = ["ExchangeField"]


class ExchangeField(Process):
    supports_monolithic_scheme = True
    supports_staggered_scheme = True
    provides_jacobian = True

    def __init__(self, name: str, rate: float, x0: Sequence[float], partner_id: int, *,
                 ambient: float = 0.0, use_monolithic_scheme: bool = False) -> None:
        super().__init__(name, use_monolithic_scheme=use_monolithic_scheme)
        self.rate = float(rate)
        self.partner_id = int(partner_id)
        self.ambient = float(ambient)
        self._x0 = np.atleast_1d(np.asarray(x0, dtype=np.float64)).copy()
        # partner values seen by the latest assembly
        self.last_partner: Optional[np.ndarray] = None

    @classmethod
    def from_config(cls, cfg: Dict[str, Any], *, use_monolithic_scheme: bool = False) -> "ExchangeField":
        return cls(str(cfg["name"]), float(cfg["rate"]),
                   [float(v) for v in np.atleast_1d(cfg["x0"])], int(cfg["partner_id"]),
                   ambient=float(cfg.get("ambient", 0.0)),
                   use_monolithic_scheme=use_monolithic_scheme)

    @property
    def number_of_dofs(self) -> int:
        return int(self._x0.size)

    def initial_conditions(self, t0: float) -> np.ndarray:
        return self._x0.copy()

    def _partner(self, coupled: Optional[CoupledSolutions]) -> np.ndarray:
        if coupled is None:
            return np.full(self.number_of_dofs, self.ambient)
        partner = coupled[self.partner_id]
        if partner.shape != (self.number_of_dofs,):
            raise ValueError(f"{self.name}: partner #{self.partner_id} has {partner.size} dofs, "
                             f"expected {self.number_of_dofs}")
        return partner

    def assemble(self, t: float, dt: float, x: np.ndarray, x_prev: np.ndarray,
                 coupled: Optional[CoupledSolutions]):
        n = self.number_of_dofs
        partner = self._partner(coupled)
        self.last_partner = np.array(partner, copy=True)
        return np.eye(n), self.rate * np.eye(n), self.rate * partner

    def assemble_with_jacobian(self, t, dt, x, x_prev, coupled):
        M, K, b = self.assemble(t, dt, x, x_prev, coupled)
        return M, K, b, K.copy()

    def compute_secondary_variable(self, t, dt, x, x_dot, process_id) -> None:
        self.secondary_variables["exchange_rate"] = np.array(x_dot, copy=True)
