# couplesim/process/base.py
"""
Process capability interface.

A *process* is one coupled equation system advanced in time. The time loop
never looks inside it; it only

- asks it to assemble the semi-discrete system ``M ẋ + K(x) x = b(x)``
  (and, for Newton-ready processes, the Jacobian ``∂(K x − b)/∂x``),
- calls its pre/post time-step hooks,
- asks which coupling scheme it is configured for and which it supports.

Side effects of a process are confined to its own state (secondary
variables, internal history). Other processes' solutions arrive as read-only
views through ``coupled`` and must not be written to.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

import numpy as np

from .coupled_solutions import CoupledSolutions

__all__ = ["DOFTable", "Process"]


@dataclass(slots=True)
class DOFTable:
    """Component name → global indices into one process's solution vector."""
    components: Dict[str, np.ndarray] = field(default_factory=dict)

    @classmethod
    def single_component(cls, n_dofs: int, name: str = "x") -> "DOFTable":
        return cls({name: np.arange(n_dofs)})

    @classmethod
    def interleaved(cls, n_nodes: int, names: List[str]) -> "DOFTable":
        """Node-major layout: dof(node, c) = node * n_components + c."""
        nc = len(names)
        return cls({name: np.arange(c, n_nodes * nc, nc) for c, name in enumerate(names)})

    @property
    def number_of_components(self) -> int:
        return len(self.components)

    @property
    def number_of_dofs(self) -> int:
        return int(sum(idx.size for idx in self.components.values()))

    def items(self) -> Iterator[Tuple[str, np.ndarray]]:
        return iter(self.components.items())


class Process(ABC):
    """Base class for a time-dependent (non)linear equation system.

    Parameters
    ----------
    name : str
        Used in log lines and output file names.
    use_monolithic_scheme : bool
        True: solved on its own per step. False: part of a staggered
        (fixed-point) coupling with the other registered processes.
    """

    supports_monolithic_scheme: bool = True
    supports_staggered_scheme: bool = False
    provides_jacobian: bool = False

    def __init__(self, name: str, *, use_monolithic_scheme: bool = True) -> None:
        self.name = name
        self._use_monolithic_scheme = bool(use_monolithic_scheme)
        self.secondary_variables: Dict[str, np.ndarray] = {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    # ---- configuration / capabilities ----------------------------------------

    def is_monolithic_scheme_used(self) -> bool:
        return self._use_monolithic_scheme

    @property
    @abstractmethod
    def number_of_dofs(self) -> int: ...

    def get_dof_table(self) -> DOFTable:
        return DOFTable.single_component(self.number_of_dofs)

    # ---- assembly -------------------------------------------------------------

    @abstractmethod
    def initial_conditions(self, t0: float) -> np.ndarray:
        """Initial solution vector at ``t0`` (length ``number_of_dofs``)."""

    @abstractmethod
    def assemble(self, t: float, dt: float, x: np.ndarray, x_prev: np.ndarray,
                 coupled: Optional[CoupledSolutions]) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(M, K, b)`` evaluated at the trial solution ``x``."""

    def assemble_with_jacobian(
        self, t: float, dt: float, x: np.ndarray, x_prev: np.ndarray,
        coupled: Optional[CoupledSolutions],
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Return ``(M, K, b, Jac)`` with ``Jac = ∂(K x − b)/∂x``; M must not depend on x."""
        raise NotImplementedError(f"{type(self).__name__} does not assemble a Jacobian")

    def project_known_solutions(self, t: float, x: np.ndarray) -> None:
        """Overwrite prescribed (Dirichlet) entries of ``x`` in place."""

    # ---- hooks ----------------------------------------------------------------

    def pre_timestep(self, x: List[np.ndarray], t: float, dt: float, process_id: int) -> None:
        pass

    def post_nonlinear_solver(self, x: np.ndarray, x_dot: np.ndarray, t: float, dt: float,
                              process_id: int) -> None:
        pass

    def compute_secondary_variable(self, t: float, dt: float, x: List[np.ndarray],
                                   x_dot: np.ndarray, process_id: int) -> None:
        pass

    def post_timestep(self, x: List[np.ndarray], x_dot: List[np.ndarray], t: float, dt: float,
                      process_id: int) -> None:
        pass
