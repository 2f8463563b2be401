# couplesim/process/coupled_solutions.py
"""Read-only views of all processes' latest solutions, for staggered coupling."""
from __future__ import annotations

from typing import List, Sequence

import numpy as np

__all__ = ["CoupledSolutions"]


class CoupledSolutions:
    """Snapshot-free, read-only access to the solution vectors of every process.

    The views share memory with the time loop's buffers, so a process solved
    later in the same coupling round sees the values the earlier processes
    just produced (Gauss–Seidel ordering). Writing through a view raises
    ``ValueError``.
    """

    def __init__(self, solutions: Sequence[np.ndarray]) -> None:
        views: List[np.ndarray] = []
        for x in solutions:
            v = x.view()
            v.flags.writeable = False
            views.append(v)
        self._views = views

    def __len__(self) -> int:
        return len(self._views)

    def __getitem__(self, process_id: int) -> np.ndarray:
        return self._views[process_id]

    def __iter__(self):
        return iter(self._views)
