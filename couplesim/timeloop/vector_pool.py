# couplesim/timeloop/vector_pool.py
"""
Pool of reusable float64 vectors, owned by one time loop.

Solution buffers are checked out for the lifetime of the run; scratch
buffers (ẋ, coupling deltas) are borrowed for a single step through the
``borrowed`` context managers, which hand them back on every exit path.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

__all__ = ["VectorPool"]


class VectorPool:
    def __init__(self) -> None:
        self._free: Dict[int, List[np.ndarray]] = {}
        self._checked_out: Dict[int, np.ndarray] = {}
        self.n_allocated = 0

    @property
    def n_checked_out(self) -> int:
        return len(self._checked_out)

    def acquire(self, size: int, *, copy_from: Optional[np.ndarray] = None) -> np.ndarray:
        size = int(size)
        free = self._free.get(size)
        if free:
            vec = free.pop()
        else:
            vec = np.empty(size, dtype=np.float64)
            self.n_allocated += 1
        if copy_from is not None:
            vec[:] = copy_from
        else:
            vec.fill(0.0)
        self._checked_out[id(vec)] = vec
        return vec

    def release(self, vec: np.ndarray) -> None:
        try:
            del self._checked_out[id(vec)]
        except KeyError:
            raise ValueError("vector was not checked out from this pool") from None
        self._free.setdefault(vec.size, []).append(vec)

    def release_all(self) -> None:
        for vec in list(self._checked_out.values()):
            self.release(vec)

    @contextmanager
    def borrowed(self, size: int, *, copy_from: Optional[np.ndarray] = None) -> Iterator[np.ndarray]:
        vec = self.acquire(size, copy_from=copy_from)
        try:
            yield vec
        finally:
            self.release(vec)

    @contextmanager
    def borrowed_many(self, sizes: Sequence[int]) -> Iterator[List[np.ndarray]]:
        vecs: List[np.ndarray] = []
        try:
            for n in sizes:
                vecs.append(self.acquire(n))
            yield vecs
        finally:
            for vec in vecs:
                self.release(vec)
