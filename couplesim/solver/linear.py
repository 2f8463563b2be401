# -*- coding: utf-8 -*-
"""
Linear solver backends.

Keep the API tiny so the dense/tridiagonal pair can be swapped for SciPy,
PETSc, etc. later: a backend is a callable ``solve(A, b) -> x``. Matrices are
dense ``np.ndarray``; the tridiagonal backend only reads the three central
diagonals.
"""
from __future__ import annotations

from typing import Callable, Dict

import numpy as np

__all__ = [
    "LinearSolve",
    "LINEAR_SOLVER_ERRORS",
    "solve_dense",
    "solve_tridiagonal",
    "solve_tridiagonal_matrix",
    "get_linear_solver",
]

LinearSolve = Callable[[np.ndarray, np.ndarray], np.ndarray]

# Failures a nonlinear solver treats as "this iteration did not work out".
LINEAR_SOLVER_ERRORS = (np.linalg.LinAlgError, ZeroDivisionError, FloatingPointError)


def solve_tridiagonal(a: np.ndarray, b: np.ndarray, c: np.ndarray, d: np.ndarray) -> np.ndarray:
    """Solve tridiagonal system Ax=d, where A has subdiag a, diag b, superdiag c.

    ``a[0]`` and ``c[-1]`` are ignored. Works on temporary copies of a,b,c,d
    (Thomas algorithm). O(N).
    """
    n = b.size
    ac = np.asarray(a, dtype=np.float64).copy()
    bc = np.asarray(b, dtype=np.float64).copy()
    cc = np.asarray(c, dtype=np.float64).copy()
    dc = np.asarray(d, dtype=np.float64).copy()

    # Forward elimination
    for i in range(1, n):
        if bc[i - 1] == 0.0:
            raise ZeroDivisionError("Zero diagonal encountered in tridiagonal solve.")
        m = ac[i] / bc[i - 1]
        bc[i] -= m * cc[i - 1]
        dc[i] -= m * dc[i - 1]

    # Back substitution
    x = np.zeros_like(dc)
    if bc[-1] == 0.0:
        raise ZeroDivisionError("Zero diagonal encountered in tridiagonal solve (last row).")
    x[-1] = dc[-1] / bc[-1]
    for i in range(n - 2, -1, -1):
        if bc[i] == 0.0:
            raise ZeroDivisionError("Zero diagonal encountered in tridiagonal solve.")
        x[i] = (dc[i] - cc[i] * x[i + 1]) / bc[i]
    return x


def solve_tridiagonal_matrix(A: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """Thomas solve on the three central diagonals of a dense matrix."""
    A = np.asarray(A, dtype=np.float64)
    n = A.shape[0]
    if n == 1:
        if A[0, 0] == 0.0:
            raise ZeroDivisionError("Zero diagonal encountered in tridiagonal solve.")
        return np.array([rhs[0] / A[0, 0]], dtype=np.float64)
    a = np.zeros(n)
    c = np.zeros(n)
    a[1:] = np.diag(A, k=-1)
    c[:-1] = np.diag(A, k=1)
    return solve_tridiagonal(a, np.diag(A).copy(), c, rhs)


def solve_dense(A: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    """LU solve via LAPACK (numpy). Raises LinAlgError on singular A."""
    return np.linalg.solve(np.asarray(A, dtype=np.float64), np.asarray(rhs, dtype=np.float64))


_BACKENDS: Dict[str, LinearSolve] = {
    "dense": solve_dense,
    "tridiagonal": solve_tridiagonal_matrix,
}


def get_linear_solver(name: str = "dense") -> LinearSolve:
    try:
        return _BACKENDS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unknown linear solver backend {name!r} (available: {sorted(_BACKENDS)})"
        ) from None
