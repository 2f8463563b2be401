# -*- coding: utf-8 -*-
"""
Time discretization (backward Euler / BDF1).

The scheme object only knows the current step's time and size; the solution
vectors are owned by the time loop and passed in.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

__all__ = ["BackwardEuler"]


@dataclass(slots=True)
class BackwardEuler:
    t: float = 0.0
    dt: float = 1.0

    def set_initial_state(self, t0: float) -> None:
        self.t = float(t0)

    def next_timestep(self, t: float, dt: float) -> None:
        self.t = float(t)
        self.dt = float(dt)

    def get_new_x_weight(self) -> float:
        """∂ẋ/∂x."""
        return 1.0 / self.dt

    def get_x_dot(self, x: np.ndarray, x_prev: np.ndarray, out: np.ndarray | None = None) -> np.ndarray:
        if out is None:
            return (x - x_prev) / self.dt
        np.subtract(x, x_prev, out=out)
        out /= self.dt
        return out
