# couplesim/timestepping/create.py
"""
Build a time-step algorithm from its configuration mapping.

Examples (YAML)::

    time_stepping: {type: FixedTimeStepping, t_initial: 0, t_end: 1, delta_t: 0.1}

    time_stepping:
      type: FixedTimeStepping
      t_initial: 0
      t_end: 1
      timesteps: [{repeat: 2, delta_t: 0.25}, {repeat: 5, delta_t: 0.1}]

    time_stepping:
      type: EvolutionaryPIDcontroller
      t_initial: 0
      t_end: 100
      dt_guess: 0.01
      dt_min: 1e-4
      dt_max: 10
      rel_dt_min: 0.1
      rel_dt_max: 10
      tol: 1e-3

    time_stepping:
      type: IterationNumberBasedTimeStepping
      t_initial: 0
      t_end: 10
      initial_dt: 0.1
      minimum_dt: 1e-3
      maximum_dt: 1
      number_iterations: [1, 4, 8]
      multiplier: [2.0, 1.0, 0.5]
"""
from __future__ import annotations

from typing import Any, Dict, List

from .base import TimeStepAlgorithm
from .evolutionary_pid import EvolutionaryPIDcontroller
from .fixed import FixedTimeStepping
from .iteration_number import IterationNumberBasedTimeStepping

__all__ = ["create_time_stepping"]


def _fixed_step_list(entries: List[Dict[str, Any]]) -> List[float]:
    dts: List[float] = []
    for row in entries:
        dts.extend([float(row["delta_t"])] * int(row.get("repeat", 1)))
    return dts


def create_time_stepping(config: Dict[str, Any]) -> TimeStepAlgorithm:
    kind = str(config.get("type", ""))
    t0 = float(config["t_initial"])
    t_end = float(config["t_end"])

    if kind == "FixedTimeStepping":
        if "timesteps" in config:
            return FixedTimeStepping(t0, t_end, _fixed_step_list(config["timesteps"]))
        return FixedTimeStepping(t0, t_end, float(config["delta_t"]))

    if kind == "EvolutionaryPIDcontroller":
        return EvolutionaryPIDcontroller(
            t0, t_end,
            h0=float(config["dt_guess"]),
            h_min=float(config["dt_min"]),
            h_max=float(config["dt_max"]),
            rel_h_min=float(config["rel_dt_min"]),
            rel_h_max=float(config["rel_dt_max"]),
            tol=float(config["tol"]),
        )

    if kind == "IterationNumberBasedTimeStepping":
        max_it = config.get("max_iterations")
        return IterationNumberBasedTimeStepping(
            t0, t_end,
            min_dt=float(config["minimum_dt"]),
            max_dt=float(config["maximum_dt"]),
            initial_dt=float(config["initial_dt"]),
            iter_times=list(config["number_iterations"]),
            multipliers=list(config["multiplier"]),
            max_iterations=None if max_it is None else int(max_it),
        )

    raise ValueError(f"Unknown time stepping type {kind!r}")
