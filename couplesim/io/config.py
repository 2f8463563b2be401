# couplesim/io/config.py
# -*- coding: utf-8 -*-
"""
YAML → processes, solvers, step controllers, outputs and the time loop.

Schema (minimal, example):

model:
  processes:
    - { name: a, type: ExchangeField, rate: 2.0, x0: [1.0], partner_id: 1 }
    - { name: b, type: ExchangeField, rate: 1.0, x0: [0.0], partner_id: 0 }

time_loop:
  coupling_scheme: staggered          # or monolithic (default)
  global_coupling:
    max_iterations: 20
    convergence_criteria:
      - { type: DeltaX, abstol: 1e-10 }
      - { type: DeltaX, abstol: 1e-10 }
  processes:
    - process: a
      nonlinear_solver: { type: Newton, max_iter: 10 }
      convergence_criterion: { type: DeltaX, abstol: 1e-12 }
      time_stepping: { type: FixedTimeStepping, t_initial: 0, t_end: 1, delta_t: 0.1 }
    - process: b
      nonlinear_solver: { type: Picard, max_iter: 20 }
      convergence_criterion: { type: DeltaX, abstol: 1e-12 }
      time_stepping: { type: FixedTimeStepping, t_initial: 0, t_end: 1, delta_t: 0.1 }

output:
  type: npz                           # or memory
  directory: runs/exchange
  prefix: exchange
  every_n_steps: 1
  fixed_output_times: [0.25, 0.5]
"""
from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from couplesim.errors import ConfigError
from couplesim.models.decay import LinearDecay
from couplesim.models.exchange import ExchangeField
from couplesim.models.heat1d import NonlinearHeat1D
from couplesim.output.sink import MemoryOutput, NpzOutput, Output
from couplesim.process.base import Process
from couplesim.solver.convergence import ConvergenceCriterion, create_convergence_criterion
from couplesim.solver.nonlinear import NonlinearSolver, create_nonlinear_solver
from couplesim.timeloop.process_data import ProcessBundle
from couplesim.timeloop.time_loop import TimeLoop
from couplesim.timestepping.base import TimeStepAlgorithm
from couplesim.timestepping.create import create_time_stepping

__all__ = [
    "RunConfig",
    "load_config",
    "parse_config",
    "build_processes",
    "build_time_stepping",
    "build_convergence_criterion",
    "build_nonlinear_solver",
    "build_output",
    "build_time_loop",
]

_PROCESS_TYPES = {
    "LinearDecay": LinearDecay,
    "NonlinearHeat1D": NonlinearHeat1D,
    "ExchangeField": ExchangeField,
}


@dataclass
class RunConfig:
    raw: dict
    path: Optional[Path] = None


def load_config(path: Path) -> RunConfig:
    try:
        data = yaml.safe_load(Path(path).read_text())
    except yaml.YAMLError as exc:
        raise ConfigError(f"{path}: invalid YAML ({exc})") from exc
    return parse_config(data, path=Path(path))


def parse_config(data: Any, path: Optional[Path] = None) -> RunConfig:
    if not isinstance(data, dict):
        raise ConfigError("Top-level YAML must be a mapping")
    _validate_minimum(data)
    return RunConfig(raw=data, path=path)


# ---- leaf builders ------------------------------------------------------------


def _wrap(what: str, fn, section: Dict[str, Any]):
    if not isinstance(section, dict):
        raise ConfigError(f"{what} must be a mapping, got {type(section).__name__}")
    try:
        return fn(section)
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid {what} {section!r}: {exc}") from exc


def build_time_stepping(section: Dict[str, Any]) -> TimeStepAlgorithm:
    return _wrap("time_stepping", create_time_stepping, section)


def build_convergence_criterion(section: Dict[str, Any]) -> ConvergenceCriterion:
    return _wrap("convergence_criterion", create_convergence_criterion, section)


def build_nonlinear_solver(section: Dict[str, Any]) -> NonlinearSolver:
    return _wrap("nonlinear_solver", create_nonlinear_solver, section)


def build_processes(cfg: RunConfig) -> Dict[str, Process]:
    monolithic = _coupling_scheme(cfg) == "monolithic"
    processes: Dict[str, Process] = {}
    for row in cfg.raw["model"].get("processes", []):
        kind = str(row.get("type", ""))
        if kind not in _PROCESS_TYPES:
            raise ConfigError(f"Unknown process type {kind!r} (use {', '.join(_PROCESS_TYPES)})")
        try:
            pcs = _PROCESS_TYPES[kind].from_config(row, use_monolithic_scheme=monolithic)
        except (KeyError, TypeError, ValueError) as exc:
            raise ConfigError(f"invalid process {row!r}: {exc}") from exc
        if pcs.name in processes:
            raise ConfigError(f"duplicate process name {pcs.name!r}")
        processes[pcs.name] = pcs
    if not processes:
        raise ConfigError("model.processes is empty")
    return processes


def build_output(cfg: RunConfig) -> Output:
    o = dict(cfg.raw.get("output") or {})
    kind = str(o.pop("type", "memory"))
    kwargs = dict(
        every_n_steps=int(o.get("every_n_steps", 1)),
        fixed_output_times=[float(t) for t in o.get("fixed_output_times", [])],
        output_nonlinear_iterations=bool(o.get("nonlinear_iterations", False)),
    )
    if kind == "memory":
        return MemoryOutput(**kwargs)
    if kind == "npz":
        directory = o.get("directory")
        if directory is None:
            raise ConfigError("output.directory is required for npz output")
        return NpzOutput(Path(directory), prefix=str(o.get("prefix", "run")), **kwargs)
    raise ConfigError(f"Unknown output type {kind!r} (use memory or npz)")


def build_time_loop(cfg: RunConfig, outputs: Optional[List[Output]] = None) -> TimeLoop:
    """Wire everything; start/end time span all controllers' intervals."""
    tl = cfg.raw["time_loop"]
    processes = build_processes(cfg)
    if outputs is None:
        outputs = [build_output(cfg)]

    bundles: List[ProcessBundle] = []
    for row in tl.get("processes", []):
        name = str(row.get("process", ""))
        if name not in processes:
            raise ConfigError(f"time_loop references unknown process {name!r}")
        for key in ("nonlinear_solver", "convergence_criterion", "time_stepping"):
            if key not in row:
                raise ConfigError(f"time_loop process {name!r} is missing {key!r}")
        bundles.append(ProcessBundle(
            process=processes[name],
            nonlinear_solver=build_nonlinear_solver(row["nonlinear_solver"]),
            timestep_algorithm=build_time_stepping(row["time_stepping"]),
            conv_crit=build_convergence_criterion(row["convergence_criterion"]),
        ))
    if not bundles:
        raise ConfigError("time_loop.processes is empty")

    gc = tl.get("global_coupling") or {}
    global_crits = [build_convergence_criterion(c) for c in gc.get("convergence_criteria", [])]

    start = min(b.timestep_algorithm.begin() for b in bundles)
    end = max(b.timestep_algorithm.end() for b in bundles)
    return TimeLoop(
        outputs=outputs,
        per_process_data=bundles,
        global_coupling_max_iterations=int(gc.get("max_iterations", 1)),
        global_coupling_conv_crit=global_crits,
        start_time=start,
        end_time=end,
    )


def _coupling_scheme(cfg: RunConfig) -> str:
    scheme = str(cfg.raw["time_loop"].get("coupling_scheme", "monolithic")).lower()
    if scheme not in ("monolithic", "staggered"):
        raise ConfigError(f"time_loop.coupling_scheme must be monolithic or staggered, got {scheme!r}")
    return scheme


def _validate_minimum(cfg: dict) -> None:
    for key in ("model", "time_loop"):
        if key not in cfg:
            raise ConfigError(f"Missing top-level key: {key}")
        if not isinstance(cfg[key], dict):
            raise ConfigError(f"Top-level key {key} must be a mapping")
