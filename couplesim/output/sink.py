# couplesim/output/sink.py
"""
Output sinks: where the time loop hands converged (and, on failure, the last
attempted) solutions.

The loop calls, per process:
  - ``do_output`` after the initial state and after every accepted step,
  - ``do_output_nonlinear_iteration`` after every nonlinear iteration,
  - ``do_output_last_timestep`` once after the run,
  - ``do_output_always`` right before a fatal stop.

Whether a call actually writes is the sink's decision (``shall_do_output``);
``get_fixed_output_times`` feeds the loop's step-size clamping so that no
requested output time is stepped over.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Set, Tuple

import numpy as np

from couplesim.io.results import save_fields_npz
from couplesim.process.base import Process
from couplesim.timestepping.base import time_tolerance
from couplesim.utils import logger

__all__ = ["OutputRecord", "Output", "MemoryOutput", "NpzOutput"]


@dataclass(slots=True)
class OutputRecord:
    kind: str
    process: str
    process_id: int
    timestep: int
    t: float
    iteration: int
    x: np.ndarray
    secondary: Dict[str, np.ndarray] = field(default_factory=dict)


class Output(ABC):
    """
    Parameters
    ----------
    every_n_steps : int, default 1
        Write every n-th accepted step (0: only fixed output times).
    fixed_output_times : sequence of float
        Times that must be hit exactly; always written.
    output_nonlinear_iterations : bool
        Also write every nonlinear iteration.
    """

    def __init__(self, *, every_n_steps: int = 1, fixed_output_times: Sequence[float] = (),
                 output_nonlinear_iterations: bool = False) -> None:
        if int(every_n_steps) < 0:
            raise ValueError("every_n_steps must be >= 0")
        self.every_n_steps = int(every_n_steps)
        self._fixed_output_times = sorted(float(t) for t in fixed_output_times)
        self.output_nonlinear_iterations = bool(output_nonlinear_iterations)
        self.processes: List[Process] = []
        self._written: Set[Tuple[int, int]] = set()

    def add_process(self, process: Process) -> None:
        self.processes.append(process)

    def get_fixed_output_times(self) -> List[float]:
        return list(self._fixed_output_times)

    def _is_fixed_output_time(self, t: float) -> bool:
        return any(abs(t - tf) < time_tolerance(tf) for tf in self._fixed_output_times)

    def shall_do_output(self, timestep: int, t: float) -> bool:
        if timestep == 0:
            return True
        if self.every_n_steps > 0 and timestep % self.every_n_steps == 0:
            return True
        return self._is_fixed_output_time(t)

    # ---- called by the time loop ------------------------------------------------

    def do_output(self, process: Process, process_id: int, timestep: int, t: float,
                  iteration: int, x: List[np.ndarray]) -> None:
        if self.shall_do_output(timestep, t):
            self._write("step", process, process_id, timestep, t, iteration, x)

    def do_output_last_timestep(self, process: Process, process_id: int, timestep: int,
                                t: float, iteration: int, x: List[np.ndarray]) -> None:
        if (process_id, timestep) not in self._written:
            self._write("last", process, process_id, timestep, t, iteration, x)

    def do_output_always(self, process: Process, process_id: int, timestep: int, t: float,
                         iteration: int, x: List[np.ndarray]) -> None:
        self._write("always", process, process_id, timestep, t, iteration, x)

    def do_output_nonlinear_iteration(self, process: Process, process_id: int, timestep: int,
                                      t: float, iteration: int, x: List[np.ndarray]) -> None:
        if self.output_nonlinear_iterations:
            self._write("iteration", process, process_id, timestep, t, iteration, x)

    # ---- sink-specific ----------------------------------------------------------

    def _write(self, kind: str, process: Process, process_id: int, timestep: int, t: float,
               iteration: int, x: List[np.ndarray]) -> None:
        if kind != "iteration":
            self._written.add((process_id, timestep))
        self.write(kind, process, process_id, timestep, t, iteration, x)

    @abstractmethod
    def write(self, kind: str, process: Process, process_id: int, timestep: int, t: float,
              iteration: int, x: List[np.ndarray]) -> None:
        """Persist one snapshot; ``kind`` is step, last, always or iteration."""


class MemoryOutput(Output):
    """Keeps every call and a copy of every written snapshot (tests, notebooks)."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.calls: List[Tuple[str, int, int, float]] = []
        self.records: List[OutputRecord] = []

    def do_output(self, process, process_id, timestep, t, iteration, x) -> None:
        self.calls.append(("do_output", process_id, timestep, t))
        super().do_output(process, process_id, timestep, t, iteration, x)

    def do_output_last_timestep(self, process, process_id, timestep, t, iteration, x) -> None:
        self.calls.append(("do_output_last_timestep", process_id, timestep, t))
        super().do_output_last_timestep(process, process_id, timestep, t, iteration, x)

    def do_output_always(self, process, process_id, timestep, t, iteration, x) -> None:
        self.calls.append(("do_output_always", process_id, timestep, t))
        super().do_output_always(process, process_id, timestep, t, iteration, x)

    def do_output_nonlinear_iteration(self, process, process_id, timestep, t, iteration, x) -> None:
        self.calls.append(("do_output_nonlinear_iteration", process_id, timestep, t))
        super().do_output_nonlinear_iteration(process, process_id, timestep, t, iteration, x)

    def write(self, kind, process, process_id, timestep, t, iteration, x) -> None:
        self.records.append(OutputRecord(
            kind=kind, process=process.name, process_id=process_id, timestep=timestep,
            t=float(t), iteration=int(iteration), x=np.array(x[process_id], copy=True),
            secondary={k: np.array(v, copy=True) for k, v in process.secondary_variables.items()},
        ))

    def count(self, method: str, process_id: int | None = None) -> int:
        return sum(1 for c in self.calls
                   if c[0] == method and (process_id is None or c[1] == process_id))

    def times(self, process_id: int, kind: str = "step") -> List[float]:
        return [r.t for r in self.records if r.process_id == process_id and r.kind == kind]


class NpzOutput(Output):
    """One ``<prefix>_<process>_ts_<n>_t_<t>.npz`` per process and written step."""

    def __init__(self, directory: Path, prefix: str = "run", **kwargs) -> None:
        super().__init__(**kwargs)
        self.directory = Path(directory)
        self.prefix = prefix
        self.files: List[Path] = []

    def file_name(self, process: Process, timestep: int, t: float, iteration: int | None = None) -> str:
        name = f"{self.prefix}_{process.name}_ts_{timestep:d}_t_{t:.6g}"
        if iteration is not None:
            name += f"_nliter_{iteration:d}"
        return name + ".npz"

    def write(self, kind, process, process_id, timestep, t, iteration, x) -> None:
        name = self.file_name(process, timestep, t, iteration if kind == "iteration" else None)
        out = save_fields_npz(
            self.directory, name,
            x=np.asarray(x[process_id]), t=np.float64(t), timestep=np.int64(timestep),
            iterations=np.int64(iteration),
            **process.secondary_variables,
        )
        self.files.append(out)
        logger.debug(f"[out] wrote {out}")
