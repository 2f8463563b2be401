# couplesim/tests/_support.py
"""Small hand-made processes, solvers and controllers shared by the tests."""
from __future__ import annotations

from typing import List, Sequence, Tuple

import numpy as np

from couplesim.models.decay import LinearDecay
from couplesim.solver.convergence import DeltaX
from couplesim.solver.newton import NewtonSolver
from couplesim.solver.nonlinear import NonlinearSolverStatus
from couplesim.solver.picard import PicardSolver
from couplesim.timeloop.process_data import ProcessBundle
from couplesim.timestepping.base import TimeStepAlgorithm, TimeStepperState
from couplesim.timestepping.fixed import FixedTimeStepping
from couplesim.timestepping.iteration_number import IterationNumberBasedTimeStepping


class RecordingDecay(LinearDecay):
    """LinearDecay that logs every hook call as (hook, t)."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.hook_calls: List[Tuple[str, float]] = []

    def pre_timestep(self, x, t, dt, process_id) -> None:
        self.hook_calls.append(("pre_timestep", t))

    def post_nonlinear_solver(self, x, x_dot, t, dt, process_id) -> None:
        self.hook_calls.append(("post_nonlinear_solver", t))

    def compute_secondary_variable(self, t, dt, x, x_dot, process_id) -> None:
        super().compute_secondary_variable(t, dt, x, x_dot, process_id)
        self.hook_calls.append(("compute_secondary_variable", t))

    def post_timestep(self, x, x_dot, t, dt, process_id) -> None:
        super().post_timestep(x, x_dot, t, dt, process_id)
        self.hook_calls.append(("post_timestep", t))


class PicardOnlyDecay(LinearDecay):
    provides_jacobian = False


class DtLimitedSolver(PicardSolver):
    """Picard solver that 'diverges' whenever the step is larger than ``dt_limit``.

    A failed solve leaves garbage in the trial solution, as a real diverging
    solve would.
    """

    def __init__(self, dt_limit: float, **kwargs) -> None:
        super().__init__(**kwargs)
        self.dt_limit = float(dt_limit)
        self.n_failures = 0

    def solve(self, x, x_prev, post_iteration_callback, process_id) -> NonlinearSolverStatus:
        if self._ode_sys.dt > self.dt_limit:
            self.n_failures += 1
            x[process_id][:] = np.nan
            return NonlinearSolverStatus(converged=False, iteration_count=self.max_iter)
        return super().solve(x, x_prev, post_iteration_callback, process_id)


class ScriptedController(TimeStepAlgorithm):
    """Answers ``(True, dt0)`` for the initial step, then the scripted replies in order.

    Once the replies are used up it steps with ``dt0`` and finishes at the end time.
    """

    def __init__(self, t0: float, t_end: float, dt0: float,
                 replies: Sequence[Tuple[bool, float]], *, can_reduce: bool = True) -> None:
        super().__init__(t0, t_end)
        self.dt0 = dt0
        self.replies = list(replies)
        self.can_reduce = can_reduce

    def next(self, solution_error, number_iterations, ts_previous, ts_current):
        if ts_current.step_number == 0:
            self.state = TimeStepperState.STEPPING
            return True, self.dt0
        if self.replies:
            return self.replies.pop(0)
        if self._reached_end(ts_current.time):
            self.state = TimeStepperState.FINISHED
            return False, 0.0
        return True, self.dt0

    def can_reduce_timestep_size(self, ts_current, ts_previous) -> bool:
        return self.can_reduce


def delta_x(abstol: float = 1e-12) -> DeltaX:
    return DeltaX(abstol=abstol)


def fixed_bundle(process, t0: float = 0.0, t_end: float = 1.0, dt: float = 0.5,
                 solver=None) -> ProcessBundle:
    return ProcessBundle(
        process=process,
        nonlinear_solver=solver if solver is not None else NewtonSolver(max_iter=10),
        timestep_algorithm=FixedTimeStepping(t0, t_end, dt),
        conv_crit=delta_x(),
    )


def iteration_controller(t_end: float = 1.0, *, initial_dt: float = 0.4, min_dt: float = 0.01,
                         max_dt: float = 0.4) -> IterationNumberBasedTimeStepping:
    return IterationNumberBasedTimeStepping(
        0.0, t_end, min_dt=min_dt, max_dt=max_dt, initial_dt=initial_dt,
        iter_times=[0, 5], multipliers=[1.0, 0.5],
    )


def backward_euler_decay(x0: np.ndarray, rate: float, x_inf: float, dts: Sequence[float]) -> np.ndarray:
    x = np.array(x0, dtype=np.float64)
    for dt in dts:
        x = (x + rate * dt * x_inf) / (1.0 + rate * dt)
    return x
