# couplesim/timeloop/time_loop.py
"""
Time loop: advances a set of processes from start to end time.

Per step:
  1. advance the time tentatively by the step size computed last time,
  2. solve the processes, either one after the other in registration order
     (monolithic scheme) or in staggered fixed-point rounds until the global
     coupling criteria are met,
  3. on success run the post-time-step hooks,
  4. ask every process's controller for the next step size; the global step
     is the minimum, clamped by the end time and the fixed output times,
  5. accept (push current → previous, write output) or reject (roll time
     back, restore current ← previous, retry with the new, smaller step).

Typical driver (see ``run_time_loop``)::

    loop.initialize()
    while loop.current_time < loop.end_time:
        loop.execute_time_step()
        if not loop.calculate_next_time_step():
            break
    loop.output_last_time_step()
    loop.finalize()
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from couplesim.errors import SetupError, StepSizeStalled, UnsupportedSchemeConfiguration
from couplesim.process.coupled_solutions import CoupledSolutions
from couplesim.process.ode_system import create_ode_system
from couplesim.solver.convergence import ConvergenceCriterion, VecNormType, compute_relative_change
from couplesim.solver.nonlinear import NonlinearSolverStatus
from couplesim.timestepping.base import NONCONVERGED_ERROR, TimeStepperState, time_tolerance
from couplesim.timestepping.fixed_times import (
    TimeStepConstraint,
    calculate_unique_fixed_times,
    end_time_constraint,
    fixed_times_constraint,
)
from couplesim.timestepping.time_step import TimeStep, update_time_steps
from couplesim.utils import RunTime
from couplesim.utils import diagnostics as diag
from couplesim.utils import logger

from .process_data import ProcessBundle, ProcessState
from .vector_pool import VectorPool

__all__ = ["StepRecord", "RunStatistics", "RunSummary", "TimeLoop", "run_time_loop"]

# Step-size stall test: fixed machine epsilon, independent of the magnitude of dt.
_STALL_EPS = float(np.finfo(np.float64).eps)


@dataclass(slots=True)
class StepRecord:
    """One attempted step, as seen after the controllers judged it."""
    step: int
    t: float
    dt: float
    accepted: bool
    iterations: Tuple[int, ...]


@dataclass(slots=True)
class RunStatistics:
    nonlinear_divergences: int = 0
    coupling_not_converged: int = 0
    coupling_iterations: List[int] = field(default_factory=list)


@dataclass(slots=True)
class RunSummary:
    accepted_steps: int
    rejected_steps: int
    final_time: float
    successful: bool
    statistics: RunStatistics
    history: List[StepRecord]


class TimeLoop:
    """
    Parameters
    ----------
    outputs : sequence of Output
        Sinks receiving solutions; their fixed output times constrain dt.
    per_process_data : sequence of ProcessBundle
        Registration order is solve order.
    global_coupling_max_iterations : int
        Staggered scheme only; 0 means a single round without a
        coupling-convergence test.
    global_coupling_conv_crit : sequence of ConvergenceCriterion
        Staggered scheme only; one per process, tested on the change of its
        solution between two coupling rounds.
    start_time, end_time : float
    time_step_constraints : sequence of callables ``(t, dt) -> dt'``, optional
        Extra constraints applied after the end-time and output-time ones.
    """

    def __init__(
        self,
        outputs: Sequence,
        per_process_data: Sequence[ProcessBundle],
        global_coupling_max_iterations: int,
        global_coupling_conv_crit: Sequence[ConvergenceCriterion],
        start_time: float,
        end_time: float,
        time_step_constraints: Optional[Sequence[TimeStepConstraint]] = None,
    ) -> None:
        if not per_process_data:
            raise SetupError("The time loop needs at least one process.")
        if not float(start_time) < float(end_time):
            raise SetupError(f"start time {start_time:g} must be smaller than end time {end_time:g}")
        if int(global_coupling_max_iterations) < 0:
            raise SetupError("global_coupling_max_iterations must be >= 0")

        self._outputs = list(outputs)
        self._per_process_data: List[ProcessBundle] = list(per_process_data)
        self._start_time = float(start_time)
        self._end_time = float(end_time)
        self._global_coupling_max_iterations = int(global_coupling_max_iterations)
        self._global_coupling_conv_crit = list(global_coupling_conv_crit)
        self._extra_constraints: List[TimeStepConstraint] = list(time_step_constraints or [])

        self._pool = VectorPool()
        self._states: List[ProcessState] = []
        self._solutions_of_last_cpl_iteration: List[np.ndarray] = []

        self._current_time = self._start_time
        self._dt = 0.0
        self._accepted_steps = 0
        self._rejected_steps = 0
        self._repeating_times_of_rejected_step = 0
        self._last_step_rejected = False
        self._is_staggered = False
        self._initialized = False
        self.successful_time_step = False

        self.statistics = RunStatistics()
        self.history: List[StepRecord] = []

    # ---- read-only state --------------------------------------------------------

    @property
    def current_time(self) -> float:
        return self._current_time

    @property
    def start_time(self) -> float:
        return self._start_time

    @property
    def end_time(self) -> float:
        return self._end_time

    @property
    def dt(self) -> float:
        return self._dt

    @property
    def accepted_steps(self) -> int:
        return self._accepted_steps

    @property
    def rejected_steps(self) -> int:
        return self._rejected_steps

    @property
    def last_step_rejected(self) -> bool:
        return self._last_step_rejected

    @property
    def is_staggered_coupling(self) -> bool:
        return self._is_staggered

    @property
    def per_process_data(self) -> List[ProcessBundle]:
        return list(self._per_process_data)

    @property
    def pool(self) -> VectorPool:
        return self._pool

    @property
    def states(self) -> List[ProcessState]:
        return list(self._states)

    @property
    def _x(self) -> List[np.ndarray]:
        return [s.current for s in self._states]

    @property
    def _x_prev(self) -> List[np.ndarray]:
        return [s.previous for s in self._states]

    # ---- setup ------------------------------------------------------------------

    def _check_schemes(self) -> None:
        # All processes share the scheme of the first one.
        first = self._per_process_data[0].process
        self._is_staggered = not first.is_monolithic_scheme_used()

        for pid, pd in enumerate(self._per_process_data):
            pcs = pd.process
            if pcs.is_monolithic_scheme_used() == self._is_staggered:
                raise UnsupportedSchemeConfiguration(
                    f"Process #{pid} ({pcs.name}) is configured for the "
                    f"{'monolithic' if pcs.is_monolithic_scheme_used() else 'staggered'} scheme, "
                    f"but process #0 ({first.name}) uses the "
                    f"{'staggered' if self._is_staggered else 'monolithic'} scheme."
                )
            if self._is_staggered and not pcs.supports_staggered_scheme:
                raise UnsupportedSchemeConfiguration(
                    f"Process #{pid} ({pcs.name}) only supports the monolithic scheme "
                    f"but is configured for staggered coupling."
                )
            if not self._is_staggered and not pcs.supports_monolithic_scheme:
                raise UnsupportedSchemeConfiguration(
                    f"Process #{pid} ({pcs.name}) only supports staggered coupling "
                    f"but is configured for the monolithic scheme."
                )

        if self._is_staggered:
            n = len(self._per_process_data)
            if len(self._global_coupling_conv_crit) != n:
                raise SetupError(
                    f"Staggered coupling needs one global convergence criterion per process "
                    f"({n}), got {len(self._global_coupling_conv_crit)}."
                )
            for crit in self._global_coupling_conv_crit:
                if not crit.has_delta_x_check():
                    raise SetupError(
                        f"Global coupling criterion {crit.name} has no DeltaX check; "
                        f"coupling convergence is judged on solution changes."
                    )

    def initialize(self) -> None:
        """Validate the setup, set initial conditions, output them, compute the first dt.

        Setup failures (``SetupError`` and its subclasses) are raised before
        any solution exists, so unlike the stalls during stepping they are not
        preceded by ``do_output_always``.
        """
        if self._initialized:
            raise SetupError("TimeLoop.initialize() called twice")

        self._check_schemes()

        for pid, pd in enumerate(self._per_process_data):
            pd.process_id = pid
            for output in self._outputs:
                output.add_process(pd.process)
            # Solver flavour resolved once here, never inside the loop.
            pd.ode_sys = create_ode_system(pd.process, pid, pd.time_disc, pd.nonlinear_solver.tag)
            pd.conv_crit.set_dof_table(pd.process.get_dof_table())
            if self._is_staggered:
                self._global_coupling_conv_crit[pid].set_dof_table(pd.process.get_dof_table())

        self._set_initial_conditions(self._start_time)

        if self._is_staggered:
            self._set_coupled_solutions()

        self._output_solutions(True, 0, self._start_time, "do_output")

        self._dt, self._last_step_rejected = self._compute_time_stepping(
            0.0, self._time_step_constraints()
        )

        for pd in self._per_process_data:
            pd.nonlinear_solver.set_equation_system(pd.ode_sys, pd.conv_crit)
            pd.nonlinear_solver.calculate_non_equilibrium_initial_residuum(
                self._x, self._x_prev, pd.process_id
            )

        self._initialized = True

    def _set_initial_conditions(self, t0: float) -> None:
        for pd in self._per_process_data:
            pcs = pd.process
            n = pcs.number_of_dofs
            x0 = np.asarray(pcs.initial_conditions(t0), dtype=np.float64)
            if x0.shape != (n,):
                raise SetupError(
                    f"Process #{pd.process_id} ({pcs.name}) returned initial conditions of "
                    f"shape {x0.shape}, expected ({n},)."
                )
            self._states.append(
                ProcessState(current=self._pool.acquire(n, copy_from=x0),
                             previous=self._pool.acquire(n, copy_from=x0))
            )
            pd.time_disc.set_initial_state(t0)
            pd.timestep_previous = TimeStep(t0)
            pd.timestep_current = TimeStep(t0)
            pd.nonlinear_solver_status = NonlinearSolverStatus(converged=True, iteration_count=0)

    def _set_coupled_solutions(self) -> None:
        for state in self._states:
            self._solutions_of_last_cpl_iteration.append(
                self._pool.acquire(state.current.size, copy_from=state.current)
            )

    def _time_step_constraints(self) -> List[TimeStepConstraint]:
        return [
            fixed_times_constraint(calculate_unique_fixed_times(self._outputs)),
            end_time_constraint(self._end_time),
            *self._extra_constraints,
        ]

    def finalize(self) -> None:
        """Hand every buffer back to the pool."""
        self._pool.release_all()
        self._states = []
        self._solutions_of_last_cpl_iteration = []

    def __enter__(self) -> "TimeLoop":
        return self

    def __exit__(self, *exc) -> None:
        self.finalize()

    # ---- step size --------------------------------------------------------------

    def _compute_solution_error(self, pd: ProcessBundle, is_initial_step: bool) -> float:
        if not pd.nonlinear_solver_status.converged:
            return NONCONVERGED_ERROR
        alg = pd.timestep_algorithm
        if not alg.is_solution_error_computation_needed():
            return 0.0
        if is_initial_step:
            # Always accepts the zeroth step
            return 0.0
        state = self._states[pd.process_id]
        norm_type = pd.conv_crit.norm_type if pd.conv_crit is not None else VecNormType.NORM2
        return compute_relative_change(state.current, state.previous, norm_type)

    def _compute_time_stepping(
        self, prev_dt: float, time_step_constraints: Sequence[TimeStepConstraint]
    ) -> Tuple[float, bool]:
        t = self._current_time
        all_process_steps_accepted = True
        dt = math.inf
        dt_owner: Optional[int] = None

        is_initial_step = any(pd.timestep_current.step_number == 0 for pd in self._per_process_data)

        for pd in self._per_process_data:
            alg = pd.timestep_algorithm
            status = pd.nonlinear_solver_status
            solution_error = self._compute_solution_error(pd, is_initial_step)

            pd.timestep_current.accepted = status.converged

            previous_step_accepted, timestepper_dt = alg.next(
                solution_error, status.iteration_count, pd.timestep_previous, pd.timestep_current
            )

            # A finished controller answers False as its "no more work" signal.
            if not previous_step_accepted and alg.state is not TimeStepperState.FINISHED:
                all_process_steps_accepted = False

            if not status.converged:
                logger.warn("Time step will be rejected due to nonlinear solver divergence.")
                all_process_steps_accepted = False

            if timestepper_dt > _STALL_EPS or abs(t - alg.end()) < time_tolerance(alg.end()):
                if timestepper_dt < dt:
                    dt = timestepper_dt
                    dt_owner = pd.process_id

        if not math.isfinite(dt):
            dt = 0.0

        if all_process_steps_accepted:
            self._repeating_times_of_rejected_step = 0
        else:
            self._repeating_times_of_rejected_step += 1

        last_step_rejected = False
        t_attempted = t
        if not is_initial_step:
            self.history.append(StepRecord(
                step=self._accepted_steps + 1, t=t, dt=prev_dt,
                accepted=all_process_steps_accepted,
                iterations=tuple(pd.nonlinear_solver_status.iteration_count
                                 for pd in self._per_process_data),
            ))
            if all_process_steps_accepted:
                self._accepted_steps += 1
            else:
                # back to the last accepted point, bit-exact
                t = self._per_process_data[0].timestep_previous.time
                self._current_time = t
                self._rejected_steps += 1
                last_step_rejected = True

        # adjust step size considering external constraints
        for constraint in time_step_constraints:
            constrained = constraint(t, dt)
            if constrained < dt:
                dt = constrained
                dt_owner = None

        # Check whether the time stepping is stabilized
        if abs(dt - prev_dt) < _STALL_EPS:
            if last_step_rejected:
                owner = ("an external step constraint" if dt_owner is None else
                         f"the time stepper of process #{dt_owner} "
                         f"({self._per_process_data[dt_owner].timestep_algorithm!r})")
                self._output_always(self._accepted_steps + 1, t_attempted)
                raise StepSizeStalled(
                    f"The new step size of {dt:g} proposed by {owner} is the same as that of "
                    f"the previous rejected time step ({prev_dt:g}).\nPlease re-run with a "
                    f"proper adjustment in the numerical settings, e.g. those for the time "
                    f"stepper, or the local or global nonlinear solver.",
                    process_id=dt_owner, dt=dt, previous_dt=prev_dt,
                )
            logger.debug(f"The time stepping is stabilized with the step size of {dt:g}.")

        # Reset the time step with the minimum step size, dt, and
        # update the solution of the previous time step.
        for pd in self._per_process_data:
            if all_process_steps_accepted:
                update_time_steps(dt, pd.timestep_previous, pd.timestep_current)
                pd.timestep_algorithm.reset_current_time_step(
                    dt, pd.timestep_previous, pd.timestep_current
                )
            else:
                # retry from the last accepted point
                pd.timestep_current.assign(pd.timestep_previous.advanced(dt))

        if not is_initial_step:
            if all_process_steps_accepted:
                for state in self._states:
                    state.push()
            else:
                diag.log_step_rejected(step=self._accepted_steps + 1,
                                       repeats=self._repeating_times_of_rejected_step)
                for state in self._states:
                    state.pop()

        return dt, last_step_rejected

    # ---- stepping ---------------------------------------------------------------

    def execute_time_step(self) -> bool:
        """Attempt one step of size ``dt``; returns whether all solves converged."""
        if not self._initialized:
            raise SetupError("TimeLoop.initialize() must be called before stepping")
        time_timestep = RunTime().start()

        self._current_time += self._dt
        timesteps = self._accepted_steps + 1
        diag.log_time_step_start(step=timesteps, t=self._current_time, dt=self._dt)

        self.successful_time_step = self._do_nonlinear_iteration(self._current_time, self._dt, timesteps)
        logger.info(f"[time] Time step #{timesteps:d} took {time_timestep.elapsed():g} s.")
        return self.successful_time_step

    def calculate_next_time_step(self) -> bool:
        """Judge the step just attempted; returns False when the run is over."""
        prev_dt = self._dt
        current_time = self._current_time
        timesteps = self._accepted_steps + 1

        self._dt, self._last_step_rejected = self._compute_time_stepping(
            prev_dt, self._time_step_constraints()
        )

        if not self._last_step_rejected:
            self._output_solutions(False, timesteps, current_time, "do_output")

        if (abs(self._current_time - self._end_time) < time_tolerance(self._end_time)
                or self._current_time + self._dt > self._end_time + time_tolerance(self._end_time)):
            return False

        if self._dt < _STALL_EPS:
            logger.warn(
                f"Time step size of {self._dt:g} is too small.\n"
                f"Time stepping stops at step {timesteps:d} and at time of {self._current_time:g}."
            )
            return False

        return True

    def output_last_time_step(self) -> None:
        diag.log_run_summary(accepted=self._accepted_steps, rejected=self._rejected_steps)
        if self.successful_time_step:
            self._output_solutions(False, self._accepted_steps,
                                   self._current_time, "do_output_last_timestep")

    def _do_nonlinear_iteration(self, t: float, dt: float, timesteps: int) -> bool:
        x = self._x
        for pd in self._per_process_data:
            pd.process.pre_timestep(x, t, dt, pd.process_id)

        if self._is_staggered:
            status = self._solve_coupled_equation_systems_by_staggered_scheme(t, dt, timesteps)
        else:
            status = self._solve_uncoupled_equation_systems(t, dt, timesteps)

        # Post time step only after a successful solve, otherwise it risks
        # running into the same failure as the solve itself.
        if status.converged:
            self._post_timestep_for_all_processes(t, dt)
        return status.converged

    def _post_timestep_for_all_processes(self, t: float, dt: float) -> None:
        x = self._x
        with self._pool.borrowed_many([s.current.size for s in self._states]) as x_dots:
            for pd, state, x_dot in zip(self._per_process_data, self._states, x_dots):
                state.time_derivative(pd.time_disc, out=x_dot)
            for pd, x_dot in zip(self._per_process_data, x_dots):
                pd.process.compute_secondary_variable(t, dt, x, x_dot, pd.process_id)
                pd.process.post_timestep(x, x_dots, t, dt, pd.process_id)

    def _solve_one_time_step_one_process(
        self, pd: ProcessBundle, timestep: int, t: float, dt: float,
        coupled: Optional[CoupledSolutions],
    ) -> NonlinearSolverStatus:
        pcs = pd.process
        pid = pd.process_id
        solver = pd.nonlinear_solver

        solver.set_equation_system(pd.ode_sys, pd.conv_crit)
        # Order matters: advance the discretization first, then solve.
        pd.time_disc.next_timestep(t, dt)
        pd.ode_sys.set_coupled_solutions(coupled)

        def post_iteration_callback(iteration: int, x: List[np.ndarray]) -> None:
            for output in self._outputs:
                output.do_output_nonlinear_iteration(pcs, pid, timestep, t, iteration, x)

        status = solver.solve(self._x, self._x_prev, post_iteration_callback, pid)
        if not status.converged:
            return status

        state = self._states[pid]
        with self._pool.borrowed(state.current.size) as x_dot:
            state.time_derivative(pd.time_disc, out=x_dot)
            pcs.post_nonlinear_solver(state.current, x_dot, t, dt, pid)
        return status

    def _solve_uncoupled_equation_systems(self, t: float, dt: float, timestep: int) -> NonlinearSolverStatus:
        status = NonlinearSolverStatus()
        for pd in self._per_process_data:
            pid = pd.process_id
            time_process = RunTime().start()
            status = self._solve_one_time_step_one_process(pd, timestep, t, dt, None)
            pd.nonlinear_solver_status = status
            logger.info(f"[time] Solving process #{pid:d} took {time_process.elapsed():g} s "
                        f"in time step #{timestep:d}")

            if not status.converged:
                self.statistics.nonlinear_divergences += 1
                logger.error(f"The nonlinear solver failed in time step #{timestep:d} at "
                             f"t = {t:g} s for process #{pid:d}.")
                if not pd.timestep_algorithm.can_reduce_timestep_size(
                        pd.timestep_current, pd.timestep_previous):
                    # save unsuccessful solution
                    self._output_always(timestep, t, only=pd)
                    raise StepSizeStalled(
                        f"Time stepper of process #{pid:d} cannot reduce the time step "
                        f"size ({dt:g}) further.",
                        process_id=pid, dt=dt, previous_dt=dt,
                    )
                return status
        return status

    def _solve_coupled_equation_systems_by_staggered_scheme(
        self, t: float, dt: float, timestep: int
    ) -> NonlinearSolverStatus:
        crits = self._global_coupling_conv_crit
        # 0 iterations: one round, no coupling test
        n_rounds = max(1, self._global_coupling_max_iterations)
        if self._global_coupling_max_iterations != 0:
            for crit in crits:
                crit.pre_first_iteration()

        status = NonlinearSolverStatus(converged=False, iteration_count=-1)
        coupling_iteration_converged = True
        rounds = 0
        for global_coupling_iteration in range(n_rounds):
            rounds = global_coupling_iteration + 1
            coupling_iteration_converged = True
            for crit in crits:
                crit.reset()

            for pd in self._per_process_data:
                pid = pd.process_id
                time_process = RunTime().start()

                # Views onto the latest solutions: later processes see this
                # round's results of earlier ones.
                coupled = CoupledSolutions(self._x)
                status = self._solve_one_time_step_one_process(pd, timestep, t, dt, coupled)
                pd.nonlinear_solver_status = status

                logger.info(
                    f"[time] Solving process #{pid:d} took {time_process.elapsed():g} s in "
                    f"time step #{timestep:d} coupling iteration #{global_coupling_iteration:d}"
                )

                if not status.converged:
                    self.statistics.nonlinear_divergences += 1
                    logger.warn(f"The nonlinear solver failed in time step #{timestep:d} at "
                                f"t = {t:g} s for process #{pid:d}.")
                    self._last_step_rejected = True
                    self.statistics.coupling_iterations.append(rounds)
                    return status

                # Check the convergence of the coupling iteration
                x = self._states[pid].current
                x_old = self._solutions_of_last_cpl_iteration[pid]
                if global_coupling_iteration > 0:
                    with self._pool.borrowed(x.size) as dx:
                        np.subtract(x_old, x, out=dx)
                        logger.info(f"------- Checking convergence criterion for coupled "
                                    f"solution of process #{pid:d} -------")
                        crits[pid].check_delta_x(dx, x)
                        crits[pid].set_no_first_iteration()
                    coupling_iteration_converged = (
                        coupling_iteration_converged and crits[pid].is_satisfied()
                    )
                np.copyto(x_old, x)

            if coupling_iteration_converged and global_coupling_iteration > 0:
                break

        self.statistics.coupling_iterations.append(rounds)
        if not coupling_iteration_converged:
            self.statistics.coupling_not_converged += 1
            logger.warn(f"The coupling iterations reaches its maximum number in time step "
                        f"#{timestep:d} at t = {t:g} s")

        return status

    # ---- output -----------------------------------------------------------------

    def _output_solutions(self, output_initial_condition: bool, timestep: int, t: float,
                          method: str) -> None:
        x = self._x
        for pd in self._per_process_data:
            # If the nonlinear solver diverged, the solution has already been saved.
            if not pd.nonlinear_solver_status.converged:
                continue
            pid = pd.process_id
            pcs = pd.process

            if output_initial_condition:
                # dummy dt; the time-derivative terms are ignored for the
                # initial secondary variables
                dt = 1.0
                pd.time_disc.next_timestep(t, dt)
                with self._pool.borrowed(self._states[pid].current.size) as x_dot:
                    pcs.pre_timestep(x, self._start_time, dt, pid)
                    pcs.compute_secondary_variable(self._start_time, dt, x, x_dot, pid)

            for output in self._outputs:
                getattr(output, method)(pcs, pid, timestep, t,
                                        pd.nonlinear_solver_status.iteration_count, x)

    def _output_always(self, timestep: int, t: float, only: Optional[ProcessBundle] = None) -> None:
        x = self._x
        for pd in self._per_process_data if only is None else [only]:
            diag.log_state_summary(x=x[pd.process_id], name=pd.process.name)
            for output in self._outputs:
                output.do_output_always(pd.process, pd.process_id, timestep, t,
                                        pd.nonlinear_solver_status.iteration_count, x)


def run_time_loop(loop: TimeLoop) -> RunSummary:
    """Drive ``loop`` from its start to its end time; buffers are released on every exit path."""
    with loop:
        loop.initialize()
        while loop.current_time < loop.end_time - time_tolerance(loop.end_time):
            loop.execute_time_step()
            if not loop.calculate_next_time_step():
                break
        loop.output_last_time_step()
        return RunSummary(
            accepted_steps=loop.accepted_steps,
            rejected_steps=loop.rejected_steps,
            final_time=loop.current_time,
            successful=loop.successful_time_step,
            statistics=loop.statistics,
            history=list(loop.history),
        )
