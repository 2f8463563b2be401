# couplesim/tests/test_time_stepping.py
"""Step-size controllers driven by hand, without a time loop."""
from __future__ import annotations

import math

import pytest

from couplesim.timestepping.base import NONCONVERGED_ERROR, TimeStepperState
from couplesim.timestepping.create import create_time_stepping
from couplesim.timestepping.evolutionary_pid import EvolutionaryPIDcontroller
from couplesim.timestepping.fixed import FixedTimeStepping
from couplesim.timestepping.fixed_times import (
    calculate_unique_fixed_times,
    end_time_constraint,
    possibly_clamp_dt_to_next_fixed_time,
)
from couplesim.timestepping.iteration_number import IterationNumberBasedTimeStepping
from couplesim.timestepping.time_step import TimeStep, update_time_steps


def _drive_fixed(alg):
    prev, cur = TimeStep(alg.begin()), TimeStep(alg.begin())
    times = []
    while True:
        accepted, dt = alg.next(0.0, 1, prev, cur)
        if not accepted:
            return times, dt
        update_time_steps(dt, prev, cur)
        times.append(cur.time)


def _pid():
    return EvolutionaryPIDcontroller(0.0, 10.0, h0=0.1, h_min=1e-3, h_max=1.0,
                                     rel_h_min=0.1, rel_h_max=2.0, tol=1e-2)


def _after_first_step(alg, dt: float):
    prev, cur = TimeStep(0.0), TimeStep(0.0)
    accepted, dt0 = alg.next(0.0, 0, prev, cur)
    assert accepted
    update_time_steps(dt, prev, cur)
    return prev, cur


# ---- fixed ---------------------------------------------------------------------


def test_fixed_stepping_is_deterministic():
    alg = FixedTimeStepping(0.0, 5.0, 1.0)
    times, last_dt = _drive_fixed(alg)
    assert times == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0])
    assert last_dt == 0.0
    assert alg.state is TimeStepperState.FINISHED


def test_fixed_stepping_last_step_lands_on_end():
    times, _ = _drive_fixed(FixedTimeStepping(0.0, 1.0, 0.3))
    assert times == pytest.approx([0.3, 0.6, 0.9, 1.0])


def test_fixed_stepping_from_list():
    alg = FixedTimeStepping(0.0, 1.0, [0.5, 0.25, 0.25])
    assert alg.target_times == pytest.approx([0.5, 0.75, 1.0])
    with pytest.raises(ValueError):
        FixedTimeStepping(0.0, 1.0, [0.5, 0.25])
    with pytest.raises(ValueError):
        FixedTimeStepping(0.0, 1.0, -0.1)
    with pytest.raises(ValueError):
        FixedTimeStepping(1.0, 1.0, 0.1)


def test_fixed_stepping_resumes_after_forced_short_step():
    alg = FixedTimeStepping(0.0, 1.0, 0.5)
    prev, cur = TimeStep(0.0), TimeStep(0.0)
    alg.next(0.0, 1, prev, cur)
    update_time_steps(0.2, prev, cur)        # an output time forced 0.2 instead of 0.5
    accepted, dt = alg.next(0.0, 1, prev, cur)
    assert accepted and dt == pytest.approx(0.3)


# ---- error based ---------------------------------------------------------------


def test_pid_first_step_uses_configured_size():
    alg = _pid()
    accepted, dt = alg.next(0.0, 0, TimeStep(0.0), TimeStep(0.0))
    assert accepted and dt == pytest.approx(0.1)
    assert alg.is_solution_error_computation_needed()


def test_pid_rejects_large_error_and_shrinks():
    alg = _pid()
    prev, cur = _after_first_step(alg, 0.1)
    accepted, dt = alg.next(0.5, 3, prev, cur)
    assert not accepted
    # h·tol/e = 0.002, limited by rel_h_min·h = 0.01
    assert dt == pytest.approx(0.01)


def test_pid_nonconverged_step_halves():
    alg = _pid()
    prev, cur = _after_first_step(alg, 0.1)
    cur.accepted = False
    accepted, dt = alg.next(NONCONVERGED_ERROR, 50, prev, cur)
    assert not accepted
    assert dt == pytest.approx(0.05)


def test_pid_grows_on_small_error_within_limits():
    alg = _pid()
    prev, cur = _after_first_step(alg, 0.1)
    accepted, dt = alg.next(0.0, 1, prev, cur)
    assert accepted and dt == pytest.approx(0.2)

    prev, cur = _after_first_step(alg, 0.1)
    accepted, dt = alg.next(5e-3, 1, prev, cur)
    assert accepted
    assert 0.1 < dt <= 0.2


def test_pid_can_reduce_until_minimum():
    alg = _pid()
    assert alg.can_reduce_timestep_size(TimeStep(1.0, 3, 0.1), TimeStep(0.9, 2, 0.1))
    assert not alg.can_reduce_timestep_size(TimeStep(1.0, 3, 1e-3), TimeStep(0.999, 2, 1e-3))


# ---- iteration based -----------------------------------------------------------


def _iter_alg(**kw):
    return IterationNumberBasedTimeStepping(0.0, 10.0, min_dt=0.01, max_dt=1.0, initial_dt=0.1,
                                            iter_times=[1, 3, 5], multipliers=[2.0, 1.0, 0.5], **kw)


def test_iteration_multiplier_lookup():
    alg = _iter_alg()
    assert alg.find_multiplier(0) == 2.0
    assert alg.find_multiplier(2) == 2.0
    assert alg.find_multiplier(3) == 1.0
    assert alg.find_multiplier(7) == 0.5


def test_iteration_based_growth_and_rejection():
    alg = _iter_alg(max_iterations=6)
    prev, cur = _after_first_step(alg, 0.1)
    accepted, dt = alg.next(0.0, 2, prev, cur)
    assert accepted and dt == pytest.approx(0.2)

    prev, cur = _after_first_step(alg, 0.1)
    accepted, dt = alg.next(0.0, 7, prev, cur)      # over the iteration cap
    assert not accepted and dt == pytest.approx(0.05)

    prev, cur = _after_first_step(alg, 0.1)
    cur.accepted = False
    accepted, dt = alg.next(math.inf, 50, prev, cur)
    assert not accepted and dt == pytest.approx(0.05)


def test_iteration_based_rejection_bottoms_out_at_min_dt():
    alg = _iter_alg()
    prev, cur = _after_first_step(alg, 0.015)
    cur.accepted = False
    accepted, dt = alg.next(math.inf, 50, prev, cur)
    assert not accepted and dt == pytest.approx(0.01)
    assert not alg.can_reduce_timestep_size(TimeStep(0.01, 1, 0.01), prev)


def test_iteration_based_rejects_multipliers_that_cannot_shrink():
    with pytest.raises(ValueError):
        IterationNumberBasedTimeStepping(0.0, 1.0, 0.01, 1.0, 0.1, [1, 2], [2.0, 1.0])


# ---- constraints ---------------------------------------------------------------


def test_clamp_to_next_fixed_time():
    times = [0.5, 1.0]
    assert possibly_clamp_dt_to_next_fixed_time(0.3, 0.3, times) == pytest.approx(0.2)
    assert possibly_clamp_dt_to_next_fixed_time(0.3, 0.1, times) == pytest.approx(0.1)
    # sitting on a fixed time: the next one counts
    assert possibly_clamp_dt_to_next_fixed_time(0.5, 0.7, times) == pytest.approx(0.5)
    assert possibly_clamp_dt_to_next_fixed_time(1.0, 0.7, times) == pytest.approx(0.7)


def test_end_time_constraint():
    clamp = end_time_constraint(1.0)
    assert clamp(0.8, 0.5) == pytest.approx(0.2)
    assert clamp(0.2, 0.5) == pytest.approx(0.5)


def test_unique_fixed_times_from_outputs():
    class _Out:
        def __init__(self, times):
            self.times = times

        def get_fixed_output_times(self):
            return self.times

    assert calculate_unique_fixed_times([_Out([1.0, 0.5]), _Out([0.5, 2.0])]) == [0.5, 1.0, 2.0]
    assert calculate_unique_fixed_times([]) == []


# ---- factory -------------------------------------------------------------------


def test_create_time_stepping_variants():
    alg = create_time_stepping({"type": "FixedTimeStepping", "t_initial": 0, "t_end": 1,
                                "timesteps": [{"repeat": 2, "delta_t": 0.25}, {"repeat": 1, "delta_t": 0.5}]})
    assert isinstance(alg, FixedTimeStepping)
    assert alg.target_times == pytest.approx([0.25, 0.5, 1.0])

    alg = create_time_stepping({"type": "EvolutionaryPIDcontroller", "t_initial": 0, "t_end": 5,
                                "dt_guess": 0.1, "dt_min": "1e-4", "dt_max": 1, "rel_dt_min": 0.1,
                                "rel_dt_max": 2, "tol": "1e-3"})
    assert isinstance(alg, EvolutionaryPIDcontroller)
    assert alg.h_min == pytest.approx(1e-4)

    alg = create_time_stepping({"type": "IterationNumberBasedTimeStepping", "t_initial": 0, "t_end": 5,
                                "initial_dt": 0.1, "minimum_dt": 0.01, "maximum_dt": 1,
                                "number_iterations": [1, 4], "multiplier": [1.5, 0.5]})
    assert isinstance(alg, IterationNumberBasedTimeStepping)
    assert alg.end() == 5.0

    with pytest.raises(ValueError):
        create_time_stepping({"type": "Adams", "t_initial": 0, "t_end": 1})
