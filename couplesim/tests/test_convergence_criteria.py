# couplesim/tests/test_convergence_criteria.py
"""DeltaX / Residual / PerComponentDeltaX evaluation and the factory."""
from __future__ import annotations

import numpy as np
import pytest

from couplesim.process.base import DOFTable
from couplesim.solver.convergence import (
    DeltaX,
    PerComponentDeltaX,
    Residual,
    VecNormType,
    compute_relative_change,
    create_convergence_criterion,
    norm,
)


def test_norm_types():
    v = np.array([3.0, -4.0])
    assert norm(v, VecNormType.NORM1) == pytest.approx(7.0)
    assert norm(v, VecNormType.NORM2) == pytest.approx(5.0)
    assert norm(v, VecNormType.INFINITY_N) == pytest.approx(4.0)
    assert VecNormType.parse("infinity_n") is VecNormType.INFINITY_N
    with pytest.raises(ValueError):
        VecNormType.parse("NORM3")


def test_relative_change_falls_back_to_absolute_near_zero():
    assert compute_relative_change(np.array([2.0]), np.array([1.0])) == pytest.approx(0.5)
    assert compute_relative_change(np.zeros(2), np.array([0.0, 1e-3])) == pytest.approx(1e-3)


def test_delta_x_absolute_and_relative():
    crit = DeltaX(abstol=1e-6)
    crit.reset()
    crit.check_delta_x(np.array([1e-7]), np.array([1.0]))
    assert crit.is_satisfied()

    crit = DeltaX(reltol=1e-3)
    crit.reset()
    crit.check_delta_x(np.array([1e-2]), np.array([100.0]))
    assert crit.is_satisfied()
    crit.reset()
    crit.check_delta_x(np.array([1.0]), np.array([100.0]))
    assert not crit.is_satisfied()


def test_delta_x_flag_accumulates_until_reset():
    crit = DeltaX(abstol=1e-6)
    crit.reset()
    crit.check_delta_x(np.array([1.0]), np.array([1.0]))
    crit.check_delta_x(np.array([0.0]), np.array([1.0]))
    assert not crit.is_satisfied()
    crit.reset()
    crit.check_delta_x(np.array([0.0]), np.array([1.0]))
    assert crit.is_satisfied()


def test_residual_relative_to_first_iteration():
    crit = Residual(reltol=1e-2)
    crit.pre_first_iteration()
    crit.reset()
    crit.check_residual(np.array([10.0]))
    assert not crit.is_satisfied()      # first iteration only records r0
    crit.set_no_first_iteration()
    crit.reset()
    crit.check_residual(np.array([0.05]))
    assert crit.is_satisfied()
    assert crit.has_residual_check() and not crit.has_delta_x_check()


def test_criterion_needs_a_tolerance():
    with pytest.raises(ValueError):
        DeltaX()
    with pytest.raises(ValueError):
        Residual()


def test_per_component_delta_x():
    table = DOFTable.interleaved(3, ["p", "T"])
    crit = PerComponentDeltaX(abstols=[1e-6, 1e-2])
    crit.set_dof_table(table)
    x = np.ones(6)
    dx = np.zeros(6)
    dx[1::2] = 1e-3     # T changes a little, within its own tolerance
    crit.reset()
    crit.check_delta_x(dx, x)
    assert crit.is_satisfied()
    dx[0] = 1e-3        # p changes beyond its tolerance
    crit.reset()
    crit.check_delta_x(dx, x)
    assert not crit.is_satisfied()


def test_per_component_requires_matching_dof_table():
    crit = PerComponentDeltaX(reltols=[1e-6, 1e-6])
    with pytest.raises(ValueError):
        crit.set_dof_table(DOFTable.single_component(4))
    with pytest.raises(RuntimeError):
        crit.check_delta_x(np.zeros(4), np.ones(4))


def test_factory_accepts_yaml_style_strings():
    crit = create_convergence_criterion({"type": "DeltaX", "reltol": "1e-8", "norm_type": "NORM1"})
    assert isinstance(crit, DeltaX)
    assert crit.reltol == pytest.approx(1e-8)
    assert crit.norm_type is VecNormType.NORM1
    assert isinstance(create_convergence_criterion({"type": "Residual", "abstol": 1e-3}), Residual)
    with pytest.raises(ValueError):
        create_convergence_criterion({"type": "Energy", "abstol": 1.0})
