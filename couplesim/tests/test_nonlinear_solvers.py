# couplesim/tests/test_nonlinear_solvers.py
"""
Newton and Picard on single time-discretized processes: exact linear steps,
agreement on a nonlinear problem, and "not converged" as a plain status.
"""
from __future__ import annotations

import numpy as np
import pytest

from couplesim.errors import SolverTypeMismatch
from couplesim.models.decay import LinearDecay
from couplesim.models.heat1d import Heat1DParams, NonlinearHeat1D
from couplesim.process.base import Process
from couplesim.process.ode_system import NewtonODESystem, PicardODESystem, create_ode_system
from couplesim.process.time_discretization import BackwardEuler
from couplesim.solver.convergence import DeltaX, Residual
from couplesim.solver.newton import NewtonSolver
from couplesim.solver.nonlinear import SolverTag, create_nonlinear_solver
from couplesim.solver.picard import PicardSolver
from couplesim.tests._support import PicardOnlyDecay


def _mk_system(process, tag, t=0.1, dt=0.1):
    td = BackwardEuler()
    td.next_timestep(t, dt)
    return create_ode_system(process, 0, td, tag)


def _mk_heat(beta=2.0):
    return NonlinearHeat1D("heat", Heat1DParams(n_nodes=21, k0=1.0, beta=beta, source=1.0,
                                               u_left=1.0, u_right=0.0))


def _solve(solver, process, x0, crit=None, callback=None, dt=0.1):
    ode = _mk_system(process, solver.tag, dt=dt)
    solver.set_equation_system(ode, crit or DeltaX(abstol=1e-12))
    x = [np.array(x0, dtype=np.float64)]
    xp = [np.array(x0, dtype=np.float64)]
    status = solver.solve(x, xp, callback, 0)
    return status, x[0]


def test_newton_linear_decay_is_exact_backward_euler():
    p = LinearDecay("decay", rate=3.0, x0=[1.0, -2.0], x_inf=0.5)
    status, x = _solve(NewtonSolver(max_iter=5), p, p.initial_conditions(0.0))
    assert status.converged
    assert status.iteration_count <= 3
    assert np.allclose(x, p.exact_backward_euler(p.initial_conditions(0.0), 0.1), atol=1e-12)


def test_picard_linear_decay_is_exact_backward_euler():
    p = LinearDecay("decay", rate=3.0, x0=[1.0], x_inf=0.0)
    status, x = _solve(PicardSolver(max_iter=5), p, p.initial_conditions(0.0))
    assert status.converged
    assert x[0] == pytest.approx(1.0 / 1.3)


def test_newton_and_picard_agree_on_nonlinear_diffusion():
    p = _mk_heat()
    u0 = p.initial_conditions(0.0)
    s_n, u_n = _solve(NewtonSolver(max_iter=20, linear_solver="tridiagonal"), p, u0)
    s_p, u_p = _solve(PicardSolver(max_iter=200), p, u0)
    assert s_n.converged and s_p.converged
    assert s_n.iteration_count < s_p.iteration_count
    assert np.allclose(u_n, u_p, atol=1e-8)
    # Dirichlet values are kept
    assert u_n[0] == 1.0 and u_n[-1] == 0.0


def test_heat_jacobian_matches_finite_differences():
    p = _mk_heat(beta=3.0)
    ode = _mk_system(p, SolverTag.NEWTON, dt=0.05)
    assert isinstance(ode, NewtonODESystem)
    x = np.linspace(1.0, 0.0, p.number_of_dofs) + 0.1 * np.sin(np.linspace(0, np.pi, p.number_of_dofs))
    xp = np.zeros_like(x)
    r0, J = ode.assemble_newton(x, xp)
    h = 1e-7
    J_fd = np.empty_like(J)
    for j in range(x.size):
        xh = x.copy()
        xh[j] += h
        J_fd[:, j] = (ode.assemble_newton(xh, xp)[0] - r0) / h
    assert np.allclose(J, J_fd, atol=1e-4 * np.abs(J).max())


def test_nonconvergence_is_a_status_not_an_exception():
    p = _mk_heat(beta=5.0)
    status, _x = _solve(NewtonSolver(max_iter=1), p, p.initial_conditions(0.0),
                        crit=DeltaX(abstol=1e-14))
    assert not status.converged
    assert status.iteration_count == 1


def test_singular_system_ends_solve_as_not_converged():
    class _Singular(Process):
        provides_jacobian = True

        @property
        def number_of_dofs(self):
            return 2

        def initial_conditions(self, t0):
            return np.zeros(2)

        def assemble(self, t, dt, x, x_prev, coupled):
            return np.zeros((2, 2)), np.zeros((2, 2)), np.ones(2)

        def assemble_with_jacobian(self, t, dt, x, x_prev, coupled):
            return np.zeros((2, 2)), np.zeros((2, 2)), np.ones(2), np.zeros((2, 2))

    for solver in (NewtonSolver(max_iter=5), PicardSolver(max_iter=5)):
        status, _x = _solve(solver, _Singular("singular"), np.zeros(2))
        assert not status.converged


def test_residual_criterion_stops_newton():
    p = LinearDecay("decay", rate=1.0, x0=[2.0])
    status, x = _solve(NewtonSolver(max_iter=10), p, p.initial_conditions(0.0),
                       crit=Residual(abstol=1e-10))
    assert status.converged
    assert x[0] == pytest.approx(2.0 / 1.1)


def test_post_iteration_callback_sees_every_iterate():
    p = _mk_heat()
    seen = []
    status, x = _solve(NewtonSolver(max_iter=20), p, p.initial_conditions(0.0),
                       callback=lambda it, xs: seen.append((it, xs[0].copy())))
    assert [it for it, _ in seen] == list(range(1, status.iteration_count + 1))
    assert np.array_equal(seen[-1][1], x)


def test_non_equilibrium_initial_residuum_is_compensated():
    p = LinearDecay("decay", rate=2.0, x0=[1.0, 3.0], x_inf=0.0)
    solver = NewtonSolver(max_iter=5, compensate_non_equilibrium_initial_residuum=True)
    ode = _mk_system(p, SolverTag.NEWTON)
    solver.set_equation_system(ode, DeltaX(abstol=1e-12))
    x = [p.initial_conditions(0.0)]
    xp = [p.initial_conditions(0.0)]
    solver.calculate_non_equilibrium_initial_residuum(x, xp, 0)
    status = solver.solve(x, xp, None, 0)
    assert status.converged
    # the initial state is treated as equilibrium
    assert np.allclose(x[0], [1.0, 3.0])


def test_ode_system_flavour_follows_solver_tag():
    p = LinearDecay("decay", rate=1.0, x0=[1.0])
    assert type(_mk_system(p, SolverTag.PICARD)) is PicardODESystem
    assert type(_mk_system(p, SolverTag.NEWTON)) is NewtonODESystem
    with pytest.raises(SolverTypeMismatch):
        _mk_system(PicardOnlyDecay("decay", rate=1.0, x0=[1.0]), SolverTag.NEWTON)
    # Picard works for every process
    assert type(_mk_system(PicardOnlyDecay("decay", rate=1.0, x0=[1.0]), SolverTag.PICARD)) is PicardODESystem


def test_solver_factory():
    assert isinstance(create_nonlinear_solver({"type": "Newton", "max_iter": 7, "line_search": True}),
                      NewtonSolver)
    picard = create_nonlinear_solver({"type": "Picard", "relaxation": 0.5})
    assert isinstance(picard, PicardSolver) and picard.relaxation == 0.5
    with pytest.raises(ValueError):
        create_nonlinear_solver({"type": "Anderson"})
    with pytest.raises(ValueError):
        NewtonSolver(damping=0.0)


def test_newton_line_search_converges():
    p = _mk_heat(beta=4.0)
    status, u = _solve(NewtonSolver(max_iter=30, line_search=True), p, p.initial_conditions(0.0),
                       crit=DeltaX(abstol=1e-8))
    assert status.converged
    assert np.all(np.isfinite(u))


def test_newton_line_search_on_linear_process():
    # the second iterate is already the solution; no further descent is possible
    p = LinearDecay("decay", rate=3.0, x0=[1.0, -2.0], x_inf=0.5)
    status, x = _solve(NewtonSolver(max_iter=10, line_search=True), p, p.initial_conditions(0.0),
                       crit=DeltaX(reltol=1e-10))
    assert status.converged
    assert np.allclose(x, p.exact_backward_euler(p.initial_conditions(0.0), 0.1), atol=1e-12)
