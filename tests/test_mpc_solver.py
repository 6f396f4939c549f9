"""Condensed QP construction and solver backends."""

import numpy as np
import pytest

from a1_locomotion.dynamics import RigidBodyDynamics
from a1_locomotion.errors import OptimizationError
from a1_locomotion.mpc_solver import (
    ConvexMPC, OsqpSolver, QPProblem, QPSolver, make_solver, project_forces,
)
from a1_locomotion.robot_params import A1, DynamicsParams, MPCWeights
from a1_locomotion.stance_controller import make_reference
from a1_locomotion.robot_params import DesiredCommand

FEET = np.array([
    [ 0.18, -0.13, -0.30],
    [ 0.18,  0.13, -0.30],
    [-0.18, -0.13, -0.30],
    [-0.18,  0.13, -0.30],
])


def box_qp():
    # min 1/2 x^2 - x  s.t. 0 <= x <= 0.5   ->  x = 0.5
    return QPProblem(H=np.array([[1.0]]), g=np.array([-1.0]),
                     C=np.array([[1.0]]), lb=np.array([0.0]), ub=np.array([0.5]))


def equality_qp():
    # min |x|^2  s.t.  x0 + x1 = 1, x1 >= 0.8
    return QPProblem(H=2 * np.eye(2), g=np.zeros(2),
                     C=np.array([[1.0, 1.0], [0.0, 1.0]]),
                     lb=np.array([1.0, 0.8]), ub=np.array([1.0, np.inf]))


def hover_problem(mpc, contacts=np.ones(4, bool), weights=None):
    K = mpc.K
    weights = weights or MPCWeights.from_vector(A1.mpc_weights)
    dyn = RigidBodyDynamics(DynamicsParams(A1.mass, A1.BI))
    x0 = np.zeros(13)
    x0[5], x0[12] = A1.body_height, -A1.g
    Ad, Bd = dyn.discretise(dyn.Ac(0.0), dyn.Bc(FEET, 0.0, contacts), A1.mpc_dt)
    Aqp, Bqp = mpc.condense([Ad] * K, [Bd] * K)
    Xref = make_reference(x0, DesiredCommand(), A1.body_height, A1.mpc_dt, K, A1.g)
    H, g = mpc.cost(Aqp, Bqp, x0, Xref, weights)
    C, lb, ub = mpc.constraints(np.tile(contacts, (K, 1)))
    return H, g, C, lb, ub


class TestBackends:

    def test_osqp_box(self):
        x, ok = OsqpSolver().solve(box_qp())
        assert ok
        assert x[0] == pytest.approx(0.5, abs=1e-4)

    def test_osqp_equality(self):
        x, ok = OsqpSolver().solve(equality_qp())
        assert ok
        np.testing.assert_allclose(x, [0.2, 0.8], atol=1e-4)

    def test_osqp_infeasible_reports_failure(self):
        p = QPProblem(H=np.eye(1), g=np.zeros(1), C=np.array([[1.0], [1.0]]),
                      lb=np.array([1.0, -np.inf]), ub=np.array([np.inf, 0.0]))
        x, ok = OsqpSolver().solve(p)
        assert not ok
        assert x is None

    @pytest.mark.filterwarnings("error::PendingDeprecationWarning")
    def test_osqp_status_path_without_warnings(self):
        x, ok = OsqpSolver().solve(box_qp())
        assert ok
        p = QPProblem(H=np.eye(1), g=np.zeros(1), C=np.array([[1.0], [1.0]]),
                      lb=np.array([1.0, -np.inf]), ub=np.array([np.inf, 0.0]))
        x, ok = OsqpSolver().solve(p)
        assert not ok

    def test_quadprog_matches_osqp(self):
        pytest.importorskip("quadprog")
        solver = make_solver("quadprog")
        x, ok = solver.solve(box_qp())
        assert ok
        assert x[0] == pytest.approx(0.5, abs=1e-6)
        x, ok = solver.solve(equality_qp())
        assert ok
        np.testing.assert_allclose(x, [0.2, 0.8], atol=1e-6)

    def test_make_solver(self):
        assert isinstance(make_solver("osqp", max_iter=100), OsqpSolver)
        assert make_solver("osqp", max_iter=100).settings["max_iter"] == 100
        with pytest.raises(ValueError):
            make_solver("cvxopt")

    def test_base_solver_is_abstract(self):
        with pytest.raises(NotImplementedError):
            QPSolver().solve(box_qp())


class TestCondensedMPC:

    def test_condense_matches_rollout(self):
        K = 4
        mpc = ConvexMPC(K)
        rng = np.random.RandomState(0)
        Ad_list = [np.eye(13) + 0.01 * rng.randn(13, 13) for _ in range(K)]
        Bd_list = [0.01 * rng.randn(13, 12) for _ in range(K)]
        x0 = rng.randn(13)
        U = rng.randn(K * 12)
        Aqp, Bqp = mpc.condense(Ad_list, Bd_list)

        x = x0
        for k in range(K):
            x = Ad_list[k] @ x + Bd_list[k] @ U[k*12:(k+1)*12]
            np.testing.assert_allclose((Aqp @ x0 + Bqp @ U)[k*13:(k+1)*13], x, atol=1e-12)

    def test_constraint_rows(self):
        mpc = ConvexMPC(3)
        schedule = np.array([[True, False, True, True]] * 3)
        C, lb, ub = mpc.constraints(schedule)
        assert C.shape == (3 * (5 * 3 + 3), 36)
        assert np.all(lb <= ub)

    def test_force_weight_is_floored(self):
        mpc = ConvexMPC(2)
        w = MPCWeights.from_vector(np.append(np.ones(12), 0.0))
        assert mpc.force_weight(w) == A1.min_force_regularization
        w = MPCWeights.from_vector(np.append(np.ones(12), 0.5))
        assert mpc.force_weight(w) == 0.5

    def test_hessian_positive_definite_with_zero_weights(self):
        mpc = ConvexMPC(5)
        H, *_ = hover_problem(mpc, weights=MPCWeights.from_vector(np.zeros(13)))
        assert np.all(np.linalg.eigvalsh(H) > 0.0)

    def test_hover_solution(self):
        mpc = ConvexMPC(A1.horizon)
        U = mpc.solve(*hover_problem(mpc))
        f = U[:12].reshape(4, 3)
        assert f[:, 2].sum() == pytest.approx(A1.mass * A1.g, rel=0.02)
        np.testing.assert_allclose(f[:, 2], f[0, 2], rtol=0.05)
        assert mpc.stats == {"solves": 1, "fails": 0}

    def test_swing_legs_get_zero_force(self):
        contacts = np.array([True, False, False, True])
        mpc = ConvexMPC(A1.horizon)
        U = mpc.solve(*hover_problem(mpc, contacts))
        f = project_forces(U[:12].reshape(4, 3), contacts, A1.mu, A1.f_min, A1.f_max)
        assert np.all(f[1] == 0.0) and np.all(f[2] == 0.0)
        assert f[:, 2].sum() == pytest.approx(A1.mass * A1.g, rel=0.05)

    def test_failure_raises_and_counts(self):
        class Failing(QPSolver):
            name = "failing"

            def solve(self, problem, warm_start=None):
                return None, False

        mpc = ConvexMPC(A1.horizon, solver=Failing())
        with pytest.raises(OptimizationError):
            mpc.solve(*hover_problem(mpc))
        assert mpc.stats["fails"] == 1


class TestProjection:

    def test_inside_cone_unchanged(self):
        f = np.array([[1.0, -2.0, 30.0]] * 4)
        out = project_forces(f, np.ones(4, bool), 0.45, 5.0, 150.0)
        np.testing.assert_array_equal(out, f)

    def test_clipped_to_pyramid_and_bounds(self):
        f = np.array([
            [50.0, 0.0, 30.0],
            [0.0, -50.0, 30.0],
            [0.0, 0.0, 500.0],
            [0.0, 0.0, -10.0],
        ])
        out = project_forces(f, np.ones(4, bool), 0.45, 5.0, 150.0)
        assert np.all(np.abs(out[:, 0]) <= 0.45 * out[:, 2] + 1e-12)
        assert np.all(np.abs(out[:, 1]) <= 0.45 * out[:, 2] + 1e-12)
        assert np.all((out[:, 2] >= 5.0) & (out[:, 2] <= 150.0))

    def test_swing_zeroed(self):
        f = np.ones((4, 3)) * 20.0
        out = project_forces(f, np.array([False, True, True, False]), 0.45, 5.0, 150.0)
        assert np.all(out[[0, 3]] == 0.0)
