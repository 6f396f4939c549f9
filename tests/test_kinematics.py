"""Leg forward/inverse kinematics, Jacobian and force mapping."""

import numpy as np
import pytest

from a1_locomotion.config import HIP_OFFSETS, NUM_LEGS
from a1_locomotion.kinematics import RobotKinematics, rpy_to_matrix


def numeric_jacobian(kin, leg_id, q, h=1e-6):
    J = np.zeros((3, 3))
    for j in range(3):
        dq = np.zeros(3)
        dq[j] = h
        J[:, j] = (kin.foot_position_in_base_frame(leg_id, q + dq)
                   - kin.foot_position_in_base_frame(leg_id, q - dq)) / (2 * h)
    return J


class TestForwardKinematics:

    def test_zero_pose_hangs_straight_down(self, kin):
        for i in range(NUM_LEGS):
            p = kin.foot_position_in_hip_frame(i, np.zeros(3))
            assert p[0] == pytest.approx(0.0, abs=1e-12)
            assert abs(p[1]) == pytest.approx(kin.l_hip)
            assert p[2] == pytest.approx(-(kin.l_up + kin.l_low))

    def test_left_and_right_legs_mirror(self, kin):
        q = np.array([0.0, 0.7, -1.4])
        fr = kin.foot_position_in_hip_frame(0, q)
        fl = kin.foot_position_in_hip_frame(1, q)
        assert fr[1] < 0 < fl[1]
        np.testing.assert_allclose(fr[[0, 2]], fl[[0, 2]])

    def test_all_feet_shape(self, kin):
        feet = kin.foot_positions_in_base_frame(np.tile([0.0, 0.7, -1.4], 4))
        assert feet.shape == (4, 3)
        # same angles on every leg: same fore-aft offset from each hip
        dx = feet[:, 0] - HIP_OFFSETS[:, 0]
        np.testing.assert_allclose(dx, dx[0])


class TestJacobian:

    @pytest.mark.parametrize("leg_id", range(NUM_LEGS))
    @pytest.mark.parametrize("q", [
        [0.0, 0.7, -1.4],
        [0.2, 0.4, -1.9],
        [-0.3, 1.1, -1.0],
    ])
    def test_matches_finite_difference(self, kin, leg_id, q):
        q = np.array(q)
        np.testing.assert_allclose(kin.compute_jacobian(leg_id, q),
                                   numeric_jacobian(kin, leg_id, q), atol=1e-6)


class TestInverseKinematics:

    @pytest.mark.parametrize("leg_id", range(NUM_LEGS))
    def test_round_trip_nominal(self, kin, leg_id):
        target = kin.nominal_foot_positions(0.30)[leg_id]
        q, ok = kin.inverse_kinematics(leg_id, target)
        assert ok
        np.testing.assert_allclose(kin.foot_position_in_base_frame(leg_id, q), target, atol=1e-9)

    @pytest.mark.parametrize("offset", [
        [0.08, 0.02, 0.03],
        [-0.10, -0.03, 0.05],
        [0.05, 0.0, 0.10],
    ])
    def test_round_trip_inside_workspace(self, kin, offset):
        for leg_id in range(NUM_LEGS):
            target = kin.nominal_foot_positions(0.28)[leg_id] + np.array(offset)
            q, ok = kin.inverse_kinematics(leg_id, target)
            assert ok
            np.testing.assert_allclose(kin.foot_position_in_base_frame(leg_id, q),
                                       target, atol=1e-9)

    def test_ik_of_fk_recovers_angles(self, kin):
        q = np.array([0.15, 0.6, -1.5])
        p = kin.foot_position_in_base_frame(2, q)
        q_ik, ok = kin.inverse_kinematics(2, p)
        assert ok
        np.testing.assert_allclose(q_ik, q, atol=1e-9)

    def test_too_far_is_clamped_to_max_length(self, kin):
        target = HIP_OFFSETS[0] + np.array([0.0, -kin.l_hip, -1.0])
        q, ok = kin.inverse_kinematics(0, target)
        assert not ok
        assert np.all(np.isfinite(q))
        reached = kin.foot_position_in_base_frame(0, q) - HIP_OFFSETS[0]
        assert reached[2] == pytest.approx(-kin.l_max, abs=1e-6)

    def test_too_close_is_clamped(self, kin):
        target = HIP_OFFSETS[1] + np.array([0.0, kin.l_hip, -0.02])
        q, ok = kin.inverse_kinematics(1, target)
        assert not ok
        assert np.all(np.isfinite(q))

    def test_inside_hip_link_radius_is_clamped(self, kin):
        q, ok = kin.inverse_kinematics(3, HIP_OFFSETS[3])
        assert not ok
        assert np.all(np.isfinite(q))

    def test_clamp_reports_reachable_points_unchanged(self, kin):
        p = kin.foot_position_in_hip_frame(0, np.array([0.0, 0.7, -1.4]))
        clamped, ok = kin.clamp_to_workspace(0, p)
        assert ok
        np.testing.assert_allclose(clamped, p, atol=1e-12)


class TestForceMapping:

    def test_identity_orientation(self, kin):
        q = np.array([0.0, 0.7, -1.4])
        F = np.array([5.0, -3.0, 30.0])
        tau = kin.map_force_to_torque(0, F, q, np.eye(3))
        np.testing.assert_allclose(tau, -kin.compute_jacobian(0, q).T @ F)

    def test_rotation_is_applied_to_world_force(self, kin):
        q = np.array([0.0, 0.7, -1.4])
        R = rpy_to_matrix([0.0, 0.0, np.pi / 2])
        F_world = np.array([1.0, 0.0, 0.0])
        tau = kin.map_force_to_torque(1, F_world, q, R)
        # a world-x force is a body -y force after a 90 deg yaw
        np.testing.assert_allclose(tau, -kin.compute_jacobian(1, q).T @ np.array([0.0, -1.0, 0.0]),
                                   atol=1e-12)

    def test_upward_grf_pushes_knee_open(self, kin):
        q = np.array([0.0, 0.7, -1.4])
        tau = kin.map_force_to_torque(0, np.array([0.0, 0.0, 30.0]), q, np.eye(3))
        assert tau[2] > 0.0


class TestRotation:

    def test_identity(self):
        np.testing.assert_allclose(rpy_to_matrix([0.0, 0.0, 0.0]), np.eye(3), atol=1e-12)

    def test_yaw_only(self):
        R = rpy_to_matrix([0.0, 0.0, np.pi / 2])
        np.testing.assert_allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)

    def test_composition_order(self):
        r, p, y = 0.1, -0.2, 0.3
        c, s = np.cos, np.sin
        Rx = np.array([[1, 0, 0], [0, c(r), -s(r)], [0, s(r), c(r)]])
        Ry = np.array([[c(p), 0, s(p)], [0, 1, 0], [-s(p), 0, c(p)]])
        Rz = np.array([[c(y), -s(y), 0], [s(y), c(y), 0], [0, 0, 1]])
        np.testing.assert_allclose(rpy_to_matrix([r, p, y]), Rz @ Ry @ Rx, atol=1e-12)


def test_custom_geometry():
    kin = RobotKinematics(l_hip=0.05, l_up=0.25, l_low=0.25)
    assert kin.l_max > RobotKinematics().l_max
