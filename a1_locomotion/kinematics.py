"""
kinematics.py - A1 leg kinematics
=================================

Closed-form forward/inverse kinematics and the analytic 3x3 leg Jacobian for
an ab/ad-hip, thigh, calf leg. Every function is a pure function of the joint
angles (and, for force mapping, the body orientation) it is handed.

Hip frame: origin at the ab/ad joint, axes parallel to the base frame.
The ab/ad link has signed length l_hip (-y for right legs, +y for left legs);
thigh and calf rotate about the ab/ad-rotated y axis.

    l(knee)  = sqrt(l_up^2 + l_low^2 + 2 l_up l_low cos(knee))
    x        = -l sin(thigh + knee/2)
    (y, z)   = Rx(hip) . (l_hip, -l cos(thigh + knee/2))
"""

from typing import Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from a1_locomotion.config import (
    HIP_OFFSETS, HIP_SIGNS, JOINTS_PER_LEG, KNEE_MAX, KNEE_MIN, L_CALF, L_HIP,
    L_THIGH, NUM_LEGS,
)

_EPS = 1e-9


def rpy_to_matrix(rpy: np.ndarray) -> np.ndarray:
    """Body-to-world rotation R = Rz(yaw) Ry(pitch) Rx(roll)."""
    roll, pitch, yaw = rpy
    return Rotation.from_euler("ZYX", [yaw, pitch, roll]).as_matrix()


class RobotKinematics:
    """
    Usage::

        kin = RobotKinematics()
        q_leg, ok = kin.inverse_kinematics(leg_id, foot_in_base)
        J         = kin.compute_jacobian(leg_id, q_leg)
        tau       = kin.map_force_to_torque(leg_id, grf_world, q_leg, R)
    """

    def __init__(self,
                 hip_offsets: np.ndarray = HIP_OFFSETS,
                 l_hip: float = L_HIP,
                 l_up: float = L_THIGH,
                 l_low: float = L_CALF,
                 knee_range: Tuple[float, float] = (KNEE_MIN, KNEE_MAX)):
        self.hip_offsets = np.asarray(hip_offsets, dtype=float)
        self.l_hip = l_hip
        self.l_up  = l_up
        self.l_low = l_low

        # Reachable leg length is set by how far the knee can fold/extend
        self.l_min = self._leg_length(max(abs(k) for k in knee_range))
        self.l_max = self._leg_length(min(abs(k) for k in knee_range))

    def _leg_length(self, knee: float) -> float:
        return float(np.sqrt(self.l_up ** 2 + self.l_low ** 2
                             + 2.0 * self.l_up * self.l_low * np.cos(knee)))

    def _signed_l_hip(self, leg_id: int) -> float:
        return self.l_hip * HIP_SIGNS[leg_id]

    # ── Forward kinematics ────────────────────────────────────────────────────

    def foot_position_in_hip_frame(self, leg_id: int,
                                   leg_angles: np.ndarray) -> np.ndarray:
        t_ab, t_hip, t_knee = leg_angles
        l_hip = self._signed_l_hip(leg_id)
        leg_distance = self._leg_length(t_knee)
        eff_swing = t_hip + t_knee / 2.0

        off_x_hip = -leg_distance * np.sin(eff_swing)
        off_z_hip = -leg_distance * np.cos(eff_swing)
        off_y_hip = l_hip

        off_x = off_x_hip
        off_y = np.cos(t_ab) * off_y_hip - np.sin(t_ab) * off_z_hip
        off_z = np.sin(t_ab) * off_y_hip + np.cos(t_ab) * off_z_hip
        return np.array([off_x, off_y, off_z])

    def foot_position_in_base_frame(self, leg_id: int,
                                    leg_angles: np.ndarray) -> np.ndarray:
        return self.hip_offsets[leg_id] + self.foot_position_in_hip_frame(leg_id, leg_angles)

    def foot_positions_in_base_frame(self, joint_angles: np.ndarray) -> np.ndarray:
        """(4, 3) foot positions from the full 12-vector of joint angles."""
        q = np.asarray(joint_angles, dtype=float).reshape(NUM_LEGS, JOINTS_PER_LEG)
        return np.array([self.foot_position_in_base_frame(i, q[i])
                         for i in range(NUM_LEGS)])

    def nominal_foot_positions(self, body_height: float) -> np.ndarray:
        """Feet directly below the thighs at the given body height."""
        feet = self.hip_offsets.copy()
        feet[:, 1] += HIP_SIGNS * self.l_hip
        feet[:, 2] = -body_height
        return feet

    # ── Jacobian ─────────────────────────────────────────────────────────────

    def compute_jacobian(self, leg_id: int, leg_angles: np.ndarray) -> np.ndarray:
        """
        3x3 Jacobian d(foot position in base frame) / d(leg joint angles).
        """
        t1, t2, t3 = leg_angles
        l_up, l_low = self.l_up, self.l_low
        l_hip = self._signed_l_hip(leg_id)
        l_eff = self._leg_length(t3)
        t_eff = t2 + t3 / 2.0

        s1, c1 = np.sin(t1), np.cos(t1)
        se, ce = np.sin(t_eff), np.cos(t_eff)
        dl = l_low * l_up * np.sin(t3) / l_eff

        J = np.zeros((3, 3))
        J[0, 0] = 0.0
        J[0, 1] = -l_eff * ce
        J[0, 2] = dl * se - l_eff * ce / 2.0
        J[1, 0] = -l_hip * s1 + l_eff * c1 * ce
        J[1, 1] = -l_eff * s1 * se
        J[1, 2] = -dl * s1 * ce - l_eff * s1 * se / 2.0
        J[2, 0] = l_hip * c1 + l_eff * s1 * ce
        J[2, 1] = l_eff * se * c1
        J[2, 2] = dl * c1 * ce + l_eff * se * c1 / 2.0
        return J

    # ── Inverse kinematics ───────────────────────────────────────────────────

    def clamp_to_workspace(self, leg_id: int,
                           p_hip: np.ndarray) -> Tuple[np.ndarray, bool]:
        """
        Nearest reachable point to p_hip (hip frame) and whether p_hip was
        already reachable.

        Reachable set: the (y, z) projection lies at least |l_hip| from the
        hip axis, and the leg length sqrt(x^2 + c^2) lies in [l_min, l_max]
        where c is the remaining distance past the ab/ad link.
        """
        x, y, z = np.asarray(p_hip, dtype=float)
        l_hip = self._signed_l_hip(leg_id)
        feasible = True

        rho = np.hypot(y, z)
        if rho < abs(l_hip) - _EPS:
            feasible = False
            if rho < _EPS:
                y, z = l_hip, 0.0
            else:
                y, z = y * abs(l_hip) / rho, z * abs(l_hip) / rho
            rho = abs(l_hip)

        c = np.sqrt(max(rho ** 2 - l_hip ** 2, 0.0))
        t_ab = np.arctan2(c * y + l_hip * z, l_hip * y - c * z)
        origin = np.array([0.0, l_hip * np.cos(t_ab), l_hip * np.sin(t_ab)])
        leg = np.array([x, y, z]) - origin

        length = np.linalg.norm(leg)
        clamped_length = np.clip(length, self.l_min, self.l_max)
        if abs(clamped_length - length) > _EPS:
            feasible = False
            if length < _EPS:
                leg = np.array([0.0, np.sin(t_ab), -np.cos(t_ab)])
                length = 1.0
            leg = leg * clamped_length / length

        return origin + leg, feasible

    def inverse_kinematics(self, leg_id: int,
                           foot_position_in_base: np.ndarray
                           ) -> Tuple[np.ndarray, bool]:
        """
        Joint angles (hip, thigh, calf) placing the foot at the requested
        base-frame position. Unreachable targets are clamped to the nearest
        reachable point and reported with feasible=False.
        """
        p_hip = np.asarray(foot_position_in_base, dtype=float) - self.hip_offsets[leg_id]
        p_hip, feasible = self.clamp_to_workspace(leg_id, p_hip)
        x, y, z = p_hip
        l_up, l_low = self.l_up, self.l_low
        l_hip = self._signed_l_hip(leg_id)

        cos_knee = ((x ** 2 + y ** 2 + z ** 2 - l_hip ** 2 - l_low ** 2 - l_up ** 2)
                    / (2.0 * l_low * l_up))
        theta_knee = -np.arccos(np.clip(cos_knee, -1.0, 1.0))
        l = self._leg_length(theta_knee)
        theta_hip = np.arcsin(np.clip(-x / l, -1.0, 1.0)) - theta_knee / 2.0
        c1 = l_hip * y - l * np.cos(theta_hip + theta_knee / 2.0) * z
        s1 = l * np.cos(theta_hip + theta_knee / 2.0) * y + l_hip * z
        theta_ab = np.arctan2(s1, c1)
        return np.array([theta_ab, theta_hip, theta_knee]), feasible

    # ── Force mapping ────────────────────────────────────────────────────────

    def map_force_to_torque(self, leg_id: int, force: np.ndarray,
                            leg_angles: np.ndarray,
                            rotation: np.ndarray) -> np.ndarray:
        """
        tau = -J^T R^T F

        F is the ground-reaction force on the foot in the world frame; the
        leg must push on the ground with -F, expressed in the base frame.
        """
        J = self.compute_jacobian(leg_id, leg_angles)
        return -J.T @ (rotation.T @ np.asarray(force, dtype=float))
