"""
swing_controller.py - Swing leg foot trajectory + IK

For every leg the gait marks SWING:
  - the lift-off foot position (base frame) is recorded at the stance->swing
    transition
  - the touchdown target comes from the Raibert heuristic
  - the foot follows a minimum-jerk path with a height bump
    b(s) = 64 s^3 (1-s)^3  (single apex at mid-swing)
  - the path point is turned into a joint position target by IK and its
    time derivative into a joint velocity target through J^-1

Raibert touchdown (base frame, yaw-rotated hip):
  p_td = p_hip + v_hip * T_stance / 2 + k * (v_hip - v_hip_des)
"""

from typing import Callable, Dict, Tuple

import numpy as np

from a1_locomotion.config import JOINTS_PER_LEG, LEG_NAMES, NUM_LEGS, dbg
from a1_locomotion.errors import KinematicsError
from a1_locomotion.gait_generator import GaitGenerator, LegState
from a1_locomotion.kinematics import RobotKinematics
from a1_locomotion.robot_params import (
    A1, A1Params, DesiredCommand, HybridLegCommand, RobotState,
)


def _min_jerk(s):
    """Minimum-jerk basis and its derivative."""
    mj   = 10*s**3 - 15*s**4 + 6*s**5
    dmj  = 30*s**2 - 60*s**3 + 30*s**4
    return mj, dmj


def _height_bump(s, h_sw):
    """Vertical bump b(s) = 64 s^3 (1-s)^3, peak h_sw at s = 0.5."""
    b    = 64 * s**3 * (1 - s)**3
    db   = 192 * s**2 * (1 - s)**2 * (1 - 2*s)
    return h_sw * b, h_sw * db


def make_swing_trajectory(p0, pf, h_sw: float
                          ) -> Callable[[float], Tuple[np.ndarray, np.ndarray]]:
    """
    Returns callable: s in [0, 1] -> (position, d position / d s).
    position(0) = p0, position(1) = pf.
    """
    p0 = np.asarray(p0, dtype=float)
    pf = np.asarray(pf, dtype=float)
    dp = pf - p0

    def eval_at(s):
        s = float(np.clip(s, 0.0, 1.0))
        mj, dmj = _min_jerk(s)
        p = p0 + dp * mj
        v = dp * dmj
        if h_sw != 0.0:
            bz, dbz = _height_bump(s, h_sw)
            p[2] += bz
            v[2] += dbz
        return p, v

    return eval_at


def raibert_touchdown(nominal_foot: np.ndarray,
                      com_velocity_body: np.ndarray,
                      yaw_rate: float,
                      command: DesiredCommand,
                      stance_duration: float,
                      p: A1Params = A1) -> np.ndarray:
    """
    Touchdown target in the base frame.

    nominal_foot      : foot position below the hip (base frame)
    com_velocity_body : COM velocity in the yaw-aligned body frame
    yaw_rate          : measured yaw rate [rad/s]
    command           : desired planar velocity / yaw rate
    stance_duration   : duration of the upcoming stance [s]
    """
    turn = command.yaw_rate * stance_duration / 2.0
    c, s = np.cos(turn), np.sin(turn)
    hx, hy = nominal_foot[0], nominal_foot[1]
    hip = np.array([c * hx - s * hy, s * hx + c * hy])

    twist     = np.array([-hip[1], hip[0]])
    v_hip     = np.asarray(com_velocity_body[:2], dtype=float) + yaw_rate * twist
    v_hip_des = command.linear_velocity + command.yaw_rate * twist

    step = v_hip * stance_duration / 2.0 + p.raibert_gain * (v_hip - v_hip_des)
    n = np.linalg.norm(step)
    if n > p.max_step_length:
        step *= p.max_step_length / n

    return np.array([hip[0] + step[0],
                     hip[1] + step[1],
                     -(p.body_height - p.foot_clearance)])


class SwingController:
    """
    Joint-space swing controller: position/velocity targets with the
    configured swing gains, zero feedforward torque.
    """

    def __init__(self, kinematics: RobotKinematics, gait: GaitGenerator,
                 p: A1Params = A1):
        self.kin  = kinematics
        self.gait = gait
        self.p    = p

        self._nominal_feet = kinematics.nominal_foot_positions(p.body_height)
        self._liftoff: Dict[int, np.ndarray] = {}
        self._targets: Dict[int, np.ndarray] = {}
        self._last_leg_state = list(gait.leg_state)
        self.faults: list = []
        self._fault_count = 0

    def reset(self) -> None:
        self._liftoff.clear()
        self._targets.clear()
        self._last_leg_state = list(self.gait.leg_state)
        self.faults = []

    @property
    def liftoff_positions(self) -> Dict[int, np.ndarray]:
        return {i: p.copy() for i, p in self._liftoff.items()}

    @property
    def touchdown_targets(self) -> Dict[int, np.ndarray]:
        return {i: p.copy() for i, p in self._targets.items()}

    def update(self, state: RobotState) -> None:
        """Record lift-off positions on stance -> swing transitions."""
        for i in range(NUM_LEGS):
            now = self.gait.leg_state[i]
            if now == LegState.SWING and (self._last_leg_state[i] != LegState.SWING
                                          or i not in self._liftoff):
                self._liftoff[i] = np.array(state.foot_positions[i], dtype=float)
                dbg(2, f"Leg {LEG_NAMES[i]} LIFT-OFF t={state.time:.3f}s "
                       f"foot={self._liftoff[i].round(3)}")
            self._last_leg_state[i] = now

    def touchdown_target(self, leg_id: int, state: RobotState,
                         command: DesiredCommand) -> np.ndarray:
        yaw = state.rpy[2]
        c, s = np.cos(yaw), np.sin(yaw)
        vx, vy = state.com_velocity[0], state.com_velocity[1]
        v_body = np.array([c * vx + s * vy, -s * vx + c * vy])
        return raibert_touchdown(self._nominal_feet[leg_id], v_body,
                                 state.angular_velocity[2], command,
                                 self.gait.stance_duration[leg_id], self.p)

    def get_action(self, state: RobotState,
                   command: DesiredCommand) -> Dict[int, HybridLegCommand]:
        """Commands for every leg currently in SWING, keyed by leg index."""
        self.faults = []
        out = {}
        for i in range(NUM_LEGS):
            if self.gait.leg_state[i] != LegState.SWING:
                continue
            if i not in self._liftoff:
                self._liftoff[i] = np.array(state.foot_positions[i], dtype=float)

            target = self.touchdown_target(i, state, command)
            self._targets[i] = target
            traj = make_swing_trajectory(self._liftoff[i], target, self.p.swing_height)
            pos, dpos_ds = traj(self.gait.normalized_phase[i])

            q, feasible = self.kin.inverse_kinematics(i, pos)
            if not feasible:
                fault = KinematicsError(i, pos, self.kin.foot_position_in_base_frame(i, q))
                self.faults.append(fault)
                self._fault_count += 1
                dbg(1, f"[swing] {fault}")

            v_foot = dpos_ds / self.gait.swing_duration[i]
            J = self.kin.compute_jacobian(i, q)
            try:
                dq = np.linalg.solve(J, v_foot)
            except np.linalg.LinAlgError:
                dq = np.linalg.lstsq(J, v_foot, rcond=None)[0]

            js = slice(i * JOINTS_PER_LEG, (i + 1) * JOINTS_PER_LEG)
            out[i] = HybridLegCommand(
                position=q,
                velocity=dq,
                kp=self.p.motor_kp[js].copy(),
                kd=self.p.motor_kd[js].copy(),
                torque=np.zeros(JOINTS_PER_LEG),
            )
            dbg(4, f"Swing {LEG_NAMES[i]}: s={self.gait.normalized_phase[i]:.2f} "
                   f"p={pos.round(3)} td={target.round(3)}")
        return out

    @property
    def stats(self) -> dict:
        return {"kinematics_faults": self._fault_count}
