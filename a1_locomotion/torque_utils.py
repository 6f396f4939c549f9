"""
torque_utils.py - Hybrid command -> motor torque, actuator ordering, PD hold

The controller output is a hybrid command per joint. The simulator (or the
motor driver) closes the loop:

    tau = kp (q* - q) + kd (dq* - dq) + tau_ff        clipped to +-TORQUE_LIMIT

Stance legs carry kp = kd = 0 so only the feedforward torque acts; swing legs
carry position/velocity targets with the swing gains and zero feedforward.
"""

from typing import List, Sequence

import numpy as np

from a1_locomotion.config import (
    ACTION_SIZE, JOINTS_PER_LEG, NUM_COMMAND_FIELDS, NUM_LEGS, NUM_MOTORS,
    TORQUE_LIMIT,
)
from a1_locomotion.kinematics import RobotKinematics
from a1_locomotion.robot_params import (
    A1, A1Params, HybridLegCommand, commands_to_action,
)


def hybrid_to_torque(action: np.ndarray, q: np.ndarray, dq: np.ndarray,
                     limit: float = TORQUE_LIMIT) -> np.ndarray:
    """(60,) hybrid action + measured joint state -> (12,) motor torques."""
    a = np.asarray(action, dtype=float)
    if a.size != ACTION_SIZE:
        raise ValueError(f"expected {ACTION_SIZE} action entries, got {a.size}")
    a = a.reshape(NUM_MOTORS, NUM_COMMAND_FIELDS)
    q_des, dq_des, kp, kd, tau_ff = a.T

    tau = kp * (q_des - np.asarray(q)) + kd * (dq_des - np.asarray(dq)) + tau_ff
    return np.clip(tau, -limit, limit)


def leg_to_ctrl(values: np.ndarray, ctrl_index: Sequence[int],
                n_ctrl: int = NUM_MOTORS) -> np.ndarray:
    """
    Reorder per-joint values from internal order to actuator order.
    Internal: [FR, FL, RR, RL] x [hip, thigh, calf]
    ctrl_index[j] is the actuator slot of internal joint j.
    """
    values = np.asarray(values, dtype=float)
    if values.size != NUM_MOTORS or len(ctrl_index) != NUM_MOTORS:
        raise ValueError(f"expected {NUM_MOTORS} values and actuator indices")
    out = np.zeros(n_ctrl)
    out[np.asarray(ctrl_index, dtype=int)] = values
    return out


class PDStand:
    """
    High-gain joint-space PD hold of the nominal standing pose.

    Used as the hold command when no valid command has been produced yet,
    and to pose the robot before a run.
    """

    KP = np.array([80., 80., 80.])
    KD = np.array([ 8.,  8.,  8.])

    def __init__(self, kinematics: RobotKinematics, p: A1Params = A1):
        feet = kinematics.nominal_foot_positions(p.body_height)
        self.q_des = np.concatenate([kinematics.inverse_kinematics(i, feet[i])[0]
                                     for i in range(NUM_LEGS)])

    def commands(self) -> List[HybridLegCommand]:
        return [
            HybridLegCommand(
                position=self.q_des[i*JOINTS_PER_LEG:(i+1)*JOINTS_PER_LEG].copy(),
                kp=self.KP.copy(),
                kd=self.KD.copy(),
            )
            for i in range(NUM_LEGS)
        ]

    def action(self) -> np.ndarray:
        return commands_to_action(self.commands())
