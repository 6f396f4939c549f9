"""
robot_params.py - A1 physical/tuning parameters and controller data types

MPC state x in R^13:  [roll, pitch, yaw,  px, py, pz,  wx, wy, wz,  vx, vy, vz,  -g]
                        0     1     2     3   4   5    6   7   8    9  10  11   12
"""

from dataclasses import dataclass, field
from typing import Protocol, Sequence

import numpy as np

from a1_locomotion.config import (
    GRAVITY, JOINTS_PER_LEG, LEG_NAMES, NUM_COMMAND_FIELDS, NUM_LEGS,
    NUM_MOTORS,
)

NUM_STATE_WEIGHTS = 12
NUM_MPC_WEIGHTS   = NUM_STATE_WEIGHTS + 1


@dataclass
class A1Params:
    # Nominal body model, used before the first externally supplied solve
    mass : float = 12.454
    g    : float = GRAVITY

    Ixx  : float = 0.07335
    Iyy  : float = 0.25068
    Izz  : float = 0.25447

    body_height: float = 0.30

    # State order: [roll, pitch, yaw, px, py, pz, wx, wy, wz, vx, vy, vz]
    # followed by the force-regularisation weight.
    mpc_weights: np.ndarray = field(default_factory=lambda: np.array([
          1.,   1.,   0.,   # roll, pitch, yaw
          0.,   0.,  50.,   # px, py, pz
          0.,   0.,   1.,   # wx, wy, wz
          0.2,  0.2,  0.1,  # vx, vy, vz
          1e-5,             # force regularisation
    ], dtype=float))

    # Floor on the force weight keeps the condensed Hessian positive definite
    min_force_regularization: float = 1e-5

    mu   : float = 0.45
    f_min: float = 5.0
    f_max: float = 150.0

    horizon : int   = 10
    mpc_dt  : float = 0.025

    qp_solver  : str = "osqp"
    qp_max_iter: int = 4000

    # Swing leg
    motor_kp: np.ndarray = field(default_factory=lambda: np.full(NUM_MOTORS, 100.0))
    motor_kd: np.ndarray = field(default_factory=lambda: np.tile([1.0, 2.0, 2.0], NUM_LEGS))
    swing_height    : float = 0.08
    foot_clearance  : float = 0.01
    raibert_gain    : float = 0.03
    max_step_length : float = 0.18

    @property
    def BI(self) -> np.ndarray:
        return np.diag([self.Ixx, self.Iyy, self.Izz])


A1 = A1Params()


@dataclass
class RobotState:
    """
    Snapshot of the robot read from the simulation once per tick.

    Positions, velocities and angular velocity are in the world frame;
    foot positions are in the base frame. Joint arrays are ordered
    leg-major [FR, FL, RR, RL] x [hip, thigh, calf].
    """
    time            : float = 0.0
    com_position    : np.ndarray = field(default_factory=lambda: np.zeros(3))
    com_velocity    : np.ndarray = field(default_factory=lambda: np.zeros(3))
    rpy             : np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    joint_angles    : np.ndarray = field(default_factory=lambda: np.zeros(NUM_MOTORS))
    joint_velocities: np.ndarray = field(default_factory=lambda: np.zeros(NUM_MOTORS))
    foot_positions  : np.ndarray = field(default_factory=lambda: np.zeros((NUM_LEGS, 3)))

    def leg_angles(self, leg_id: int) -> np.ndarray:
        return self.joint_angles[leg_id * JOINTS_PER_LEG:(leg_id + 1) * JOINTS_PER_LEG]

    def mpc_x(self, g: float = GRAVITY) -> np.ndarray:
        return np.concatenate([
            self.rpy,
            self.com_position,
            self.angular_velocity,
            self.com_velocity,
            np.array([-g]),
        ])

    def __str__(self) -> str:
        r, p, y = np.degrees(self.rpy)
        pos, vel = self.com_position, self.com_velocity
        return (
            f"t={self.time:7.3f}s | "
            f"xyz=[{pos[0]:+.3f} {pos[1]:+.3f} {pos[2]:+.3f}] | "
            f"rpy=[{r:+.1f} {p:+.1f} {y:+.1f}]deg | "
            f"vel=[{vel[0]:+.2f} {vel[1]:+.2f} {vel[2]:+.2f}]"
        )


class RobotInterface(Protocol):
    """What the controller needs from the simulation environment."""

    def read_state(self) -> RobotState:
        ...


@dataclass
class DesiredCommand:
    linear_velocity: np.ndarray = field(default_factory=lambda: np.zeros(2))
    yaw_rate       : float = 0.0

    @classmethod
    def from_values(cls, velocity: Sequence[float], yaw_rate: float) -> "DesiredCommand":
        """Accepts (vx, vy) or (vx, vy, vz); a vertical component is ignored."""
        v = np.asarray(velocity, dtype=float).ravel()
        if v.size not in (2, 3):
            raise ValueError(f"desired velocity needs 2 or 3 entries, got {v.size}")
        return cls(linear_velocity=v[:2].copy(), yaw_rate=float(yaw_rate))


@dataclass
class MPCWeights:
    state_weights: np.ndarray
    force_weight : float

    @classmethod
    def from_vector(cls, weights: Sequence[float]) -> "MPCWeights":
        """
        Split the externally supplied 13-vector into 12 state-tracking
        weights and the force-regularisation weight. Negative entries would
        make the QP non-convex and are clipped to zero.
        """
        w = np.asarray(weights, dtype=float).ravel()
        if w.size != NUM_MPC_WEIGHTS:
            raise ValueError(f"expected {NUM_MPC_WEIGHTS} MPC weights, got {w.size}")
        w = np.where(np.isfinite(w), w, 0.0)
        w = np.clip(w, 0.0, None)
        return cls(state_weights=w[:NUM_STATE_WEIGHTS].copy(),
                   force_weight=float(w[NUM_STATE_WEIGHTS]))

    def Q(self) -> np.ndarray:
        """13-entry diagonal, zero weight on the gravity state."""
        return np.append(self.state_weights, 0.0)


@dataclass
class DynamicsParams:
    mass   : float
    inertia: np.ndarray

    @classmethod
    def from_values(cls, mass: float, inertia: Sequence[float]) -> "DynamicsParams":
        I = np.asarray(inertia, dtype=float)
        if I.size != 9:
            raise ValueError(f"inertia needs 9 values, got {I.size}")
        return cls(mass=float(mass), inertia=I.reshape(3, 3))

    def symmetric_inertia(self) -> np.ndarray:
        """0.5 (I + I^T); the 9 values arrive with independent noise per entry."""
        I = np.asarray(self.inertia, dtype=float)
        return 0.5 * (I + I.T)

    def is_valid(self) -> bool:
        """Finite, mass > 0 and a positive-definite symmetric part of the inertia."""
        if not np.isfinite(self.mass) or self.mass <= 0.0:
            return False
        if not np.all(np.isfinite(self.inertia)):
            return False
        return bool(np.all(np.linalg.eigvalsh(self.symmetric_inertia()) > 0.0))


@dataclass
class HybridLegCommand:
    """Per-joint hybrid command for one leg (hip, thigh, calf)."""
    position: np.ndarray = field(default_factory=lambda: np.zeros(JOINTS_PER_LEG))
    velocity: np.ndarray = field(default_factory=lambda: np.zeros(JOINTS_PER_LEG))
    kp      : np.ndarray = field(default_factory=lambda: np.zeros(JOINTS_PER_LEG))
    kd      : np.ndarray = field(default_factory=lambda: np.zeros(JOINTS_PER_LEG))
    torque  : np.ndarray = field(default_factory=lambda: np.zeros(JOINTS_PER_LEG))

    def to_array(self) -> np.ndarray:
        """(3, 5): one row per joint [position, velocity, kp, kd, torque]."""
        return np.column_stack([self.position, self.velocity,
                                self.kp, self.kd, self.torque])


def commands_to_action(commands: Sequence[HybridLegCommand]) -> np.ndarray:
    """Flatten 4 leg commands into the (60,) leg-major, joint-minor vector."""
    if len(commands) != NUM_LEGS:
        raise ValueError(f"expected {NUM_LEGS} leg commands, got {len(commands)}")
    return np.concatenate([c.to_array() for c in commands]).ravel()


def action_to_commands(action: np.ndarray) -> list:
    """Inverse of commands_to_action."""
    rows = np.asarray(action, dtype=float).reshape(NUM_MOTORS, NUM_COMMAND_FIELDS)
    out = []
    for i in range(len(LEG_NAMES)):
        r = rows[i * JOINTS_PER_LEG:(i + 1) * JOINTS_PER_LEG]
        out.append(HybridLegCommand(*(r[:, k].copy() for k in range(NUM_COMMAND_FIELDS))))
    return out
