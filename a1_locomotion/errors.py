"""
errors.py - Recoverable fault kinds of the locomotion controller

None of these are fatal. They are raised inside a sub-controller, caught at
the boundary that knows the fallback, and recorded as values in the
controller's per-tick fault list.
"""

import numpy as np

from a1_locomotion.robot_params import RobotState


class LocomotionError(Exception):
    """Base class for controller faults."""


class KinematicsError(LocomotionError):
    """IK target outside the leg workspace; the clamped solution was used."""

    def __init__(self, leg_id: int, target: np.ndarray, clamped: np.ndarray):
        self.leg_id  = leg_id
        self.target  = np.asarray(target, dtype=float).copy()
        self.clamped = np.asarray(clamped, dtype=float).copy()
        super().__init__(
            f"leg {leg_id}: target {self.target.round(3)} unreachable, "
            f"clamped to {self.clamped.round(3)}"
        )


class OptimizationError(LocomotionError):
    """QP infeasible, not converged, or built from degenerate parameters."""


class NumericalError(LocomotionError):
    """NaN/Inf in the robot state."""


def validate_state(state: RobotState) -> None:
    """Raise NumericalError if any RobotState field is not finite."""
    fields = {
        "time"            : state.time,
        "com_position"    : state.com_position,
        "com_velocity"    : state.com_velocity,
        "rpy"             : state.rpy,
        "angular_velocity": state.angular_velocity,
        "joint_angles"    : state.joint_angles,
        "joint_velocities": state.joint_velocities,
        "foot_positions"  : state.foot_positions,
    }
    bad = [name for name, v in fields.items()
           if not np.all(np.isfinite(np.asarray(v, dtype=float)))]
    if bad:
        raise NumericalError(f"non-finite robot state: {', '.join(bad)}")
