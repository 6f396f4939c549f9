"""
Convex-MPC whole-body locomotion controller for the Unitree A1.

Module layout (one responsibility per file):
  config.py                 hardware constants, leg order, debug config
  robot_params.py           A1Params (tuning) + controller data types
  errors.py                 recoverable fault kinds
  kinematics.py             leg FK / IK / Jacobian, force -> torque
  gait_generator.py         open-loop per-leg contact schedule
  swing_controller.py       Raibert touchdown + swing trajectory + IK
  dynamics.py               single-rigid-body prediction model
  mpc_solver.py             condensed QP + solver backends
  stance_controller.py      MPC ground-reaction forces for stance legs
  locomotion_controller.py  per-tick orchestrator
  torque_utils.py           hybrid command -> torque, PD hold
  telemetry.py              CSV debug log
  mujoco_interface.py       MuJoCo robot adapter (needs mujoco)
  simulation.py             MuJoCo simulation harness (needs mujoco)
"""

from a1_locomotion.errors import (
    KinematicsError, LocomotionError, NumericalError, OptimizationError,
)
from a1_locomotion.gait_generator import GaitGenerator, GaitProfile, LegState
from a1_locomotion.kinematics import RobotKinematics
from a1_locomotion.locomotion_controller import LocomotionController
from a1_locomotion.robot_params import (
    A1, A1Params, DesiredCommand, DynamicsParams, HybridLegCommand,
    MPCWeights, RobotInterface, RobotState,
)
from a1_locomotion.stance_controller import StanceController
from a1_locomotion.swing_controller import SwingController

__version__ = "0.1.0"
