"""
locomotion_controller.py - Per-tick orchestrator
================================================

Every control tick the environment calls::

    ctrl.update(desired_velocity, desired_yaw_rate)
    action = ctrl.get_action(mpc_solve_flag, mpc_weights, mass, inertia)

get_action:
  1. reads the RobotState and clock from the robot interface
  2. rejects non-finite state (holds the previous command)
  3. advances the gait to  clock - reset_time
  4. records swing lift-offs
  5. dispatches each leg by its contact-state tag:
       SWING  -> SwingController  (joint targets + swing gains)
       STANCE -> StanceController (MPC force mapped to torque)
  6. flattens the four leg commands into the (60,) action

The MPC weights and the body mass/inertia change on every solve tick; they
are passed straight through to the stance controller and never stored.
"""

from typing import Optional, Sequence

import numpy as np

from a1_locomotion.config import LEG_NAMES, NUM_LEGS, dbg
from a1_locomotion.errors import KinematicsError, NumericalError, OptimizationError, validate_state
from a1_locomotion.gait_generator import GaitGenerator, GaitProfile, LegState
from a1_locomotion.kinematics import RobotKinematics
from a1_locomotion.mpc_solver import QPSolver
from a1_locomotion.robot_params import (
    A1, A1Params, DesiredCommand, DynamicsParams, MPCWeights, RobotInterface,
    commands_to_action,
)
from a1_locomotion.stance_controller import StanceController
from a1_locomotion.swing_controller import SwingController
from a1_locomotion.telemetry import DebugLogger
from a1_locomotion.torque_utils import PDStand


class LocomotionController:
    """
    Usage::

        ctrl = LocomotionController.build(robot, gait="trotting")
        ctrl.reset()
        ctrl.update([0.5, 0.0], 0.0)
        action = ctrl.get_action(True, weights13, mass, inertia9)
    """

    def __init__(self, robot: RobotInterface, gait: GaitGenerator,
                 swing: SwingController, stance: StanceController,
                 kinematics: Optional[RobotKinematics] = None,
                 logger: Optional[DebugLogger] = None,
                 p: A1Params = A1):
        self.robot  = robot
        self.gait   = gait
        self.swing  = swing
        self.stance = stance
        self.kin    = kinematics if kinematics is not None else swing.kin
        self.logger = logger
        self.p      = p
        self.hold   = PDStand(self.kin, p)

        self.command = DesiredCommand()
        self._reset_time = 0.0
        self._last_action: Optional[np.ndarray] = None
        self.faults: list = []

        self._tick = 0
        self._fault_counts = {
            KinematicsError.__name__  : 0,
            OptimizationError.__name__: 0,
            NumericalError.__name__   : 0,
        }

    @classmethod
    def build(cls, robot: RobotInterface, gait: str = "trotting",
              p: A1Params = A1, solver: Optional[QPSolver] = None,
              logger: Optional[DebugLogger] = None) -> "LocomotionController":
        """Wire the default kinematics, gait and sub-controllers."""
        kin   = RobotKinematics()
        g     = GaitGenerator(GaitProfile.by_name(gait))
        swing = SwingController(kin, g, p)
        stance = StanceController(kin, g, p, solver)
        return cls(robot, g, swing, stance, kin, logger, p)

    # ── Episode control ──────────────────────────────────────────────────────

    def reset(self) -> None:
        self._reset_time = float(self.robot.read_state().time)
        self.gait.reset()
        self.swing.reset()
        self.stance.reset()
        self.command = DesiredCommand()
        self._last_action = None
        self.faults = []
        dbg(2, f"[controller] reset at t={self._reset_time:.3f}s, {self.gait}")

    def update(self, desired_velocity: Sequence[float],
               desired_yaw_rate: float) -> None:
        """Store the command for the next get_action call."""
        self.command = DesiredCommand.from_values(desired_velocity, desired_yaw_rate)

    # ── Per-tick action ──────────────────────────────────────────────────────

    def get_action(self, mpc_solve_flag: bool,
                   mpc_weights: Sequence[float],
                   mass: float,
                   inertia: Sequence[float]) -> np.ndarray:
        """(60,) hybrid command: 12 joints x (position, velocity, kp, kd, torque)."""
        weights  = MPCWeights.from_vector(mpc_weights)
        dynamics = DynamicsParams.from_values(mass, inertia)

        self._tick += 1
        self.faults = []
        state = self.robot.read_state()

        try:
            validate_state(state)
        except NumericalError as e:
            self._record(e)
            dbg(1, f"[controller tick {self._tick}] {e}; holding previous command")
            if self._last_action is not None:
                return self._last_action.copy()
            return self.hold.action()

        self.gait.update(max(0.0, state.time - self._reset_time))
        self.swing.update(state)

        swing_cmds  = self.swing.get_action(state, self.command)
        stance_cmds = self.stance.get_action(state, self.command,
                                             bool(mpc_solve_flag), weights, dynamics)

        commands = []
        for i in range(NUM_LEGS):
            if self.gait.leg_state[i] == LegState.SWING:
                commands.append(swing_cmds[i])
            else:
                commands.append(stance_cmds[i])
        action = commands_to_action(commands)

        for f in self.swing.faults + self.stance.faults:
            self._record(f)

        dbg(4, f"[tick {self._tick}] {state}  "
               f"legs={''.join('S' if s == LegState.STANCE else 'W' for s in self.gait.leg_state)}")

        if self.logger is not None:
            self.logger.log(state, self.gait.contacts(), self.stance.forces, action,
                            dynamics.mass * self.p.g, bool(mpc_solve_flag),
                            len(self.faults))

        self._last_action = action
        return action.copy()

    def _record(self, fault: Exception) -> None:
        self.faults.append(fault)
        name = type(fault).__name__
        self._fault_counts[name] = self._fault_counts.get(name, 0) + 1

    # ── Diagnostics ──────────────────────────────────────────────────────────

    @property
    def time_since_reset(self) -> float:
        return max(0.0, float(self.robot.read_state().time) - self._reset_time)

    @property
    def stats(self) -> dict:
        return {
            "ticks" : self._tick,
            "faults": dict(self._fault_counts),
            **self.stance.stats,
        }

    def __repr__(self) -> str:
        cmd = self.command
        return (f"LocomotionController(cmd=({cmd.linear_velocity[0]:+.2f}, "
                f"{cmd.linear_velocity[1]:+.2f}, {cmd.yaw_rate:+.2f}), "
                f"legs={dict(zip(LEG_NAMES, (s.name for s in self.gait.leg_state)))})")
