"""Shared fixtures and a trunk-only rigid-body robot for closed-loop tests."""

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from a1_locomotion.config import JOINTS_PER_LEG, NUM_LEGS
from a1_locomotion.gait_generator import GaitGenerator, GaitProfile
from a1_locomotion.kinematics import RobotKinematics
from a1_locomotion.locomotion_controller import LocomotionController
from a1_locomotion.robot_params import A1, RobotState, action_to_commands


class RigidBodyHarness:
    """
    Single rigid trunk with massless, ideally tracking legs.

    - stance legs (kp = kd = 0) have their foot pinned in the world; their
      feedforward torque is mapped back to the ground-reaction force through
      the same Jacobian the controller uses:  F = -R J^-T tau
    - other legs follow their joint position targets exactly
    - the trunk integrates gravity plus the stance forces
    """

    def __init__(self, kinematics: RobotKinematics, dt: float = 0.002,
                 body_height: float = A1.body_height,
                 velocity=(0.0, 0.0, 0.0), mass: float = A1.mass,
                 inertia: np.ndarray = A1.BI):
        self.kin  = kinematics
        self.dt   = dt
        self.mass = mass
        self.BI   = np.asarray(inertia, dtype=float)

        self.time  = 0.0
        self.pos   = np.array([0.0, 0.0, body_height])
        self.vel   = np.asarray(velocity, dtype=float).copy()
        self.R     = np.eye(3)
        self.omega = np.zeros(3)

        feet = kinematics.nominal_foot_positions(body_height)
        self.q  = np.concatenate([kinematics.inverse_kinematics(i, feet[i])[0]
                                  for i in range(NUM_LEGS)])
        self.dq = np.zeros(JOINTS_PER_LEG * NUM_LEGS)
        self.foot_world = self.pos + feet
        self.stance = np.ones(NUM_LEGS, dtype=bool)
        self.last_forces = np.zeros((NUM_LEGS, 3))
        self.inject_nan = False

    def _legs(self, i):
        return slice(i * JOINTS_PER_LEG, (i + 1) * JOINTS_PER_LEG)

    def read_state(self) -> RobotState:
        e = Rotation.from_matrix(self.R).as_euler("ZYX")
        state = RobotState(
            time=self.time,
            com_position=self.pos.copy(),
            com_velocity=self.vel.copy(),
            rpy=np.array([e[2], e[1], e[0]]),
            angular_velocity=self.omega.copy(),
            joint_angles=self.q.copy(),
            joint_velocities=self.dq.copy(),
            foot_positions=self.kin.foot_positions_in_base_frame(self.q),
        )
        if self.inject_nan:
            state.com_velocity[0] = np.nan
        return state

    def step(self, action: np.ndarray) -> None:
        cmds = action_to_commands(action)
        F = np.zeros((NUM_LEGS, 3))
        for i, c in enumerate(cmds):
            stance = not np.any(c.kp) and not np.any(c.kd)
            if stance:
                J = self.kin.compute_jacobian(i, self.q[self._legs(i)])
                F[i] = -self.R @ np.linalg.solve(J.T, c.torque)
                if not self.stance[i]:
                    self.foot_world[i] = self.pos + self.R @ self.kin.foot_position_in_base_frame(
                        i, self.q[self._legs(i)])
            self.stance[i] = stance
        self.last_forces = F

        acc = F.sum(axis=0) / self.mass + np.array([0.0, 0.0, -A1.g])
        moment = np.zeros(3)
        for i in range(NUM_LEGS):
            if self.stance[i]:
                moment += np.cross(self.foot_world[i] - self.pos, F[i])
        I_w = self.R @ self.BI @ self.R.T
        domega = np.linalg.solve(I_w, moment - np.cross(self.omega, I_w @ self.omega))

        self.vel   = self.vel + acc * self.dt
        self.pos   = self.pos + self.vel * self.dt
        self.omega = self.omega + domega * self.dt
        self.R     = Rotation.from_rotvec(self.omega * self.dt).as_matrix() @ self.R
        self.time += self.dt

        for i, c in enumerate(cmds):
            js = self._legs(i)
            if self.stance[i]:
                foot_base = self.R.T @ (self.foot_world[i] - self.pos)
                q_new = self.kin.inverse_kinematics(i, foot_base)[0]
                self.dq[js] = (q_new - self.q[js]) / self.dt
                self.q[js] = q_new
            else:
                self.q[js] = c.position
                self.dq[js] = c.velocity
                self.foot_world[i] = self.pos + self.R @ self.kin.foot_position_in_base_frame(
                    i, self.q[js])

    @property
    def forward_velocity(self) -> float:
        """COM velocity along the heading."""
        heading = self.R[:, 0]
        return float(self.vel[:2] @ heading[:2] / np.linalg.norm(heading[:2]))


def run_closed_loop(ctrl: LocomotionController, robot: RigidBodyHarness,
                    n_ticks: int, ticks_per_solve: int,
                    velocity=(0.0, 0.0), yaw_rate: float = 0.0,
                    weights=None, mass: float = A1.mass, inertia=None):
    """Drive ctrl against robot; returns the list of actions."""
    weights = A1.mpc_weights if weights is None else weights
    inertia = A1.BI.ravel() if inertia is None else inertia
    actions = []
    for k in range(n_ticks):
        ctrl.update(velocity, yaw_rate)
        action = ctrl.get_action(k % ticks_per_solve == 0, weights, mass, inertia)
        robot.step(action)
        actions.append(action)
    return actions


@pytest.fixture
def kin():
    return RobotKinematics()


@pytest.fixture
def trot_gait():
    return GaitGenerator(GaitProfile.trotting())


@pytest.fixture
def standing_gait():
    return GaitGenerator(GaitProfile.standing())


@pytest.fixture
def weights():
    return np.array(A1.mpc_weights, dtype=float)


@pytest.fixture
def inertia():
    return A1.BI.ravel()


@pytest.fixture
def standing_robot(kin):
    return RigidBodyHarness(kin)


@pytest.fixture
def nominal_state(standing_robot):
    return standing_robot.read_state()
