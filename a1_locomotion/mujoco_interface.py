"""
mujoco_interface.py - MuJoCo robot adapter

Reads the ground-truth RobotState from MjData and applies a hybrid action as
actuator torques. The model is expected to carry a free-joint base first
(qpos[0:7], qvel[0:6]) and 12 hinge joints named  <LEG>_<joint>_joint,
e.g. FR_hip_joint, each driven by one torque actuator.

MuJoCo free-joint conventions:
  qpos[3:7]  quaternion (w, x, y, z)
  qvel[0:3]  linear velocity, world frame
  qvel[3:6]  angular velocity, body frame
"""

from typing import Optional, Sequence

import mujoco
import numpy as np
from scipy.spatial.transform import Rotation

from a1_locomotion.config import JOINT_NAMES, LEG_NAMES, NUM_MOTORS, TORQUE_LIMIT, dbg
from a1_locomotion.kinematics import RobotKinematics
from a1_locomotion.robot_params import RobotState
from a1_locomotion.torque_utils import hybrid_to_torque, leg_to_ctrl

DEFAULT_JOINT_NAMES = tuple(f"{leg}_{j}_joint" for leg in LEG_NAMES for j in JOINT_NAMES)


class MujocoRobot:
    """
    Usage::

        robot = MujocoRobot(model, data)
        state = robot.read_state()
        robot.apply_action(action)      # sets ctrl and steps physics once
    """

    def __init__(self, model: mujoco.MjModel, data: mujoco.MjData,
                 kinematics: Optional[RobotKinematics] = None,
                 joint_names: Sequence[str] = DEFAULT_JOINT_NAMES,
                 torque_limit: float = TORQUE_LIMIT):
        self.model = model
        self.data  = data
        self.kin   = kinematics if kinematics is not None else RobotKinematics()
        self.torque_limit = torque_limit

        if len(joint_names) != NUM_MOTORS:
            raise ValueError(f"expected {NUM_MOTORS} joint names, got {len(joint_names)}")

        jids = []
        for name in joint_names:
            jid = mujoco.mj_name2id(model, mujoco.mjtObj.mjOBJ_JOINT, name)
            if jid < 0:
                raise ValueError(f"joint '{name}' not found in model")
            jids.append(jid)
        self._qpos_adr = np.array([model.jnt_qposadr[j] for j in jids])
        self._qvel_adr = np.array([model.jnt_dofadr[j] for j in jids])

        # Actuator slot driving each internal joint
        act_of_joint = {int(model.actuator_trnid[a, 0]): a for a in range(model.nu)}
        missing = [n for n, j in zip(joint_names, jids) if j not in act_of_joint]
        if missing:
            raise ValueError(f"no actuator drives joint(s) {missing}")
        self._ctrl_index = np.array([act_of_joint[j] for j in jids])

        dbg(2, f"[MujocoRobot] nq={model.nq} nv={model.nv} nu={model.nu} "
               f"dt={model.opt.timestep * 1e3:.1f}ms")

    @property
    def timestep(self) -> float:
        return float(self.model.opt.timestep)

    # ── State ────────────────────────────────────────────────────────────────

    def read_state(self) -> RobotState:
        d = self.data
        qw  = d.qpos[3:7]
        rot = Rotation.from_quat([qw[1], qw[2], qw[3], qw[0]])
        e   = rot.as_euler("ZYX")

        q  = d.qpos[self._qpos_adr].copy()
        return RobotState(
            time=float(d.time),
            com_position=d.qpos[0:3].copy(),
            com_velocity=d.qvel[0:3].copy(),
            rpy=np.array([e[2], e[1], e[0]]),
            angular_velocity=rot.apply(d.qvel[3:6]),
            joint_angles=q,
            joint_velocities=d.qvel[self._qvel_adr].copy(),
            foot_positions=self.kin.foot_positions_in_base_frame(q),
        )

    # ── Actuation ────────────────────────────────────────────────────────────

    def set_pose(self, base_position: np.ndarray, joint_angles: np.ndarray) -> None:
        """Place the base upright at base_position with the given joint angles."""
        mujoco.mj_resetData(self.model, self.data)
        self.data.qpos[0:3] = base_position
        self.data.qpos[3:7] = [1.0, 0.0, 0.0, 0.0]
        self.data.qpos[self._qpos_adr] = joint_angles
        mujoco.mj_forward(self.model, self.data)

    def apply_action(self, action: np.ndarray) -> np.ndarray:
        """Hybrid action -> clipped actuator torques, then one physics step."""
        tau = hybrid_to_torque(action,
                               self.data.qpos[self._qpos_adr],
                               self.data.qvel[self._qvel_adr],
                               self.torque_limit)
        self.data.ctrl[:] = leg_to_ctrl(tau, self._ctrl_index, self.model.nu)
        mujoco.mj_step(self.model, self.data)
        return tau
