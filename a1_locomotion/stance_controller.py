"""
stance_controller.py - Convex MPC ground-reaction forces for stance legs

Multi-rate:
  - on MPC-solve ticks the condensed QP is built and solved and the first
    step of the plan is cached as the held force
  - on every other tick the held force is reused unchanged
  - every tick the held force is remapped to joint torques through the
    current Jacobian and orientation:  tau = -J^T R^T F

A failed or degenerate solve keeps the previously held force. Before the
first successful solve each stance leg carries an equal share of m g, and so
does a leg that touched down after the last solve (its held force is zero).
"""

import time
from typing import Dict, Optional

import numpy as np

from a1_locomotion.config import GRAVITY, NUM_LEGS, dbg
from a1_locomotion.dynamics import RigidBodyDynamics
from a1_locomotion.errors import OptimizationError
from a1_locomotion.gait_generator import GaitGenerator
from a1_locomotion.kinematics import RobotKinematics, rpy_to_matrix
from a1_locomotion.mpc_solver import ConvexMPC, QPSolver, project_forces
from a1_locomotion.robot_params import (
    A1, A1Params, DesiredCommand, DynamicsParams, HybridLegCommand,
    MPCWeights, RobotState,
)


def make_reference(
    x0: np.ndarray,
    command: DesiredCommand,
    pz_des: float,
    dt: float,
    K: int,
    g: float = GRAVITY,
) -> np.ndarray:
    """
    Reference state trajectory Xref in R^{13K}, world frame.

    The body-frame velocity command is rotated by the current yaw and held
    constant over the horizon; yaw integrates the commanded yaw rate.
    State order: [roll, pitch, yaw, px, py, pz, wx, wy, wz, vx, vy, vz, -g]
    """
    yaw = x0[2]
    c, s = np.cos(yaw), np.sin(yaw)
    vx_b, vy_b = command.linear_velocity
    vx = c * vx_b - s * vy_b
    vy = s * vx_b + c * vy_b
    wz = command.yaw_rate

    Xref = np.zeros(13 * K)
    for k in range(K):
        t = (k + 1) * dt
        r = np.zeros(13)

        r[2]  = yaw + wz * t          # yaw
        r[3]  = x0[3] + vx * t        # px
        r[4]  = x0[4] + vy * t        # py
        r[5]  = pz_des                # pz
        r[8]  = wz                    # wz
        r[9]  = vx                    # vx
        r[10] = vy                    # vy
        r[12] = -g                    # -g

        Xref[k*13:(k+1)*13] = r

    return Xref


class StanceController:
    """
    Usage::

        st = StanceController(kin, gait)
        cmds = st.get_action(state, command, solve, weights, dynamics)
        st.forces        # (4, 3) held world-frame GRFs, None before first solve
    """

    def __init__(self, kinematics: RobotKinematics, gait: GaitGenerator,
                 p: A1Params = A1, solver: Optional[QPSolver] = None):
        self.kin  = kinematics
        self.gait = gait
        self.p    = p
        self.mpc  = ConvexMPC(p.horizon, p, solver)

        self._forces: Optional[np.ndarray] = None
        self._solved_contacts: Optional[np.ndarray] = None
        self._n_timed   = 0
        self._sum_ms    = 0.0
        self._max_ms    = 0.0
        self._degraded_count = 0
        self.faults: list = []

    def reset(self) -> None:
        self._forces = None
        self._solved_contacts = None
        self.mpc.reset()
        self.faults = []

    @property
    def forces(self) -> Optional[np.ndarray]:
        return None if self._forces is None else self._forces.copy()

    def gravity_forces(self, contacts: np.ndarray, mass: float) -> np.ndarray:
        """Equal share of m g on every stance leg, clipped to the force bounds."""
        grf = np.zeros((NUM_LEGS, 3))
        n = int(np.count_nonzero(contacts))
        if n == 0:
            return grf
        fz = np.clip(mass * self.p.g / n, self.p.f_min, self.p.f_max)
        grf[np.asarray(contacts, dtype=bool), 2] = fz
        return grf

    # ── Per-tick action ───────────────────────────────────────────────────────

    def get_action(self, state: RobotState, command: DesiredCommand,
                   solve: bool, weights: MPCWeights,
                   dynamics: DynamicsParams) -> Dict[int, HybridLegCommand]:
        """Torque commands for every leg currently in STANCE."""
        self.faults = []
        contacts = self.gait.contacts()

        if solve and contacts.any():
            t0 = time.perf_counter()
            try:
                self._forces = self._run_mpc(state, command, weights, dynamics, contacts)
                self._solved_contacts = contacts.copy()
            except OptimizationError as e:
                self.faults.append(e)
                self._degraded_count += 1
                dbg(1, f"[stance t={state.time:.3f}s] {e}; holding last force solution")
            self._time_solve((time.perf_counter() - t0) * 1e3)

        mass = dynamics.mass if dynamics.is_valid() else self.p.mass
        if self._forces is None:
            grf = self.gravity_forces(contacts, mass)
        else:
            grf = self._forces
            # Legs that touched down after the last solve carry no held force
            landed = contacts & ~self._solved_contacts
            if landed.any():
                grf = grf.copy()
                grf[landed] = self.gravity_forces(contacts, mass)[landed]

        R = rpy_to_matrix(state.rpy)
        out = {}
        for i in range(NUM_LEGS):
            if not contacts[i]:
                continue
            tau = self.kin.map_force_to_torque(i, grf[i], state.leg_angles(i), R)
            out[i] = HybridLegCommand(torque=tau)
        return out

    # ── MPC ───────────────────────────────────────────────────────────────────

    def _run_mpc(self, state: RobotState, command: DesiredCommand,
                 weights: MPCWeights, dynamics: DynamicsParams,
                 contacts: np.ndarray) -> np.ndarray:
        K, dt = self.p.horizon, self.p.mpc_dt
        dyn = RigidBodyDynamics(dynamics)

        x0  = state.mpc_x(self.p.g)
        psi = state.rpy[2]
        R   = rpy_to_matrix(state.rpy)
        r_feet = np.asarray(state.foot_positions, dtype=float) @ R.T

        schedule = np.tile(np.asarray(contacts, dtype=bool), (K, 1))
        Xref = make_reference(x0, command, self.p.body_height, dt, K, self.p.g)

        try:
            Ad, Bd = dyn.discretise(dyn.Ac(psi), dyn.Bc(r_feet, psi, contacts), dt)
        except np.linalg.LinAlgError as e:
            raise OptimizationError(f"dynamics discretisation failed: {e}") from e

        Aqp, Bqp  = self.mpc.condense([Ad] * K, [Bd] * K)
        H, g      = self.mpc.cost(Aqp, Bqp, x0, Xref, weights)
        if not (np.all(np.isfinite(H)) and np.all(np.isfinite(g))):
            raise OptimizationError("non-finite QP cost matrices")
        C, lb, ub = self.mpc.constraints(schedule)
        U_opt     = self.mpc.solve(H, g, C, lb, ub)

        grf = project_forces(U_opt[0:12].reshape(NUM_LEGS, 3), contacts,
                             self.p.mu, self.p.f_min, self.p.f_max)
        dbg(3, f"[t={state.time:.3f}s] MPC fz={grf[:, 2].round(1)} "
               f"sum={grf[:, 2].sum():.1f}N (m g={dynamics.mass * self.p.g:.1f}N)")
        return grf

    # ── Diagnostics ───────────────────────────────────────────────────────────

    def _time_solve(self, ms: float) -> None:
        self._n_timed += 1
        self._sum_ms  += ms
        self._max_ms   = max(self._max_ms, ms)

    @property
    def stats(self) -> dict:
        out = {"degraded_solves": self._degraded_count, **self.mpc.stats}
        if self._n_timed:
            out.update(mean_ms=self._sum_ms / self._n_timed, max_ms=self._max_ms)
        return out
