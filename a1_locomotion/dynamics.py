"""
dynamics.py - Single-rigid-body prediction model for the stance MPC
===================================================================

13-state linear model linearised about small roll/pitch, full yaw:

  1. Trunk modelled as a single rigid body (leg mass ignored)
  2. Translational:   p'' = sum(f_i) / m - g
  3. Rotational:      I w' = sum(r_i x f_i)   (precession dropped)
  4. Inertia approx:  I_hat = Rz(psi) BI Rz(psi)^T
  5. Euler rate:      Theta' = Rz(psi)^T w

State x in R^13:  [roll, pitch, yaw,  px, py, pz,  wx, wy, wz,  vx, vy, vz,  -g]
Input u in R^12:  [f1x f1y f1z | f2x f2y f2z | f3x f3y f3z | f4x f4y f4z]  (world)

Continuous:  x' = Ac(psi) x + Bc(r_1..r_4, psi) u
Discrete:    x[n+1] = Ad x[n] + Bd u[n]   (zero-order hold)

The mass and body inertia are not fixed: they arrive with every solve tick
as DynamicsParams.
"""

from typing import Tuple

import numpy as np
import scipy.linalg

from a1_locomotion.config import NUM_LEGS, dbg
from a1_locomotion.errors import OptimizationError
from a1_locomotion.robot_params import DynamicsParams

# Lever arms beyond this are treated as a corrupt foot estimate
R_FOOT_LIMIT = 0.8


class RigidBodyDynamics:
    """
    Builds the Ac and Bc matrices and discretises them.

    Usage::

        dyn = RigidBodyDynamics(DynamicsParams.from_values(mass, inertia))
        A_c = dyn.Ac(psi)
        B_c = dyn.Bc(r_feet, psi, contacts)
        Ad, Bd = dyn.discretise(A_c, B_c, dt)
    """

    NS = 13   # number of states
    NU = 12   # number of inputs  (4 feet x 3 force components)

    def __init__(self, params: DynamicsParams):
        if not params.is_valid():
            raise OptimizationError(
                f"degenerate dynamics parameters: mass={params.mass}, "
                f"inertia={np.asarray(params.inertia).round(4).tolist()}"
            )
        self.mass = params.mass
        self.BI   = params.symmetric_inertia()

    # ── Static helpers ─────────────────────────────────────────────────────────

    @staticmethod
    def Rz(psi: float) -> np.ndarray:
        """3x3 rotation matrix about Z by angle psi."""
        c, s = np.cos(psi), np.sin(psi)
        return np.array([[c, -s, 0.],
                         [s,  c, 0.],
                         [0., 0., 1.]])

    @staticmethod
    def skew(v: np.ndarray) -> np.ndarray:
        """skew(v) @ w = v x w."""
        return np.array([
            [ 0.,    -v[2],  v[1]],
            [ v[2],  0.,    -v[0]],
            [-v[1],  v[0],  0.  ],
        ])

    def I_hat(self, psi: float) -> np.ndarray:
        """World-frame inertia for small roll and pitch."""
        Rz = self.Rz(psi)
        return Rz @ self.BI @ Rz.T

    # ── State-space matrices ───────────────────────────────────────────────────

    def Ac(self, psi: float) -> np.ndarray:
        """
        13x13 continuous-time A matrix.

          A[0:3, 6:9]  = Rz(psi)^T     orientation kinematics
          A[3:6, 9:12] = I3            position kinematics
          A[11, 12]    = 1             gravity enters vz
        """
        A = np.zeros((self.NS, self.NS))
        A[0:3, 6:9]  = self.Rz(psi).T
        A[3:6, 9:12] = np.eye(3)
        A[11, 12]    = 1.0
        return A

    def Bc(self, r_feet: np.ndarray, psi: float,
           contacts: np.ndarray) -> np.ndarray:
        """
        13x12 continuous-time B matrix. For each foot i in stance:

          B[6:9,  3i:3i+3] = I_hat^-1 skew(r_i)
          B[9:12, 3i:3i+3] = I3 / m

        Columns of legs not in stance stay zero.
        """
        B    = np.zeros((self.NS, self.NU))
        Iinv = np.linalg.inv(self.I_hat(psi))

        for i in range(NUM_LEGS):
            if not contacts[i]:
                continue
            c0 = i * 3
            r  = np.clip(r_feet[i], -R_FOOT_LIMIT, R_FOOT_LIMIT)
            B[6:9,  c0:c0 + 3] = Iinv @ self.skew(r)
            B[9:12, c0:c0 + 3] = np.eye(3) / self.mass
            dbg(4, f"  Bc leg {i}: r={r.round(3)}")
        return B

    # ── Zero-order hold discretisation ─────────────────────────────────────────

    def discretise(self, A: np.ndarray, B: np.ndarray,
                   dt: float) -> Tuple[np.ndarray, np.ndarray]:
        """
        Exact ZOH via the matrix exponential of the augmented system:

            M = [[A, B],      e^{M dt} = [[Ad, Bd],
                 [0, 0]]                  [0,  I ]]
        """
        ns, nu = self.NS, self.NU
        M = np.zeros((ns + nu, ns + nu))
        M[:ns, :ns] = A
        M[:ns, ns:] = B
        eM = scipy.linalg.expm(M * dt)
        return eM[:ns, :ns], eM[:ns, ns:]
