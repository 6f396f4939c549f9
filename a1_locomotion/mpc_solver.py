"""
mpc_solver.py - Condensed convex QP for stance ground-reaction forces
=====================================================================

The condensed formulation eliminates the intermediate states, leaving only
the horizon-length force vector U as the optimisation variable.

Condensed system:
    X = Aqp x0 + Bqp U

Objective:
    min  1/2 U^T H U + g^T U
     U
    where
      H = 2 (Bqp^T L Bqp + alpha I)
      g = 2 Bqp^T L (Aqp x0 - Xref)
      L = block-diag(Q, ..., Q)   (K copies of the 13-entry state-cost diagonal)

Force constraints per foot per step:
    Stance:  f_min <= fz <= f_max
             -mu fz <= fx <= mu fz     (friction pyramid)
             -mu fz <= fy <= mu fz
    Swing:   fx = fy = fz = 0

The numerical solver sits behind QPSolver.solve(problem) -> (U, feasible):
    - OsqpSolver      (default; sparse ADMM, warm-started, iteration-bounded)
    - QuadprogSolver  (dense active set; optional dependency)
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import osqp
import scipy.sparse as sp

from a1_locomotion.config import NUM_LEGS, DEBUG_LEVEL, dbg
from a1_locomotion.errors import OptimizationError
from a1_locomotion.robot_params import A1, A1Params, MPCWeights

# Added to H before factorisation
_HESSIAN_REG = 1e-7


@dataclass
class QPProblem:
    H : np.ndarray
    g : np.ndarray
    C : np.ndarray
    lb: np.ndarray
    ub: np.ndarray


# ── Solver backends ──────────────────────────────────────────────────────────

class QPSolver:
    """min 1/2 x^T H x + g^T x  s.t.  lb <= C x <= ub."""

    name = "base"

    def solve(self, problem: QPProblem,
              warm_start: Optional[np.ndarray] = None
              ) -> Tuple[Optional[np.ndarray], bool]:
        raise NotImplementedError


class OsqpSolver(QPSolver):
    """OSQP interface: min 1/2 x^T P x + q^T x  s.t.  l <= A x <= u."""

    name = "osqp"
    _ACCEPTED = ("solved", "solved inaccurate")

    def __init__(self, max_iter: int = 4000,
                 eps_abs: float = 1e-5, eps_rel: float = 1e-5):
        self.settings = dict(verbose=False, eps_abs=eps_abs, eps_rel=eps_rel,
                             max_iter=max_iter)

    def solve(self, problem, warm_start=None):
        n    = problem.H.shape[0]
        P    = sp.triu(sp.csc_matrix(problem.H + _HESSIAN_REG * np.eye(n)), format="csc")
        A    = sp.csc_matrix(problem.C)
        prob = osqp.OSQP()
        prob.setup(P, problem.g, A, problem.lb, problem.ub, **self.settings)
        if warm_start is not None and warm_start.shape == (n,):
            prob.warm_start(x=warm_start)
        res = prob.solve(raise_error=False)

        status = str(res.info.status).lower().replace("_", " ")
        if status not in self._ACCEPTED:
            dbg(1, f"[osqp] status: {res.info.status}")
            return None, False
        if res.x is None or not np.all(np.isfinite(res.x)):
            return None, False
        return np.asarray(res.x, dtype=float), True


class QuadprogSolver(QPSolver):
    """
    quadprog expects:
        min  1/2 x^T G x - a^T x
        s.t. C^T x >= b   (first meq rows as equalities)
    """

    name = "quadprog"

    def __init__(self):
        import quadprog
        self._quadprog = quadprog

    def solve(self, problem, warm_start=None):
        C, lb, ub = problem.C, problem.lb, problem.ub
        n    = problem.H.shape[0]
        eq   = np.isfinite(lb) & np.isfinite(ub) & (lb == ub)
        r_lo = np.isfinite(lb) & ~eq
        r_hi = np.isfinite(ub) & ~eq
        Cq   = np.vstack([C[eq], C[r_lo], -C[r_hi]]).T
        bq   = np.concatenate([lb[eq], lb[r_lo], -ub[r_hi]])
        try:
            sol = self._quadprog.solve_qp(problem.H + _HESSIAN_REG * np.eye(n),
                                          -problem.g, Cq, bq, int(eq.sum()))[0]
        except ValueError as e:
            dbg(1, f"[quadprog] {e}")
            return None, False
        return np.asarray(sol, dtype=float), True


SOLVERS = {
    OsqpSolver.name    : OsqpSolver,
    QuadprogSolver.name: QuadprogSolver,
}


def make_solver(name: str, max_iter: int = 4000) -> QPSolver:
    if name not in SOLVERS:
        raise ValueError(f"unknown QP solver '{name}', expected one of {sorted(SOLVERS)}")
    if name == OsqpSolver.name:
        return OsqpSolver(max_iter=max_iter)
    return SOLVERS[name]()


def project_forces(forces: np.ndarray, contacts: np.ndarray,
                   mu: float, f_min: float, f_max: float) -> np.ndarray:
    """
    Clip (4, 3) forces onto the constraint set: zero for swing legs,
    fz in [f_min, f_max] and the friction pyramid for stance legs.
    """
    out = np.zeros_like(forces, dtype=float)
    for i in range(NUM_LEGS):
        if not contacts[i]:
            continue
        fz = float(np.clip(forces[i, 2], f_min, f_max))
        out[i, 0] = np.clip(forces[i, 0], -mu * fz, mu * fz)
        out[i, 1] = np.clip(forces[i, 1], -mu * fz, mu * fz)
        out[i, 2] = fz
    return out


# ── Condensed MPC ────────────────────────────────────────────────────────────

class ConvexMPC:
    """
    Condensed convex model-predictive controller.

    Usage::

        mpc = ConvexMPC(K=10)
        Aqp, Bqp     = mpc.condense(Ad_list, Bd_list)
        H, g         = mpc.cost(Aqp, Bqp, x0, Xref, weights)
        C, lb, ub    = mpc.constraints(schedule)
        U_opt        = mpc.solve(H, g, C, lb, ub)
        grf = U_opt[0:12].reshape(4, 3)   # first-step GRFs
    """

    NS = 13   # state dimension
    NU = 12   # input dimension  (4 feet x 3 force components)

    def __init__(self, K: int, p: A1Params = A1,
                 solver: Optional[QPSolver] = None):
        self.K      = K
        self.p      = p
        self.solver = solver if solver is not None else make_solver(p.qp_solver, p.qp_max_iter)
        self._U_prev: Optional[np.ndarray] = None
        self._solve_count = 0
        self._fail_count  = 0
        dbg(2, f"[ConvexMPC] K={K}, solver={self.solver.name}, "
               f"f in [{p.f_min},{p.f_max}]N, mu={p.mu}")

    def reset(self) -> None:
        self._U_prev = None

    # ── Step 1: Aqp, Bqp ─────────────────────────────────────────────────────

    def condense(self, Ad_list: list, Bd_list: list
                 ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Aqp in R^{K ns x ns},  Bqp in R^{K ns x K nu}  with  X = Aqp x0 + Bqp U.

        Aqp stacks  [Ad_0; Ad_1 Ad_0; ...]
        Bqp[r, c] = Ad_r Ad_{r-1} ... Ad_{c+1} Bd_c   for r >= c
        """
        K, ns, nu = self.K, self.NS, self.NU
        Aqp = np.zeros((K * ns, ns))
        Bqp = np.zeros((K * ns, K * nu))

        Phi = np.eye(ns)
        for k in range(K):
            Phi = Ad_list[k] @ Phi
            Aqp[k*ns:(k+1)*ns] = Phi

        for c in range(K):
            M = Bd_list[c]
            Bqp[c*ns:(c+1)*ns, c*nu:(c+1)*nu] = M
            for r in range(c + 1, K):
                M = Ad_list[r] @ M
                Bqp[r*ns:(r+1)*ns, c*nu:(c+1)*nu] = M

        return Aqp, Bqp

    # ── Step 2: H, g ─────────────────────────────────────────────────────────

    def force_weight(self, weights: MPCWeights) -> float:
        return max(weights.force_weight, self.p.min_force_regularization)

    def cost(self, Aqp: np.ndarray, Bqp: np.ndarray,
             x0: np.ndarray, Xref: np.ndarray,
             weights: MPCWeights) -> Tuple[np.ndarray, np.ndarray]:
        K, nu = self.K, self.NU
        L     = np.kron(np.eye(K), np.diag(weights.Q()))
        alpha = self.force_weight(weights)
        BtL   = Bqp.T @ L
        H     = 2.0 * (BtL @ Bqp + alpha * np.eye(K * nu))
        H     = 0.5 * (H + H.T)
        g     = 2.0 * BtL @ (Aqp @ x0 - Xref)

        if DEBUG_LEVEL >= 3:
            dbg(3, f"QP cost: cond(H)={np.linalg.cond(H):.1e}, "
                   f"|Aqp x0 - Xref|={np.linalg.norm(Aqp @ x0 - Xref):.3f}, "
                   f"|g|={np.linalg.norm(g):.3f}")
        return H, g

    # ── Step 3: constraints ──────────────────────────────────────────────────

    def constraints(self, schedule: np.ndarray
                    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        schedule: (K, 4) bool, True = foot in stance at that step.

        Per STANCE foot: 5 rows (normal bounds + 4 pyramid faces).
        Per SWING foot:  3 equality rows.
        """
        K, nu = self.K, self.NU
        mu, fmn, fmx = self.p.mu, self.p.f_min, self.p.f_max

        n_rows = sum(
            5 if schedule[k, i] else 3
            for k in range(K) for i in range(NUM_LEGS)
        )
        C  = np.zeros((n_rows, K * nu))
        lb = np.full(n_rows, -np.inf)
        ub = np.full(n_rows,  np.inf)

        row = 0
        for k in range(K):
            u0 = k * nu
            for i in range(NUM_LEGS):
                fx_col = u0 + i*3
                fy_col = fx_col + 1
                fz_col = fx_col + 2

                if not schedule[k, i]:
                    for col in (fx_col, fy_col, fz_col):
                        C[row, col] = 1.0
                        lb[row] = ub[row] = 0.0
                        row += 1
                else:
                    C[row, fz_col] = 1.0
                    lb[row] = fmn
                    ub[row] = fmx
                    row += 1

                    # +-fx - mu fz <= 0,  +-fy - mu fz <= 0
                    C[row, fx_col] =  1.0; C[row, fz_col] = -mu; ub[row] = 0.; row += 1
                    C[row, fx_col] = -1.0; C[row, fz_col] = -mu; ub[row] = 0.; row += 1
                    C[row, fy_col] =  1.0; C[row, fz_col] = -mu; ub[row] = 0.; row += 1
                    C[row, fy_col] = -1.0; C[row, fz_col] = -mu; ub[row] = 0.; row += 1

        return C, lb, ub

    # ── Step 4: solve ────────────────────────────────────────────────────────

    def solve(self, H: np.ndarray, g: np.ndarray,
              C: np.ndarray, lb: np.ndarray, ub: np.ndarray) -> np.ndarray:
        """Optimal U; raises OptimizationError when the backend fails."""
        self._solve_count += 1
        U, feasible = self.solver.solve(QPProblem(H, g, C, lb, ub),
                                        warm_start=self._U_prev)
        if not feasible:
            self._fail_count += 1
            raise OptimizationError(
                f"[QP FAIL #{self._fail_count}] {self.solver.name} "
                f"(solve #{self._solve_count})"
            )
        self._U_prev = U.copy()

        if DEBUG_LEVEL >= 3:
            fz_total = sum(U[i*3 + 2] for i in range(NUM_LEGS))
            dbg(3, f"QP OK: sum fz={fz_total:.1f}N, |U|={np.linalg.norm(U):.2f}")
        return U

    # ── Diagnostics ───────────────────────────────────────────────────────────

    @property
    def stats(self) -> dict:
        return {"solves": self._solve_count, "fails": self._fail_count}
