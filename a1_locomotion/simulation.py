"""
simulation.py - MuJoCo simulation harness
=========================================

Runs the LocomotionController against a MuJoCo model with two run modes:

    verify(duration)          headless run with a console table
    run_with_viewer(duration) interactive MuJoCo passive viewer

The MPC is solved on a fixed cadence: one solve every
sim_frequency / mpc_frequency physics ticks. Velocity commands follow a
piecewise-constant profile of (start time, vx, vy, yaw rate) entries.

Usage::

    python -m a1_locomotion.simulation --xml path/to/a1/scene.xml --duration 8
"""

import argparse
from typing import List, Optional, Sequence, Tuple

import mujoco
import numpy as np

from a1_locomotion.config import LEG_NAMES, LOG_CSV, LOG_FILE
from a1_locomotion.locomotion_controller import LocomotionController
from a1_locomotion.mpc_solver import make_solver
from a1_locomotion.mujoco_interface import MujocoRobot
from a1_locomotion.robot_params import A1, A1Params, RobotState
from a1_locomotion.telemetry import DebugLogger

# (start time [s], vx [m/s], vy [m/s], yaw rate [rad/s])
VelocityProfile = Sequence[Tuple[float, float, float, float]]

DEFAULT_PROFILE: VelocityProfile = (
    (0.0, 0.0, 0.0, 0.0),
    (1.0, 0.3, 0.0, 0.0),
    (3.0, 0.6, 0.0, 0.0),
    (5.0, 0.6, 0.0, 0.3),
    (7.0, 1.0, 0.0, 0.0),
)


def command_at(profile: VelocityProfile, t: float) -> Tuple[np.ndarray, float]:
    """Piecewise-constant lookup: the last entry whose start time is <= t."""
    vx, vy, wz = 0.0, 0.0, 0.0
    for t0, a, b, c in profile:
        if t >= t0:
            vx, vy, wz = a, b, c
    return np.array([vx, vy]), wz


class LocomotionSimulation:
    """
    Simulation harness combining a MuJoCo model and the LocomotionController.

    Parameters
    ----------
    model, data    : MuJoCo model and data (loading them is the caller's job)
    gait           : gait profile name ("trotting" or "standing")
    mpc_frequency  : MPC solves per second
    params         : A1Params, also the source of the per-tick MPC weights,
                     mass and inertia
    """

    def __init__(self, model: mujoco.MjModel, data: mujoco.MjData,
                 gait: str = "trotting", mpc_frequency: Optional[float] = None,
                 params: A1Params = A1, log_csv: bool = LOG_CSV):
        self.model  = model
        self.data   = data
        self.p      = params
        self.robot  = MujocoRobot(model, data)
        self.logger = DebugLogger(LOG_FILE, enabled=log_csv)
        self.ctrl   = LocomotionController.build(
            self.robot, gait, params,
            solver=make_solver(params.qp_solver, params.qp_max_iter),
            logger=self.logger,
        )

        sim_frequency = 1.0 / self.robot.timestep
        mpc_frequency = mpc_frequency if mpc_frequency is not None else 1.0 / params.mpc_dt
        self.ticks_per_solve = max(1, int(round(sim_frequency / mpc_frequency)))

        self._weights = np.asarray(params.mpc_weights, dtype=float)
        self._inertia = params.BI.ravel()
        self._log: list = []

        print(f"Physics dt = {self.robot.timestep * 1e3:.1f} ms  "
              f"MPC every {self.ticks_per_solve} ticks  "
              f"nv={model.nv}  nq={model.nq}  nu={model.nu}")

    # ── Reset ────────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Place the robot in the nominal standing pose and reset the controller."""
        self.robot.set_pose(np.array([0.0, 0.0, self.p.body_height]),
                            self.ctrl.hold.q_des)
        self.ctrl.reset()
        self._tick = 0
        self._log.clear()

    def step(self, desired_velocity: np.ndarray, yaw_rate: float) -> RobotState:
        """One control tick = one physics step."""
        self.ctrl.update(desired_velocity, yaw_rate)
        solve = self._tick % self.ticks_per_solve == 0
        action = self.ctrl.get_action(solve, self._weights, self.p.mass, self._inertia)
        self.robot.apply_action(action)
        self._tick += 1
        return self.robot.read_state()

    # ── Console table helpers ────────────────────────────────────────────────

    def _print_header(self) -> None:
        hdr = (f"  {'t':>5}  {'pz':>5}  "
               f"{'roll':>6} {'pitch':>6} {'yaw':>6}  "
               f"{'vx':>5} {'vy':>5}  "
               + " ".join(f"{'fz' + n:>6}" for n in LEG_NAMES)
               + "  stance")
        print(hdr)
        print("  " + "-" * (len(hdr) - 2))

    def _print_row(self, s: RobotState) -> None:
        r, p, y = np.degrees(s.rpy)
        g = self.ctrl.stance.forces
        fz = g[:, 2] if g is not None else np.zeros(len(LEG_NAMES))
        c = "".join("S" if v else "-" for v in self.ctrl.gait.contacts())
        print(f"  {s.time:5.2f}  {s.com_position[2]:5.3f}  "
              f"{r:6.1f} {p:6.1f} {y:6.1f}  "
              f"{s.com_velocity[0]:5.2f} {s.com_velocity[1]:5.2f}  "
              + " ".join(f"{f:6.1f}" for f in fz)
              + f"  {c}")
        self._log.append((s.time, s.com_position[2], r, p, y, s.com_velocity[0]))

    # ── Run modes ────────────────────────────────────────────────────────────

    def verify(self, duration: float = 8.0,
               profile: VelocityProfile = DEFAULT_PROFILE) -> List[tuple]:
        """Headless run; returns the printed rows (t, pz, roll, pitch, yaw, vx)."""
        self.reset()
        print("\n" + "=" * 74)
        print("  Convex MPC locomotion  (A1, MuJoCo)")
        print("=" * 74)
        self._print_header()

        last_pr = -1.0
        state = self.robot.read_state()
        while state.time < duration:
            v, wz = command_at(profile, state.time)
            state = self.step(v, wz)
            if state.time - last_pr >= 0.2:
                self._print_row(state)
                last_pr = state.time

        self._print_summary()
        self.logger.close()
        return list(self._log)

    def run_with_viewer(self, duration: float = 20.0,
                        profile: VelocityProfile = DEFAULT_PROFILE) -> None:
        """Interactive run. Close the viewer window or press Ctrl-C to stop early."""
        import mujoco.viewer

        self.reset()
        self._print_header()
        with mujoco.viewer.launch_passive(self.model, self.data) as viewer:
            viewer.cam.type = mujoco.mjtCamera.mjCAMERA_TRACKING
            viewer.cam.trackbodyid = 1
            viewer.cam.distance = 2.0
            viewer.cam.azimuth = 180
            viewer.cam.elevation = -20
            last_pr = -1.0
            state = self.robot.read_state()
            while viewer.is_running() and state.time < duration:
                v, wz = command_at(profile, state.time)
                state = self.step(v, wz)
                if state.time - last_pr >= 0.2:
                    self._print_row(state)
                    last_pr = state.time
                viewer.sync()

        self._print_summary()
        self.logger.close()

    # ── Summary ──────────────────────────────────────────────────────────────

    def _print_summary(self) -> None:
        st = self.ctrl.stats
        print("\n" + "=" * 74)
        print(f"  MPC solves : {st.get('solves', 0)}  "
              f"mean={st.get('mean_ms', 0):.1f}ms  "
              f"max={st.get('max_ms', 0):.1f}ms  "
              f"QP fails={st.get('fails', 0)}")
        print(f"  Faults     : {st['faults']}")
        if self._log:
            pz = [e[1] for e in self._log]
            print(f"  Height     : mean={np.mean(pz):.3f}  "
                  f"min={np.min(pz):.3f}  max={np.max(pz):.3f} m")
        print("=" * 74)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="A1 convex MPC locomotion in MuJoCo")
    parser.add_argument("--xml", required=True, help="MuJoCo scene with the A1 model")
    parser.add_argument("--duration", type=float, default=8.0)
    parser.add_argument("--gait", default="trotting", choices=["trotting", "standing"])
    parser.add_argument("--mpc-frequency", type=float, default=None)
    parser.add_argument("--viewer", action="store_true")
    parser.add_argument("--log-csv", action="store_true")
    args = parser.parse_args(argv)

    print(f"\nLoading model: {args.xml}")
    model = mujoco.MjModel.from_xml_path(args.xml)
    data  = mujoco.MjData(model)
    sim = LocomotionSimulation(model, data, gait=args.gait,
                               mpc_frequency=args.mpc_frequency,
                               log_csv=args.log_csv or LOG_CSV)
    if args.viewer:
        try:
            sim.run_with_viewer(args.duration)
        except KeyboardInterrupt:
            sim.logger.close()
            print("\nStopped by user.")
    else:
        sim.verify(args.duration)


if __name__ == "__main__":
    main()
