"""
telemetry.py - Buffered per-tick CSV log of the locomotion controller
"""

import csv
import os
from typing import Optional, Sequence

import numpy as np

from a1_locomotion.config import LEG_NAMES, LOG_FILE, NUM_COMMAND_FIELDS, NUM_MOTORS
from a1_locomotion.robot_params import RobotState

# Rows kept in memory between writes
FLUSH_EVERY = 200


class DebugLogger:
    FIELDS = [
        "t", "pz", "roll_deg", "pitch_deg", "yaw_deg",
        "vx", "vy", "vz", "wz",
        *[f"stance_{n}" for n in LEG_NAMES],
        *[f"fz_{n}" for n in LEG_NAMES],
        *[f"fx_{n}" for n in LEG_NAMES],
        "tau_max",
        "total_fz", "weight_ratio",
        "mpc_solved", "n_faults",
    ]

    def __init__(self, filename: str = LOG_FILE, enabled: bool = True):
        self.enabled  = enabled
        self.filename = filename
        self._rows: list = []
        self._last_flush = 0
        self._header_written = False

    def __len__(self) -> int:
        return len(self._rows)

    def log(self, state: RobotState, contacts: Sequence[bool],
            grf: Optional[np.ndarray], action: np.ndarray,
            weight: float, mpc_solved: bool, n_faults: int) -> None:
        if not self.enabled:
            return

        r, p, y  = np.degrees(state.rpy)
        grf      = np.zeros((len(LEG_NAMES), 3)) if grf is None else grf
        total_fz = float(grf[np.asarray(contacts, dtype=bool), 2].sum())
        tau_ff   = np.asarray(action).reshape(NUM_MOTORS, NUM_COMMAND_FIELDS)[:, 4]

        row = {
            "t"           : round(state.time, 4),
            "pz"          : round(state.com_position[2], 4),
            "roll_deg"    : round(r, 2),
            "pitch_deg"   : round(p, 2),
            "yaw_deg"     : round(y, 2),
            "vx"          : round(state.com_velocity[0], 4),
            "vy"          : round(state.com_velocity[1], 4),
            "vz"          : round(state.com_velocity[2], 4),
            "wz"          : round(state.angular_velocity[2], 4),
            "tau_max"     : round(float(np.max(np.abs(tau_ff))), 2),
            "total_fz"    : round(total_fz, 2),
            "weight_ratio": round(total_fz / weight, 3) if weight > 0 else 0.0,
            "mpc_solved"  : int(mpc_solved),
            "n_faults"    : int(n_faults),
        }
        for i, n in enumerate(LEG_NAMES):
            row[f"stance_{n}"] = int(contacts[i])
            row[f"fz_{n}"]     = round(float(grf[i, 2]), 2)
            row[f"fx_{n}"]     = round(float(grf[i, 0]), 2)
        self._rows.append(row)

        if len(self._rows) - self._last_flush >= FLUSH_EVERY:
            self._flush()

    def _flush(self) -> None:
        if len(self._rows) == self._last_flush:
            return
        mode = "a" if self._header_written else "w"
        with open(self.filename, mode, newline='') as f:
            writer = csv.DictWriter(f, fieldnames=self.FIELDS)
            if not self._header_written:
                writer.writeheader()
                self._header_written = True
            writer.writerows(self._rows[self._last_flush:])
        self._last_flush = len(self._rows)

    def close(self) -> None:
        if not self.enabled:
            return
        self._flush()
        if os.path.exists(self.filename):
            print(f"[DebugLogger] Saved {len(self._rows)} rows -> {self.filename}")
