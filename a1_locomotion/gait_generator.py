"""
gait_generator.py - Open-loop per-leg gait phase / contact-state machine
========================================================================

Each leg cycles with period  T_i = stance_duration_i / duty_factor_i.

Phase for leg i at time t since reset:
    phi_i(t) = (t / T_i + initial_phase_i) mod 1

A leg that starts in STANCE spends the first duty_factor of its cycle in
stance, the rest in swing.  A leg that starts in SWING spends the first
(1 - duty_factor) in swing, the rest in stance.  Within each sub-phase the
normalized phase runs from 0 to 1.

Usage::

    gait = GaitGenerator(GaitProfile.trotting())
    gait.reset()
    gait.update(t)                   # t = time since controller reset
    gait.leg_state[i]                # LegState.SWING / LegState.STANCE
    gait.normalized_phase[i]         # progress in [0, 1) of current sub-phase
"""

import enum
from dataclasses import dataclass, field

import numpy as np

from a1_locomotion.config import LEG_NAMES, NUM_LEGS, dbg

# Largest double below 1.0; keeps sub-phase progress strictly inside [0, 1)
_PHASE_MAX = np.nextafter(1.0, 0.0)


class LegState(enum.IntEnum):
    SWING  = 0
    STANCE = 1


@dataclass
class GaitProfile:
    stance_duration  : np.ndarray
    duty_factor      : np.ndarray
    initial_leg_phase: np.ndarray
    initial_leg_state: tuple = field(default=(LegState.STANCE,) * NUM_LEGS)

    def __post_init__(self):
        self.stance_duration   = np.asarray(self.stance_duration, dtype=float)
        self.duty_factor       = np.asarray(self.duty_factor, dtype=float)
        self.initial_leg_phase = np.asarray(self.initial_leg_phase, dtype=float)
        self.initial_leg_state = tuple(LegState(s) for s in self.initial_leg_state)

        for name, arr in (("stance_duration", self.stance_duration),
                          ("duty_factor", self.duty_factor),
                          ("initial_leg_phase", self.initial_leg_phase)):
            if arr.shape != (NUM_LEGS,):
                raise ValueError(f"{name} must have {NUM_LEGS} entries, got {arr.shape}")
        if len(self.initial_leg_state) != NUM_LEGS:
            raise ValueError(f"initial_leg_state must have {NUM_LEGS} entries")
        if np.any(self.stance_duration <= 0.0):
            raise ValueError("stance_duration must be positive")
        if np.any(self.duty_factor <= 0.0) or np.any(self.duty_factor > 1.0):
            raise ValueError("duty_factor must lie in (0, 1]")
        if np.any(self.initial_leg_phase < 0.0) or np.any(self.initial_leg_phase >= 1.0):
            raise ValueError("initial_leg_phase must lie in [0, 1)")

    @classmethod
    def standing(cls, stance_duration: float = 0.3) -> "GaitProfile":
        return cls(
            stance_duration=np.full(NUM_LEGS, stance_duration),
            duty_factor=np.ones(NUM_LEGS),
            initial_leg_phase=np.zeros(NUM_LEGS),
            initial_leg_state=(LegState.STANCE,) * NUM_LEGS,
        )

    @classmethod
    def trotting(cls, stance_duration: float = 0.3,
                 duty_factor: float = 0.6) -> "GaitProfile":
        # FR and RL start late in swing, FL and RR start at touchdown
        return cls(
            stance_duration=np.full(NUM_LEGS, stance_duration),
            duty_factor=np.full(NUM_LEGS, duty_factor),
            initial_leg_phase=np.array([0.9, 0.0, 0.0, 0.9]),
            initial_leg_state=(LegState.SWING, LegState.STANCE,
                               LegState.STANCE, LegState.SWING),
        )

    @classmethod
    def by_name(cls, name: str) -> "GaitProfile":
        profiles = {"standing": cls.standing, "trotting": cls.trotting}
        if name not in profiles:
            raise ValueError(f"unknown gait '{name}', expected one of {sorted(profiles)}")
        return profiles[name]()


class GaitGenerator:
    """
    Open-loop gait: contact states are a pure function of time since reset
    and the static profile, so any run is replayable from its start time.
    """

    def __init__(self, profile: GaitProfile):
        self.profile = profile
        self._initial_ratio = np.array([
            d if s == LegState.STANCE else 1.0 - d
            for d, s in zip(profile.duty_factor, profile.initial_leg_state)
        ])
        self._next_state = tuple(
            LegState.SWING if s == LegState.STANCE else LegState.STANCE
            for s in profile.initial_leg_state
        )
        self.reset()

    # ── Configuration ─────────────────────────────────────────────────────────

    @property
    def stance_duration(self) -> np.ndarray:
        return self.profile.stance_duration

    @property
    def duty_factor(self) -> np.ndarray:
        return self.profile.duty_factor

    @property
    def cycle_length(self) -> np.ndarray:
        """Full gait cycle period per leg [s]."""
        return self.profile.stance_duration / self.profile.duty_factor

    @property
    def swing_duration(self) -> np.ndarray:
        return self.cycle_length - self.profile.stance_duration

    # ── State machine ─────────────────────────────────────────────────────────

    def reset(self) -> None:
        self.normalized_phase = self.profile.initial_leg_phase.copy()
        self.leg_state = list(self.profile.initial_leg_state)
        dbg(2, f"GaitGenerator reset: {self}")

    def update(self, time_since_reset: float) -> None:
        cycle = self.cycle_length
        for i in range(NUM_LEGS):
            phase = (time_since_reset / cycle[i] + self.profile.initial_leg_phase[i]) % 1.0
            ratio = self._initial_ratio[i]
            if phase < ratio:
                self.leg_state[i] = self.profile.initial_leg_state[i]
                progress = phase / ratio
            else:
                self.leg_state[i] = self._next_state[i]
                progress = (phase - ratio) / (1.0 - ratio)
            self.normalized_phase[i] = min(progress, _PHASE_MAX)

    def contacts(self) -> np.ndarray:
        """(4,) bool: True where the leg is in STANCE."""
        return np.array([s == LegState.STANCE for s in self.leg_state])

    def __repr__(self) -> str:
        legs = " ".join(
            f"{n}:{'ST' if s == LegState.STANCE else 'SW'}@{p:.2f}"
            for n, s, p in zip(LEG_NAMES, self.leg_state, self.normalized_phase)
        )
        return f"GaitGenerator({legs})"
