"""
config.py - Hardware constants, leg/joint ordering, geometry, debug config
==========================================================================
Unitree A1 whole-body locomotion controller.

All magic numbers that describe the robot (leg order, link lengths, hip
offsets) and the output layout live here. Tunable controller parameters
live in robot_params.py.
"""

import numpy as np

# =============================================================================
# Debug configuration
#   0 = silent
#   1 = warnings / degraded-control events only
#   2 = resets + gait events             (recommended for normal use)
#   3 = every MPC solve
#   4 = every control tick (very verbose)
# =============================================================================
DEBUG_LEVEL = 1
LOG_CSV     = False
LOG_FILE    = "locomotion_log.csv"


def dbg(level: int, msg: str) -> None:
    """Conditional print gated by DEBUG_LEVEL."""
    if level <= DEBUG_LEVEL:
        print(f"[DBG{level}] {msg}")


# =============================================================================
# Leg ordering used throughout ALL modules
#   Internal leg index:  FR=0, FL=1, RR=2, RL=3
#   Joints per leg:      hip (ab/ad), thigh, calf
# =============================================================================
LEG_NAMES      = ("FR", "FL", "RR", "RL")
JOINT_NAMES    = ("hip", "thigh", "calf")
NUM_LEGS       = 4
JOINTS_PER_LEG = 3
NUM_MOTORS     = NUM_LEGS * JOINTS_PER_LEG

# Diagonal pairs that share a contact state in a trot
DIAGONAL_PAIRS = ((0, 3), (1, 2))   # (FR, RL), (FL, RR)

# =============================================================================
# Output layout
#   One row per joint, leg-major / joint-minor:
#     [position target, velocity target, kp, kd, feedforward torque]
# =============================================================================
COMMAND_FIELDS   = ("position", "velocity", "kp", "kd", "torque")
NUM_COMMAND_FIELDS = len(COMMAND_FIELDS)
ACTION_SIZE      = NUM_MOTORS * NUM_COMMAND_FIELDS

# =============================================================================
# A1 link lengths [m]
# =============================================================================
L_HIP   = 0.08505
L_THIGH = 0.2
L_CALF  = 0.2

# Knee range [rad]; bounds the reachable leg length
KNEE_MIN = -2.697
KNEE_MAX = -0.916

# =============================================================================
# Hip origins in base frame [FR, FL, RR, RL]  (x-fwd, y-left, z-up)
# =============================================================================
HIP_OFFSETS = np.array([
    [ 0.183, -0.048, 0.0],   # FR
    [ 0.183,  0.048, 0.0],   # FL
    [-0.183, -0.048, 0.0],   # RR
    [-0.183,  0.048, 0.0],   # RL
])

# Sign of the ab/ad link per leg: right legs point -y, left legs +y
HIP_SIGNS = np.array([-1.0, 1.0, -1.0, 1.0])

# =============================================================================
# Hardware limits
# =============================================================================
TORQUE_LIMIT = 33.5   # Nm per joint
GRAVITY      = 9.81
