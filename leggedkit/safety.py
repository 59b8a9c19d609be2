"""Checks that stop the controller when the robot leaves a safe posture."""

from __future__ import annotations

import math
import sys
from typing import Sequence

import numpy as np

_BASE_POSE = slice(6, 12)


class SafetyChecker:
    """Rejects states whose base roll lies outside [-pi/2, pi/2].

    States follow the centroidal layout: six momentum entries, then the base
    pose (x, y, z, yaw, pitch, roll), then the joint angles.
    """

    def check(self, state: Sequence[float], optimized_state=None, optimized_input=None) -> bool:
        """Return whether ``state`` is safe."""
        return self._check_orientation(state)

    def _check_orientation(self, state: Sequence[float]) -> bool:
        values = np.asarray(state, dtype=float).reshape(-1)
        if values.size < _BASE_POSE.stop:
            raise ValueError("state is too short to hold a base pose")
        roll = values[_BASE_POSE][5]
        if roll > math.pi / 2 or roll < -math.pi / 2:
            print("[SafetyChecker] Orientation safety check failed!", file=sys.stderr)
            return False
        return True