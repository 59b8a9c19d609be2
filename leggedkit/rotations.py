"""Rotation helpers. Quaternions are sequences ordered (w, x, y, z)."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

_TWO_PI = 2.0 * math.pi


def _quat(quat: Sequence[float]) -> tuple[float, float, float, float]:
    values = [float(c) for c in quat]
    if len(values) != 4:
        raise ValueError("a quaternion needs four components (w, x, y, z)")
    return values[0], values[1], values[2], values[3]


def _vec3(values: Sequence[float]) -> np.ndarray:
    array = np.asarray(values, dtype=float).reshape(-1)
    if array.shape != (3,):
        raise ValueError("expected three components")
    return array


def quat_to_zyx(quat: Sequence[float]) -> np.ndarray:
    """Yaw, pitch and roll of a quaternion; the pitch sine is capped at 0.99999."""
    w, x, y, z = _quat(quat)
    pitch_sine = min(-2.0 * (x * z - w * y), 0.99999)
    yaw = math.atan2(2.0 * (x * y + w * z), w * w + x * x - y * y - z * z)
    pitch = float(np.arcsin(pitch_sine))
    roll = math.atan2(2.0 * (y * z + w * x), w * w - x * x - y * y + z * z)
    return np.array([yaw, pitch, roll])


def rotation_matrix_from_zyx(zyx: Sequence[float]) -> np.ndarray:
    """Rotation matrix Rz(yaw) @ Ry(pitch) @ Rx(roll)."""
    yaw, pitch, roll = _vec3(zyx)
    cz, sz = math.cos(yaw), math.sin(yaw)
    cy, sy = math.cos(pitch), math.sin(pitch)
    cx, sx = math.cos(roll), math.sin(roll)
    return np.array(
        [
            [cz * cy, cz * sy * sx - sz * cx, cz * sy * cx + sz * sx],
            [sz * cy, sz * sy * sx + cz * cx, sz * sy * cx - cz * sx],
            [-sy, cy * sx, cy * cx],
        ]
    )


def zyx_derivatives_from_local_angular_velocity(zyx: Sequence[float], angular_velocity: Sequence[float]) -> np.ndarray:
    """Euler angle rates (yaw, pitch, roll) from an angular velocity in the body frame."""
    _, pitch, roll = _vec3(zyx)
    wx, wy, wz = _vec3(angular_velocity)
    cy, sy = math.cos(pitch), math.sin(pitch)
    cx, sx = math.cos(roll), math.sin(roll)
    yaw_rate = (sx * wy + cx * wz) / cy
    return np.array([yaw_rate, cx * wy - sx * wz, wx + sy * yaw_rate])


def zyx_derivatives_from_global_angular_velocity(zyx: Sequence[float], angular_velocity: Sequence[float]) -> np.ndarray:
    """Euler angle rates (yaw, pitch, roll) from an angular velocity in the world frame."""
    yaw, pitch, _ = _vec3(zyx)
    wx, wy, wz = _vec3(angular_velocity)
    cz, sz = math.cos(yaw), math.sin(yaw)
    cy, sy = math.cos(pitch), math.sin(pitch)
    roll_rate = (cz * wx + sz * wy) / cy
    return np.array([wz + sy * roll_rate, -sz * wx + cz * wy, roll_rate])


def global_angular_velocity_from_zyx_derivatives(zyx: Sequence[float], derivatives: Sequence[float]) -> np.ndarray:
    """World-frame angular velocity from Euler angle rates (yaw, pitch, roll)."""
    yaw, pitch, _ = _vec3(zyx)
    dz, dy, dx = _vec3(derivatives)
    cz, sz = math.cos(yaw), math.sin(yaw)
    cy, sy = math.cos(pitch), math.sin(pitch)
    return np.array([-sz * dy + cy * cz * dx, cz * dy + cy * sz * dx, dz - sy * dx])


def quat_to_rotation_matrix(quat: Sequence[float]) -> np.ndarray:
    """Rotation matrix of a unit quaternion."""
    w, x, y, z = _quat(quat)
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def euler_angles_xyz(rotation) -> np.ndarray:
    """Angles (a, b, c) with rotation = Rx(a) @ Ry(b) @ Rz(c) and a in [0, pi]."""
    m = np.asarray(rotation, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("expected a 3x3 matrix")
    first = math.atan2(m[1, 2], m[2, 2])
    c2 = math.hypot(m[0, 0], m[0, 1])
    if first > 0.0:
        first -= math.pi
        second = math.atan2(-m[0, 2], -c2)
    else:
        second = math.atan2(-m[0, 2], c2)
    s1, c1 = math.sin(first), math.cos(first)
    third = math.atan2(s1 * m[2, 0] - c1 * m[1, 0], c1 * m[1, 1] - s1 * m[2, 1])
    return -np.array([first, second, third])


def _normalize_angle(angle: float) -> float:
    wrapped = math.fmod(math.fmod(angle, _TWO_PI) + _TWO_PI, _TWO_PI)
    if wrapped > math.pi:
        wrapped -= _TWO_PI
    return wrapped


def shortest_angular_distance(origin: float, target: float) -> float:
    """Signed angle in (-pi, pi] that turns ``origin`` onto ``target``."""
    return _normalize_angle(target - origin)


def stance_legs_to_mode(contact_flags: Sequence[bool]) -> int:
    """Mode number of a stance pattern ordered LF, RF, LH, RH."""
    flags = [bool(flag) for flag in contact_flags]
    if len(flags) != 4:
        raise ValueError("expected four contact flags")
    lf, rf, lh, rh = flags
    return int(rh) + 2 * int(lh) + 4 * int(rf) + 8 * int(lf)