"""Linear Kalman filter that fuses IMU, leg kinematics and an optional external pose."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, fields
from typing import Callable, Optional, Sequence

import numpy as np

from .info_config import load_info, lookup
from .rotations import (
    quat_to_rotation_matrix,
    quat_to_zyx,
    rotation_matrix_from_zyx,
    zyx_derivatives_from_global_angular_velocity,
)
from .state_estimate import Odometry, StateEstimateBase

_log = logging.getLogger(__name__)

GRAVITY = np.array([0.0, 0.0, -9.81])
_HIGH_SUSPECT = 100.0

Kinematics = Callable[[np.ndarray, np.ndarray], tuple]
"""Maps (q, v) of the pinocchio model to (foot positions, foot velocities), one row per foot."""

TransformLookup = Callable[[str, str, float], tuple]
"""Maps (target frame, source frame, stamp) to (translation, quaternion w-x-y-z); raises LookupError."""


@dataclass
class KalmanFilterSettings:
    """Noise parameters of the filter."""

    foot_radius: float = 0.02
    imu_process_noise_position: float = 0.02
    imu_process_noise_velocity: float = 0.02
    foot_process_noise_position: float = 0.002
    foot_sensor_noise_position: float = 0.005
    foot_sensor_noise_velocity: float = 0.1
    foot_height_sensor_noise: float = 0.01


_SETTING_KEYS = {
    "foot_radius": "footRadius",
    "imu_process_noise_position": "imuProcessNoisePosition",
    "imu_process_noise_velocity": "imuProcessNoiseVelocity",
    "foot_process_noise_position": "footProcessNoisePosition",
    "foot_sensor_noise_position": "footSensorNoisePosition",
    "foot_sensor_noise_velocity": "footSensorNoiseVelocity",
    "foot_height_sensor_noise": "footHeightSensorNoise",
}


def load_kalman_settings(task_file) -> KalmanFilterSettings:
    """Read the ``kalmanFilter`` block of an INFO task file; missing or bad entries keep their defaults."""
    tree = load_info(task_file)
    values = {}
    for setting in fields(KalmanFilterSettings):
        key = "kalmanFilter." + _SETTING_KEYS[setting.name]
        try:
            values[setting.name] = float(lookup(tree, key))
        except (KeyError, TypeError, ValueError):
            continue
    return KalmanFilterSettings(**values)


@dataclass(frozen=True)
class _Transform:
    rotation: np.ndarray
    translation: np.ndarray

    @classmethod
    def identity(cls) -> "_Transform":
        return cls(np.eye(3), np.zeros(3))

    @classmethod
    def from_pose(cls, translation: Sequence[float], quat: Sequence[float]) -> "_Transform":
        q = np.asarray(quat, dtype=float).reshape(-1)
        norm = np.linalg.norm(q)
        if norm == 0.0:
            raise ValueError("zero-length quaternion")
        return cls(quat_to_rotation_matrix(q / norm), np.asarray(translation, dtype=float).reshape(3).copy())

    def inverse(self) -> "_Transform":
        rt = self.rotation.T
        return _Transform(rt, -rt @ self.translation)

    def __mul__(self, other: "_Transform") -> "_Transform":
        return _Transform(self.rotation @ other.rotation, self.rotation @ other.translation + self.translation)


class KalmanFilterEstimate(StateEstimateBase):
    """Estimates base position and velocity together with the foot positions."""

    def __init__(
        self,
        generalized_coordinates_num: int,
        actuated_dof_num: int,
        kinematics: Kinematics,
        num_contacts: int = 4,
        settings: Optional[KalmanFilterSettings] = None,
        sink: Optional[Callable[[Odometry], None]] = None,
        transform_lookup: Optional[TransformLookup] = None,
    ) -> None:
        super().__init__(generalized_coordinates_num, actuated_dof_num, sink)
        if num_contacts < 1:
            raise ValueError("at least one contact is needed")
        self.settings = settings if settings is not None else KalmanFilterSettings()
        self._kinematics = kinematics
        self._transform_lookup = transform_lookup
        self.num_contacts = num_contacts
        self._dim_contacts = dim = 3 * num_contacts
        self._num_state = state = 6 + dim
        self._num_observe = observe = 2 * dim + num_contacts

        self.x_hat = np.zeros(state)
        self._ps = np.zeros(dim)
        self._vs = np.zeros(dim)
        self._a = np.eye(state)
        self._b = np.zeros((state, 3))
        c = np.zeros((observe, state))
        for i in range(num_contacts):
            c[3 * i : 3 * i + 3, 0:3] = np.eye(3)
            c[3 * (num_contacts + i) : 3 * (num_contacts + i) + 3, 3:6] = np.eye(3)
            c[2 * dim + i, 6 + 3 * i + 2] = 1.0
        c[0:dim, 6 : 6 + dim] = -np.eye(dim)
        self._c = c
        self._q = np.eye(state)
        self.p = 100.0 * np.eye(state)
        self._r = np.eye(observe)
        self.feet_heights = np.zeros(num_contacts)

        self._world_to_odom = _Transform.identity()
        self._lock = threading.Lock()
        self._latest: Optional[Odometry] = None
        self._topic_updated = False

    def _feet(self, q_pino: np.ndarray, v_pino: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        positions, velocities = self._kinematics(q_pino, v_pino)
        try:
            positions = np.asarray(positions, dtype=float).reshape(self.num_contacts, 3)
            velocities = np.asarray(velocities, dtype=float).reshape(self.num_contacts, 3)
        except ValueError:
            raise ValueError(f"kinematics must give {self.num_contacts} foot positions and velocities") from None
        return positions, velocities

    def _pino_configuration(self, base_position: Sequence[float]) -> np.ndarray:
        n, a = self.generalized_coordinates_num, self.actuated_dof_num
        q = np.zeros(n)
        q[0:3] = base_position
        q[3:6] = self.rbd_state[0:3]
        q[n - a :] = self.rbd_state[6 : 6 + a]
        return q

    def _contact(self, index: int) -> bool:
        return index < len(self.contact_flags) and self.contact_flags[index]

    def update(self, time: float, period: float) -> np.ndarray:
        dt = float(period)
        s = self.settings
        nc, dim = self.num_contacts, self._dim_contacts
        n, a = self.generalized_coordinates_num, self.actuated_dof_num
        eye3 = np.eye(3)

        self._a[0:3, 3:6] = dt * eye3
        self._b[0:3, :] = 0.5 * dt * dt * eye3
        self._b[3:6, :] = dt * eye3
        self._q[0:3, 0:3] = (dt / 20.0) * eye3
        self._q[3:6, 3:6] = (dt * 9.81 / 20.0) * eye3
        self._q[6:, 6:] = dt * np.eye(dim)

        # Orientation and joint motion only; the base stays at the origin.
        q_pino = self._pino_configuration(np.zeros(3))
        v_pino = np.zeros(n)
        v_pino[3:6] = zyx_derivatives_from_global_angular_velocity(q_pino[3:6], self.rbd_state[n : n + 3])
        v_pino[n - a :] = self.rbd_state[n + 6 : n + 6 + a]
        ee_pos, ee_vel = self._feet(q_pino, v_pino)

        q = np.eye(self._num_state)
        q[0:3, 0:3] = self._q[0:3, 0:3] * s.imu_process_noise_position
        q[3:6, 3:6] = self._q[3:6, 3:6] * s.imu_process_noise_velocity
        q[6:, 6:] = self._q[6:, 6:] * s.foot_process_noise_position

        r = np.eye(self._num_observe)
        r[0:dim, 0:dim] = self._r[0:dim, 0:dim] * s.foot_sensor_noise_position
        r[dim : 2 * dim, dim : 2 * dim] = self._r[dim : 2 * dim, dim : 2 * dim] * s.foot_sensor_noise_velocity
        r[2 * dim :, 2 * dim :] = self._r[2 * dim :, 2 * dim :] * s.foot_height_sensor_noise

        for i in range(nc):
            scale = 1.0 if self._contact(i) else _HIGH_SUSPECT
            qi, r1, r2, r3 = 6 + 3 * i, 3 * i, dim + 3 * i, 2 * dim + i
            q[qi : qi + 3, qi : qi + 3] *= scale
            r[r1 : r1 + 3, r1 : r1 + 3] *= scale
            r[r2 : r2 + 3, r2 : r2 + 3] *= scale
            r[r3, r3] *= scale

        self._ps = (-ee_pos + np.array([0.0, 0.0, s.foot_radius])).reshape(-1)
        self._vs = (-ee_vel).reshape(-1)

        accel = rotation_matrix_from_zyx(quat_to_zyx(self.quat)) @ self.linear_accel_local + GRAVITY

        y = np.concatenate([self._ps, self._vs, self.feet_heights])
        self.x_hat = self._a @ self.x_hat + self._b @ accel
        pm = self._a @ self.p @ self._a.T + q
        c_t = self._c.T
        ey = y - self._c @ self.x_hat
        s_mat = self._c @ pm @ c_t + r
        self.x_hat = self.x_hat + pm @ c_t @ np.linalg.solve(s_mat, ey)
        s_c = np.linalg.solve(s_mat, self._c)
        p = (np.eye(self._num_state) - pm @ c_t @ s_c) @ pm
        self.p = (p + p.T) / 2.0

        with self._lock:
            pending = self._latest if self._topic_updated else None
            self._topic_updated = False
        if pending is not None:
            self._update_from_topic(pending)

        self._update_linear(self.x_hat[0:3], self.x_hat[3:6])

        odom = self.odometry()
        odom.stamp = time
        odom.frame_id = "odom"
        odom.child_frame_id = "base"
        self.publish(odom)
        return self.rbd_state.copy()

    def _lookup(self, target: str, source: str, stamp: float) -> Optional[_Transform]:
        if self._transform_lookup is None:
            _log.warning("no transform source to look up '%s' -> '%s'", target, source)
            return None
        try:
            translation, quat = self._transform_lookup(target, source, stamp)
        except LookupError as exc:
            _log.warning("%s", exc)
            return None
        return _Transform.from_pose(translation, quat)

    def _update_from_topic(self, msg: Odometry) -> None:
        world_to_sensor = _Transform.from_pose(msg.position, msg.orientation)

        if np.array_equal(self._world_to_odom.rotation, np.eye(3)):  # first message
            odom_to_sensor = self._lookup("odom", msg.child_frame_id, msg.stamp)
            if odom_to_sensor is None:
                return
            self._world_to_odom = world_to_sensor * odom_to_sensor.inverse()
        base_to_sensor = self._lookup("base", msg.child_frame_id, msg.stamp)
        if base_to_sensor is None:
            return
        odom_to_base = self._world_to_odom.inverse() * world_to_sensor * base_to_sensor.inverse()
        new_pos = odom_to_base.translation

        q_pino = self._pino_configuration(new_pos)
        ee_pos, _ = self._feet(q_pino, np.zeros(self.generalized_coordinates_num))

        self.x_hat[0:3] = new_pos
        for i in range(self.num_contacts):
            base = 6 + 3 * i
            self.x_hat[base : base + 3] = ee_pos[i]
            self.x_hat[base + 2] -= self.settings.foot_radius
            if self._contact(i):
                self.feet_heights[i] = self.x_hat[base + 2]

        odom = self.odometry()
        odom.stamp = msg.stamp
        odom.frame_id = msg.frame_id
        odom.child_frame_id = "base"
        self.publish(odom)

    def on_odometry(self, msg: Odometry) -> None:
        """Keep an external pose to be fused at the next update; safe from another thread."""
        with self._lock:
            self._latest = msg
            self._topic_updated = True

    def odometry(self) -> Odometry:
        """Current estimate as odometry; the twist is expressed in the base frame."""
        pose_covariance = np.zeros((6, 6))
        pose_covariance[0:3, 0:3] = self.p[0:3, 0:3]
        pose_covariance[3:6, 3:6] = self.orientation_covariance
        twist_covariance = np.zeros((6, 6))
        twist_covariance[0:3, 0:3] = self.p[3:6, 3:6]
        twist_covariance[3:6, 3:6] = self.angular_vel_covariance
        twist = rotation_matrix_from_zyx(quat_to_zyx(self.quat)).T @ self.x_hat[3:6]
        return Odometry(
            position=self.x_hat[0:3].copy(),
            orientation=np.asarray(self.quat, dtype=float).copy(),
            linear_velocity=twist,
            angular_velocity=np.asarray(self.angular_vel_local, dtype=float).copy(),
            pose_covariance=pose_covariance,
            twist_covariance=twist_covariance,
        )