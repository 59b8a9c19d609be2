"""Base state estimator and an estimator fed by an external odometry stream."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from .rotations import (
    global_angular_velocity_from_zyx_derivatives,
    quat_to_zyx,
    stance_legs_to_mode,
    zyx_derivatives_from_local_angular_velocity,
)


@dataclass(eq=False)
class Odometry:
    """Pose and twist with covariances; orientation is (w, x, y, z)."""

    stamp: float = 0.0
    frame_id: str = ""
    child_frame_id: str = ""
    position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    orientation: np.ndarray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))
    linear_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    angular_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    pose_covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    twist_covariance: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))


class StateEstimateBase(ABC):
    """Holds the rigid-body state [zyx, position, joints, angular vel, linear vel, joint vel]."""

    publish_rate = 200.0

    def __init__(
        self,
        generalized_coordinates_num: int,
        actuated_dof_num: int,
        sink: Optional[Callable[[Odometry], None]] = None,
    ) -> None:
        if actuated_dof_num < 0 or actuated_dof_num + 6 > generalized_coordinates_num:
            raise ValueError("actuated joints must fit beside the six base coordinates")
        self.generalized_coordinates_num = generalized_coordinates_num
        self.actuated_dof_num = actuated_dof_num
        self.rbd_state = np.zeros(2 * generalized_coordinates_num)
        self.contact_flags: tuple[bool, ...] = (False,) * 4
        self.zyx_offset = np.zeros(3)
        self.quat = np.array([1.0, 0.0, 0.0, 0.0])
        self.angular_vel_local = np.zeros(3)
        self.linear_accel_local = np.zeros(3)
        self.orientation_covariance = np.zeros((3, 3))
        self.angular_vel_covariance = np.zeros((3, 3))
        self.linear_accel_covariance = np.zeros((3, 3))
        self._sink = sink
        self._last_publish = 0.0

    def _joint_vector(self, values: Sequence[float]) -> np.ndarray:
        array = np.asarray(values, dtype=float).reshape(-1)
        if array.shape != (self.actuated_dof_num,):
            raise ValueError(f"expected {self.actuated_dof_num} joint values, got {array.size}")
        return array

    def update_joint_states(self, joint_pos: Sequence[float], joint_vel: Sequence[float]) -> None:
        """Store measured joint positions and velocities."""
        n, a = self.generalized_coordinates_num, self.actuated_dof_num
        self.rbd_state[6 : 6 + a] = self._joint_vector(joint_pos)
        self.rbd_state[n + 6 : n + 6 + a] = self._joint_vector(joint_vel)

    def update_contact(self, contact_flags: Sequence[bool]) -> None:
        """Store the foot contact flags (LF, RF, LH, RH)."""
        self.contact_flags = tuple(bool(flag) for flag in contact_flags)

    def update_imu(
        self,
        quat,
        angular_vel_local,
        linear_accel_local,
        orientation_covariance,
        angular_vel_covariance,
        linear_accel_covariance,
    ) -> None:
        """Store IMU readings and set the base orientation and world angular velocity."""
        self.quat = np.asarray(quat, dtype=float).copy()
        self.angular_vel_local = np.asarray(angular_vel_local, dtype=float).copy()
        self.linear_accel_local = np.asarray(linear_accel_local, dtype=float).copy()
        self.orientation_covariance = np.asarray(orientation_covariance, dtype=float).reshape(3, 3).copy()
        self.angular_vel_covariance = np.asarray(angular_vel_covariance, dtype=float).reshape(3, 3).copy()
        self.linear_accel_covariance = np.asarray(linear_accel_covariance, dtype=float).reshape(3, 3).copy()

        measured_zyx = quat_to_zyx(self.quat)
        zyx = measured_zyx - self.zyx_offset
        derivatives = zyx_derivatives_from_local_angular_velocity(measured_zyx, self.angular_vel_local)
        angular_vel_global = global_angular_velocity_from_zyx_derivatives(zyx, derivatives)
        self._update_angular(zyx, angular_vel_global)

    @abstractmethod
    def update(self, time: float, period: float) -> np.ndarray:
        """Advance the estimate and return the rigid-body state."""

    def mode(self) -> int:
        """Mode number of the current contact pattern."""
        return stance_legs_to_mode(self.contact_flags)

    def publish(self, odom: Odometry) -> bool:
        """Hand ``odom`` to the sink at most at ``publish_rate``; return whether it was sent."""
        if self._last_publish + 1.0 / self.publish_rate < odom.stamp:
            self._last_publish = odom.stamp
            if self._sink is not None:
                self._sink(odom)
            return True
        return False

    def _update_angular(self, zyx, angular_vel) -> None:
        n = self.generalized_coordinates_num
        self.rbd_state[0:3] = zyx
        self.rbd_state[n : n + 3] = angular_vel

    def _update_linear(self, pos, linear_vel) -> None:
        n = self.generalized_coordinates_num
        self.rbd_state[3:6] = pos
        self.rbd_state[n + 3 : n + 6] = linear_vel


class FromTopicStateEstimate(StateEstimateBase):
    """Takes the base pose and twist straight from the latest received odometry."""

    def __init__(
        self,
        generalized_coordinates_num: int,
        actuated_dof_num: int,
        sink: Optional[Callable[[Odometry], None]] = None,
    ) -> None:
        super().__init__(generalized_coordinates_num, actuated_dof_num, sink)
        self._lock = threading.Lock()
        self._latest = Odometry()

    def on_odometry(self, msg: Odometry) -> None:
        """Keep ``msg`` as the latest odometry; safe to call from another thread."""
        with self._lock:
            self._latest = msg

    def update_imu(
        self,
        quat,
        angular_vel_local,
        linear_accel_local,
        orientation_covariance,
        angular_vel_covariance,
        linear_accel_covariance,
    ) -> None:
        """Ignore IMU data: the orientation comes from the odometry stream."""

    def update(self, time: float, period: float) -> np.ndarray:
        with self._lock:
            odom = self._latest
        self._update_angular(quat_to_zyx(odom.orientation), odom.angular_velocity)
        self._update_linear(odom.position, odom.linear_velocity)
        self.publish(odom)
        return self.rbd_state.copy()