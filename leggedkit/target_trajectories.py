"""Turn goal poses and velocity commands into target trajectories for the MPC."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import numpy as np

from .info_config import load_info, lookup
from .rotations import euler_angles_xyz, quat_to_rotation_matrix, rotation_matrix_from_zyx

_log = logging.getLogger(__name__)

_BASE_POSE = slice(6, 12)
_JOINT_COUNT = 12


@dataclass(eq=False)
class SystemObservation:
    """Measured time, centroidal state, input and contact mode."""

    time: float = 0.0
    state: np.ndarray = field(default_factory=lambda: np.zeros(0))
    input: np.ndarray = field(default_factory=lambda: np.zeros(0))
    mode: int = 0


@dataclass(eq=False)
class TargetTrajectories:
    """Desired states and inputs at given times."""

    time_trajectory: list[float]
    state_trajectory: list[np.ndarray]
    input_trajectory: list[np.ndarray]


@dataclass(eq=False)
class ReferenceSettings:
    """Values that shape the generated trajectories."""

    com_height: float
    default_joint_state: np.ndarray
    target_rotation_velocity: float
    target_displacement_velocity: float
    time_to_target: float

    def __post_init__(self) -> None:
        self.default_joint_state = np.asarray(self.default_joint_state, dtype=float).reshape(-1).copy()
        if self.target_rotation_velocity <= 0 or self.target_displacement_velocity <= 0:
            raise ValueError("target velocities must be positive")


def _scalar(tree: dict, key: str) -> float:
    value = lookup(tree, key)
    if isinstance(value, dict):
        raise ValueError(f"'{key}' holds a block, not a number")
    return float(value)


def _column_vector(tree: dict, key: str, size: int) -> np.ndarray:
    vector = np.zeros(size)
    try:
        node = lookup(tree, key)
    except KeyError:
        node = {}
    block = node if isinstance(node, dict) else {}
    missing = False
    for row in range(size):
        entry = block.get(f"({row},0)")
        if entry is None or isinstance(entry, dict):
            missing = True
            continue
        vector[row] = float(entry)
    if missing:
        _log.warning("Failed to load every entry of '%s'; missing entries are zero", key)
    return vector


def load_reference_settings(reference_file, task_file) -> ReferenceSettings:
    """Read the reference and task INFO files; a missing scalar raises KeyError."""
    reference = load_info(reference_file)
    task = load_info(task_file)
    return ReferenceSettings(
        com_height=_scalar(reference, "comHeight"),
        default_joint_state=_column_vector(reference, "defaultJointState", _JOINT_COUNT),
        target_rotation_velocity=_scalar(reference, "targetRotationVelocity"),
        target_displacement_velocity=_scalar(reference, "targetDisplacementVelocity"),
        time_to_target=_scalar(task, "mpc.timeHorizon"),
    )


def estimate_time_to_target(displacement: Sequence[float], settings: ReferenceSettings) -> float:
    """Time to cover a base displacement (x, y, z, yaw, ...) at the target velocities."""
    d = np.asarray(displacement, dtype=float).reshape(-1)
    if d.size < 4:
        raise ValueError("displacement needs at least x, y, z and yaw")
    rotation_time = abs(d[3]) / settings.target_rotation_velocity
    displacement_time = float(np.hypot(d[0], d[1])) / settings.target_displacement_velocity
    return max(rotation_time, displacement_time)


def _pose(values: Sequence[float]) -> np.ndarray:
    pose = np.asarray(values, dtype=float).reshape(-1)
    if pose.shape != (6,):
        raise ValueError("a base pose has six entries")
    return pose


def _current_pose(observation: SystemObservation) -> np.ndarray:
    state = np.asarray(observation.state, dtype=float).reshape(-1)
    if state.size < _BASE_POSE.stop:
        raise ValueError("observation state is too short to hold a base pose")
    return state[_BASE_POSE].copy()


def target_pose_to_target_trajectories(
    target_pose: Sequence[float],
    observation: SystemObservation,
    reaching_time: float,
    settings: ReferenceSettings,
) -> TargetTrajectories:
    """Trajectory from the current pose, held level at COM height, to ``target_pose``."""
    target = _pose(target_pose)
    current = _current_pose(observation)
    current[2] = settings.com_height
    current[4] = 0.0
    current[5] = 0.0

    state_size = np.asarray(observation.state).size
    states = [np.concatenate([np.zeros(6), pose, settings.default_joint_state]) for pose in (current, target)]
    if states[0].size != state_size:
        raise ValueError(f"trajectory state has {states[0].size} entries, observation has {state_size}")
    input_size = np.asarray(observation.input).size
    inputs = [np.zeros(input_size), np.zeros(input_size)]
    return TargetTrajectories([float(observation.time), float(reaching_time)], states, inputs)


def goal_to_target_trajectories(
    goal: Sequence[float], observation: SystemObservation, settings: ReferenceSettings
) -> TargetTrajectories:
    """Trajectory to a goal pose (x, y, z, yaw, pitch, roll); height and tilt are fixed."""
    g = _pose(goal)
    target = np.array([g[0], g[1], settings.com_height, g[3], 0.0, 0.0])
    reaching_time = observation.time + estimate_time_to_target(target - _current_pose(observation), settings)
    return target_pose_to_target_trajectories(target, observation, reaching_time, settings)


def cmd_vel_to_target_trajectories(
    cmd_vel: Sequence[float], observation: SystemObservation, settings: ReferenceSettings
) -> TargetTrajectories:
    """Trajectory that follows a body velocity command (vx, vy, vz, yaw rate) over the horizon."""
    cmd = np.asarray(cmd_vel, dtype=float).reshape(-1)
    if cmd.shape != (4,):
        raise ValueError("a velocity command has four entries")
    current = _current_pose(observation)
    cmd_vel_rot = rotation_matrix_from_zyx(current[3:6]) @ cmd[0:3]
    horizon = settings.time_to_target
    target = np.array(
        [
            current[0] + cmd_vel_rot[0] * horizon,
            current[1] + cmd_vel_rot[1] * horizon,
            settings.com_height,
            current[3] + cmd[3] * horizon,
            0.0,
            0.0,
        ]
    )
    trajectories = target_pose_to_target_trajectories(target, observation, observation.time + horizon, settings)
    for state in trajectories.state_trajectory:
        state[0:3] = cmd_vel_rot
    return trajectories


CmdToTargetTrajectories = Callable[[np.ndarray, SystemObservation, ReferenceSettings], TargetTrajectories]
GoalTransform = Callable[[Sequence[float], Sequence[float]], tuple]
"""Maps a goal (position, quaternion w-x-y-z) into the odom frame; raises LookupError on failure."""


class TargetTrajectoriesPublisher:
    """Turns incoming goals and velocity commands into published target trajectories."""

    def __init__(
        self,
        settings: ReferenceSettings,
        publish: Callable[[TargetTrajectories], None],
        transform: Optional[GoalTransform] = None,
        goal_to_target: CmdToTargetTrajectories = goal_to_target_trajectories,
        cmd_vel_to_target: CmdToTargetTrajectories = cmd_vel_to_target_trajectories,
    ) -> None:
        self.settings = settings
        self._publish = publish
        self._transform = transform
        self._goal_to_target = goal_to_target
        self._cmd_vel_to_target = cmd_vel_to_target
        self._lock = threading.Lock()
        self._observation = SystemObservation()

    def _latest(self) -> SystemObservation:
        with self._lock:
            return self._observation

    def on_observation(self, observation: SystemObservation) -> None:
        """Keep the latest observation; safe to call from another thread."""
        with self._lock:
            self._observation = observation

    def on_goal(self, position: Sequence[float], orientation: Sequence[float]) -> Optional[TargetTrajectories]:
        """Publish a trajectory to a goal pose; return it, or None if nothing was sent."""
        observation = self._latest()
        if observation.time == 0.0:
            return None
        if self._transform is not None:
            try:
                position, orientation = self._transform(position, orientation)
            except LookupError as exc:
                _log.warning("Failure %s", exc)
                return None
        cmd_goal = np.zeros(6)
        cmd_goal[0:3] = np.asarray(position, dtype=float).reshape(3)
        angles = euler_angles_xyz(quat_to_rotation_matrix(orientation))
        cmd_goal[3] = angles[2]
        cmd_goal[4] = angles[1]
        cmd_goal[5] = angles[0]
        trajectories = self._goal_to_target(cmd_goal, observation, self.settings)
        self._publish(trajectories)
        return trajectories

    def on_cmd_vel(self, linear: Sequence[float], angular: Sequence[float]) -> Optional[TargetTrajectories]:
        """Publish a trajectory for a twist command; return it, or None if nothing was sent."""
        observation = self._latest()
        if observation.time == 0.0:
            return None
        lin = np.asarray(linear, dtype=float).reshape(3)
        ang = np.asarray(angular, dtype=float).reshape(3)
        cmd_vel = np.array([lin[0], lin[1], lin[2], ang[2]])
        trajectories = self._cmd_vel_to_target(cmd_vel, observation, self.settings)
        self._publish(trajectories)
        return trajectories