"""Simulated legged robot hardware with delayed hybrid joint commands, IMUs and foot contacts."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field
from numbers import Real
from typing import Callable, Iterable, Optional, Protocol, Sequence

import numpy as np

from .hardware_interface import (
    ContactSensorHandle,
    HybridJointHandle,
    ImuData,
    ImuSensorHandle,
    JointCommand,
    JointState,
    JointStateHandle,
)
from .hw_loop import LeggedHW
from .rotations import quat_to_rotation_matrix, shortest_angular_distance

_log = logging.getLogger(__name__)

GRAVITY = np.array([0.0, 0.0, -9.81])

_IMU_KEYS = (
    ("frame_id", "has no associated frame id."),
    ("orientation_covariance_diagonal", "has no associated orientation covariance diagonal."),
    ("angular_velocity_covariance", "has no associated angular velocity covariance."),
    ("linear_acceleration_covariance", "has no associated linear acceleration covariance."),
)


class _Link(Protocol):
    """A simulated body: world orientation (w, x, y, z) and body-frame rates."""

    orientation: Sequence[float]
    angular_velocity: Sequence[float]
    linear_acceleration: Sequence[float]


@dataclass
class StampedJointCommand:
    """A hybrid joint command together with the time it was issued."""

    stamp: float
    pos_des: float = 0.0
    vel_des: float = 0.0
    kp: float = 0.0
    kd: float = 0.0
    ff: float = 0.0


@dataclass
class SimJoint:
    """One joint of the simulator: the simulator writes position and force, the hardware writes the effort."""

    name: str
    joint_type: str = "revolute"
    position: float = 0.0
    force: float = 0.0
    effort_command: float = 0.0


@dataclass(frozen=True)
class ContactEvent:
    """A contact between two links reported by the simulator at a given time."""

    time: float
    link1: str
    link2: str


@dataclass
class _Joint:
    sim: SimJoint
    state: JointState = field(default_factory=JointState)
    command: JointCommand = field(default_factory=JointCommand)
    buffer: deque = field(default_factory=deque)
    effort_command: float = 0.0


@dataclass
class _Imu:
    link: _Link
    data: ImuData


def _nanos(value: float) -> int:
    return round(float(value) * 1e9)


def _diagonal(values: Sequence[float]) -> list[float]:
    a, b, c = values
    return [a, 0.0, 0.0, 0.0, b, 0.0, 0.0, 0.0, c]


def _covariance(name: str, key: str, values) -> list[float]:
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise ValueError(f"Imu {name}: '{key}' must be a list")
    if len(values) != 3:
        raise ValueError(f"Imu {name}: '{key}' must have three entries")
    if not all(isinstance(v, Real) and not isinstance(v, bool) for v in values):
        raise ValueError(f"Imu {name}: '{key}' must hold numbers")
    return [float(v) for v in values]


class LeggedHWSim(LeggedHW):
    """Hardware backed by a simulator; hybrid commands are applied as PD efforts after ``delay`` seconds."""

    def __init__(
        self,
        joints: Iterable[SimJoint],
        delay: float = 0.0,
        contact_source: Optional[Callable[[], Iterable[ContactEvent]]] = None,
    ) -> None:
        super().__init__()
        if delay < 0:
            raise ValueError("delay must not be negative")
        self.delay = float(delay)
        self._contact_source = contact_source if contact_source is not None else tuple
        self._joints: list[_Joint] = []
        self._imus: list[_Imu] = []
        self._contacts: dict[str, bool] = {}

        names: set[str] = set()
        for sim_joint in sorted(joints, key=lambda j: j.name):
            if sim_joint.name in names:
                raise ValueError(f"duplicate joint '{sim_joint.name}'")
            names.add(sim_joint.name)
            joint = _Joint(sim_joint)
            self._joints.append(joint)
            state_handle = JointStateHandle(sim_joint.name, joint.state)
            self.joint_state_interface.register(state_handle)
            self.hybrid_joint_interface.register(HybridJointHandle(state_handle, joint.command))

    def parse_imus(self, config: Mapping, links: Mapping[str, _Link]) -> None:
        """Register IMUs described by ``config`` (name -> settings) on links looked up by frame id."""
        if not isinstance(config, Mapping):
            raise TypeError("the imu configuration must be a mapping of names to settings")
        for name in sorted(config):
            settings = config[name]
            if not isinstance(settings, Mapping):
                raise TypeError(f"Imu {name}: settings must be a mapping")
            missing = next((message for key, message in _IMU_KEYS if key not in settings), None)
            if missing is not None:
                _log.error("Imu %s %s", name, missing)
                continue
            ori_cov = _covariance(name, "orientation_covariance_diagonal", settings["orientation_covariance_diagonal"])
            ang_cov = _covariance(name, "angular_velocity_covariance", settings["angular_velocity_covariance"])
            lin_cov = _covariance(name, "linear_acceleration_covariance", settings["linear_acceleration_covariance"])
            frame_id = str(settings["frame_id"])
            link = links.get(frame_id)
            if link is None:
                raise KeyError(f"Imu {name}: no link named '{frame_id}'")
            data = ImuData(
                orientation=[0.0] * 4,
                orientation_covariance=_diagonal(ori_cov),
                angular_velocity=[0.0] * 3,
                angular_velocity_covariance=_diagonal(ang_cov),
                linear_acceleration=[0.0] * 3,
                linear_acceleration_covariance=_diagonal(lin_cov),
            )
            self._imus.append(_Imu(link, data))
            self.imu_sensor_interface.register(ImuSensorHandle(name, frame_id, data))

    def parse_contacts(self, names: Sequence[str]) -> None:
        """Register a contact sensor for each link name."""
        if isinstance(names, (str, bytes)) or not isinstance(names, Sequence):
            raise TypeError("contact names must be a list")
        for name in names:
            name = str(name)
            self._contacts.setdefault(name, False)
            self.contact_sensor_interface.register(
                ContactSensorHandle(name, lambda key=name: self._contacts[key])
            )

    def read_sim(self, time: float, period: float, contacts: Iterable[ContactEvent] = ()) -> None:
        """Pull joint, IMU and contact data from the simulator and reset the hybrid commands."""
        if period <= 0:
            raise ValueError("period must be positive")
        first_step = _nanos(time) == _nanos(period)
        for joint in self._joints:
            position = joint.sim.position
            state = joint.state
            state.velocity = 0.0 if first_step else (position - state.position) / period
            if joint.sim.joint_type == "prismatic":
                state.position = position
            else:
                state.position += shortest_angular_distance(state.position, position)
            state.effort = joint.sim.force

        for imu in self._imus:
            quat = np.asarray(imu.link.orientation, dtype=float).reshape(4)
            w, x, y, z = quat
            imu.data.orientation[:] = [x, y, z, w]
            imu.data.angular_velocity[:] = [float(v) for v in imu.link.angular_velocity]
            rotation = quat_to_rotation_matrix(quat)
            accel = np.asarray(imu.link.linear_acceleration, dtype=float).reshape(3) - rotation.T @ GRAVITY
            imu.data.linear_acceleration[:] = [float(v) for v in accel]

        for name in self._contacts:
            self._contacts[name] = False
        stamp = _nanos(time) - _nanos(period)
        for contact in contacts:
            if _nanos(contact.time) != stamp:
                continue
            for link in (contact.link1, contact.link2):
                if link in self._contacts:
                    self._contacts[link] = True

        for joint in self._joints:
            joint.effort_command = 0.0
            command = joint.command
            command.pos_des = joint.state.position
            command.vel_des = joint.state.velocity
            command.kp = 0.0
            command.kd = 0.0
            command.ff = 0.0

    def write_sim(self, time: float, period: float) -> None:
        """Queue the current hybrid commands and apply the one that is ``delay`` old as effort."""
        reset = _nanos(time) == _nanos(period)
        for joint in self._joints:
            buffer = joint.buffer
            if reset:
                buffer.clear()
            while buffer and buffer[-1].stamp + self.delay < time:
                buffer.pop()
            c = joint.command
            buffer.appendleft(StampedJointCommand(time, c.pos_des, c.vel_des, c.kp, c.kd, c.ff))
            cmd = buffer[-1]
            state = joint.state
            joint.effort_command = (
                cmd.kp * (cmd.pos_des - state.position) + cmd.kd * (cmd.vel_des - state.velocity) + cmd.ff
            )
            joint.sim.effort_command = joint.effort_command

    def read(self, time: float, period: float) -> None:
        self.read_sim(time, period, self._contact_source())

    def write(self, time: float, period: float) -> None:
        self.write_sim(time, period)