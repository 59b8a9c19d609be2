"""Hardware for quadrupeds driven over the low-level UDP protocol."""

from __future__ import annotations

import logging
import socket
import struct
from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol

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
from .unitree_protocol import (
    LOW_LEVEL,
    Leg,
    LeggedType,
    LowCmd,
    LowState,
    SdkVersion,
    parse_wireless_remote,
)

_log = logging.getLogger(__name__)

CONTACT_SENSOR_NAMES = ("RF_FOOT", "LF_FOOT", "RH_FOOT", "LH_FOOT")
MOTOR_USED = 12
IMU_NAME = "base_imu"
PUBLISH_PERIOD = 1.0 / 50.0
FEEDBACK_KD = 3.0

UDP_SERVER_IP = "192.168.123.10"
UDP_SERVER_PORT = 8007
_LOCAL_PORT = {SdkVersion.V3_3_1: 8080, SdkVersion.V3_8_0: 8090}

_ROBOT_TYPES = {
    SdkVersion.V3_3_1: {"a1": LeggedType.A1, "aliengo": LeggedType.ALIENGO},
    SdkVersion.V3_8_0: {"go1": LeggedType.GO1},
}

_LEG_KEYS = (("RF", Leg.FR), ("LF", Leg.FL), ("RH", Leg.RR), ("LH", Leg.RL))
_JOINT_KEYS = (("HAA", 0), ("HFE", 1), ("KFE", 2))


class UnitreeError(RuntimeError):
    """Raised when the hardware cannot be set up or used."""


class Transport(Protocol):
    """Moves raw frames to and from the robot."""

    def send(self, data: bytes) -> object: ...

    def receive(self) -> Optional[bytes]: ...


class Safety(Protocol):
    """Limits applied to a command before it is sent."""

    def position_limit(self, cmd: LowCmd) -> object: ...

    def power_protect(self, cmd: LowCmd, state: LowState, limit: int) -> object: ...


class UdpTransport:
    """Non-blocking UDP link that remembers the latest frame of the expected length."""

    def __init__(self, local_port: int, target_ip: str, target_port: int, recv_length: int) -> None:
        self._target = (target_ip, target_port)
        self._recv_length = recv_length
        self._last: Optional[bytes] = None
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            self._sock.bind(("", local_port))
            self._sock.setblocking(False)
        except OSError:
            self._sock.close()
            raise

    @property
    def local_address(self) -> tuple:
        return self._sock.getsockname()

    def send(self, data: bytes) -> int:
        return self._sock.sendto(bytes(data), self._target)

    def receive(self) -> Optional[bytes]:
        """Drain pending datagrams and return the latest complete frame seen so far."""
        while True:
            try:
                packet = self._sock.recv(65535)
            except (BlockingIOError, InterruptedError):
                break
            if len(packet) == self._recv_length:
                self._last = packet
        return self._last

    def close(self) -> None:
        self._sock.close()

    def __enter__(self) -> "UdpTransport":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


@dataclass
class JoyMessage:
    """Joystick state packed like a common gamepad: four axes and ten buttons."""

    axes: list[float] = field(default_factory=list)
    buttons: list[int] = field(default_factory=list)


@dataclass
class _MotorData:
    state: JointState = field(default_factory=JointState)
    command: JointCommand = field(default_factory=JointCommand)


def _f32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", float(value)))[0]


def joint_index(name: str) -> Optional[int]:
    """Motor index of a joint named by leg (RF, LF, RH, LH) and joint (HAA, HFE, KFE), or None."""
    leg = next((leg for key, leg in _LEG_KEYS if key in name), None)
    if leg is None:
        return None
    joint = next((index for key, index in _JOINT_KEYS if key in name), None)
    if joint is None:
        return None
    return int(leg) * 3 + joint


class UnitreeHW(LeggedHW):
    """Reads low-level state frames into the interfaces and sends hybrid joint commands back."""

    def __init__(
        self,
        version=SdkVersion.V3_8_0,
        transport: Optional[Transport] = None,
        safety_factory: Optional[Callable[[LeggedType], Safety]] = None,
        joy_sink: Optional[Callable[[JoyMessage], None]] = None,
        contact_sink: Optional[Callable[[list], None]] = None,
    ) -> None:
        super().__init__()
        self.version = SdkVersion(version)
        self._transport = transport
        self._safety_factory = safety_factory
        self._safety: Optional[Safety] = None
        self._joy_sink = joy_sink
        self._contact_sink = contact_sink
        self._initialised = False

        self.motors = [_MotorData() for _ in range(MOTOR_USED)]
        self.imu_data = ImuData(
            orientation=[0.0] * 4,
            orientation_covariance=[0.0] * 9,
            angular_velocity=[0.0] * 3,
            angular_velocity_covariance=[0.0] * 9,
            linear_acceleration=[0.0] * 3,
            linear_acceleration_covariance=[0.0] * 9,
        )
        self.contact_state = [False] * len(CONTACT_SENSOR_NAMES)
        self._commands: dict[str, JointCommand] = {}

        self.legged_type: Optional[LeggedType] = None
        self.power_limit = 0
        self.contact_threshold = 0
        self.low_state = LowState()
        self.low_cmd = LowCmd(level_flag=LOW_LEVEL)
        self._last_joy_pub = 0.0
        self._last_contact_pub = 0.0

    def init(self, urdf: str, robot_type: str, power_limit: int, contact_threshold: int) -> None:
        """Load the robot description, register interfaces and open the link to the robot."""
        self.load_urdf(urdf)
        self.power_limit = int(power_limit)

        legged_type = _ROBOT_TYPES[self.version].get(robot_type)
        if legged_type is None:
            raise UnitreeError(f"Unknown robot type: {robot_type}")

        self._setup_joints()
        self._setup_imu()
        self._setup_contact_sensor(contact_threshold)

        if self._transport is None:
            self._transport = UdpTransport(
                _LOCAL_PORT[self.version],
                UDP_SERVER_IP,
                UDP_SERVER_PORT,
                len(LowState().pack(self.version)),
            )
        self.low_cmd = LowCmd(level_flag=LOW_LEVEL)

        self.legged_type = legged_type
        if self._safety_factory is not None:
            self._safety = self._safety_factory(legged_type)
        self._initialised = True

    def _setup_joints(self) -> None:
        for name in self.joints:
            index = joint_index(name)
            if index is None:
                continue
            motor = self.motors[index]
            state_handle = JointStateHandle(name, motor.state)
            self.joint_state_interface.register(state_handle)
            self.hybrid_joint_interface.register(HybridJointHandle(state_handle, motor.command))
            self._commands[name] = motor.command

    def _setup_imu(self) -> None:
        self.imu_sensor_interface.register(ImuSensorHandle(IMU_NAME, IMU_NAME, self.imu_data))
        for i in (0, 4, 8):
            self.imu_data.orientation_covariance[i] = 0.0012
            self.imu_data.angular_velocity_covariance[i] = 0.0004

    def _setup_contact_sensor(self, contact_threshold: int) -> None:
        self.contact_threshold = int(contact_threshold)
        for i, name in enumerate(CONTACT_SENSOR_NAMES):
            self.contact_sensor_interface.register(
                ContactSensorHandle(name, lambda index=i: self.contact_state[index])
            )

    def _require_init(self) -> Transport:
        if not self._initialised or self._transport is None:
            raise UnitreeError("the hardware is not initialised")
        return self._transport

    def read(self, time: float, period: float) -> None:
        """Receive the latest state frame and expose it through the interfaces."""
        transport = self._require_init()
        data = transport.receive()
        if data is not None:
            self.low_state = LowState.unpack(data, self.version)
        state = self.low_state

        for motor, feedback in zip(self.motors, state.motor_state):
            motor.state.position = feedback.q
            motor.state.velocity = feedback.dq
            motor.state.effort = feedback.tau_est

        w, x, y, z = state.imu.quaternion
        self.imu_data.orientation[:] = [x, y, z, w]
        self.imu_data.angular_velocity[:] = list(state.imu.gyroscope)
        self.imu_data.linear_acceleration[:] = list(state.imu.accelerometer)

        for i in range(len(CONTACT_SENSOR_NAMES)):
            self.contact_state[i] = state.foot_force[i] > self.contact_threshold

        # Without a controller these stay safe: no feedforward, no velocity target, some damping.
        for name in self.hybrid_joint_interface.names():
            command = self._commands[name]
            command.ff = 0.0
            command.vel_des = 0.0
            command.kd = FEEDBACK_KD

        self.update_joystick(time)
        self.update_contact(time)

    def write(self, time: float, period: float) -> None:
        """Copy the hybrid commands into a command frame, apply the safety limits and send it."""
        transport = self._require_init()
        for motor, cmd in zip(self.motors, self.low_cmd.motor_cmd):
            command = motor.command
            cmd.q = _f32(command.pos_des)
            cmd.dq = _f32(command.vel_des)
            cmd.kp = _f32(command.kp)
            cmd.kd = _f32(command.kd)
            cmd.tau = _f32(command.ff)
        if self._safety is not None:
            self._safety.position_limit(self.low_cmd)
            self._safety.power_protect(self.low_cmd, self.low_state, self.power_limit)
        transport.send(self.low_cmd.pack(self.version))

    def update_joystick(self, time: float) -> Optional[JoyMessage]:
        """Publish the wireless remote at most 50 times a second; return what was published."""
        if time - self._last_joy_pub < PUBLISH_PERIOD:
            return None
        self._last_joy_pub = time
        rocker = parse_wireless_remote(self.low_state.wireless_remote)
        btn = rocker.btn
        message = JoyMessage(
            axes=[-rocker.lx, rocker.ly, -rocker.rx, rocker.ry],
            buttons=[
                int(b)
                for b in (btn.x, btn.a, btn.b, btn.y, btn.l1, btn.r1, btn.l2, btn.r2, btn.select, btn.start)
            ],
        )
        if self._joy_sink is not None:
            self._joy_sink(message)
        return message

    def update_contact(self, time: float) -> Optional[list]:
        """Publish the raw foot forces at most 50 times a second; return what was published."""
        if time - self._last_contact_pub < PUBLISH_PERIOD:
            return None
        self._last_contact_pub = time
        forces = [int(f) for f in self.low_state.foot_force[: len(CONTACT_SENSOR_NAMES)]]
        if self._contact_sink is not None:
            self._contact_sink(forces)
        return forces