"""Named handles that expose joint, contact and IMU data to controllers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Generic, Iterator, TypeVar


class HardwareInterfaceError(Exception):
    """Raised when a handle cannot be created or a resource cannot be found."""


@dataclass
class JointState:
    """Measured state of one joint."""

    position: float = 0.0
    velocity: float = 0.0
    effort: float = 0.0


@dataclass
class JointCommand:
    """Hybrid position/velocity/torque command of one joint."""

    pos_des: float = 0.0
    vel_des: float = 0.0
    kp: float = 0.0
    kd: float = 0.0
    ff: float = 0.0


def _zeros(count: int) -> list[float]:
    return [0.0] * count


@dataclass
class ImuData:
    """IMU readings; orientation is stored as (x, y, z, w), covariances row-major 3x3."""

    orientation: list[float] = field(default_factory=lambda: _zeros(4))
    orientation_covariance: list[float] = field(default_factory=lambda: _zeros(9))
    angular_velocity: list[float] = field(default_factory=lambda: _zeros(3))
    angular_velocity_covariance: list[float] = field(default_factory=lambda: _zeros(9))
    linear_acceleration: list[float] = field(default_factory=lambda: _zeros(3))
    linear_acceleration_covariance: list[float] = field(default_factory=lambda: _zeros(9))


class JointStateHandle:
    """Read access to the shared state of one joint."""

    def __init__(self, name: str, state: JointState) -> None:
        if state is None:
            raise HardwareInterfaceError(f"Cannot create handle '{name}'. State data is null.")
        self.name = name
        self.state = state

    @property
    def position(self) -> float:
        return self.state.position

    @property
    def velocity(self) -> float:
        return self.state.velocity

    @property
    def effort(self) -> float:
        return self.state.effort


class HybridJointHandle(JointStateHandle):
    """Joint handle that also writes a hybrid command into shared storage."""

    def __init__(self, joint: JointStateHandle, command: JointCommand) -> None:
        super().__init__(joint.name, joint.state)
        if command is None:
            raise HardwareInterfaceError(f"Cannot create handle '{joint.name}'. Command data is null.")
        self.command = command

    @property
    def position_desired(self) -> float:
        return self.command.pos_des

    @position_desired.setter
    def position_desired(self, value: float) -> None:
        self.command.pos_des = value

    @property
    def velocity_desired(self) -> float:
        return self.command.vel_des

    @velocity_desired.setter
    def velocity_desired(self, value: float) -> None:
        self.command.vel_des = value

    @property
    def kp(self) -> float:
        return self.command.kp

    @kp.setter
    def kp(self, value: float) -> None:
        self.command.kp = value

    @property
    def kd(self) -> float:
        return self.command.kd

    @kd.setter
    def kd(self, value: float) -> None:
        self.command.kd = value

    @property
    def feedforward(self) -> float:
        return self.command.ff

    @feedforward.setter
    def feedforward(self, value: float) -> None:
        self.command.ff = value

    def set_command(self, pos_des: float, vel_des: float, kp: float, kd: float, ff: float) -> None:
        """Write all five command fields at once."""
        self.command.pos_des = pos_des
        self.command.vel_des = vel_des
        self.command.kp = kp
        self.command.kd = kd
        self.command.ff = ff


class ContactSensorHandle:
    """Read access to a foot contact flag supplied by a callable."""

    def __init__(self, name: str, source: Callable[[], bool]) -> None:
        if source is None:
            raise HardwareInterfaceError(f"Cannot create handle '{name}'. isContact pointer is null.")
        self.name = name
        self._source = source

    @property
    def is_contact(self) -> bool:
        return bool(self._source())


class ImuSensorHandle:
    """Read access to shared IMU data."""

    def __init__(self, name: str, frame_id: str, data: ImuData) -> None:
        if data is None:
            raise HardwareInterfaceError(f"Cannot create handle '{name}'. IMU data is null.")
        self.name = name
        self.frame_id = frame_id
        self.data = data

    @property
    def orientation(self) -> list[float]:
        return self.data.orientation

    @property
    def orientation_covariance(self) -> list[float]:
        return self.data.orientation_covariance

    @property
    def angular_velocity(self) -> list[float]:
        return self.data.angular_velocity

    @property
    def angular_velocity_covariance(self) -> list[float]:
        return self.data.angular_velocity_covariance

    @property
    def linear_acceleration(self) -> list[float]:
        return self.data.linear_acceleration

    @property
    def linear_acceleration_covariance(self) -> list[float]:
        return self.data.linear_acceleration_covariance


H = TypeVar("H")


class HandleRegistry(Generic[H]):
    """Handles of one kind, looked up by name."""

    claims_resources = False

    def __init__(self) -> None:
        self._handles: dict[str, H] = {}
        self.claims: set[str] = set()

    def register(self, handle: H) -> None:
        """Add a handle, replacing any earlier one of the same name."""
        self._handles[handle.name] = handle

    def get(self, name: str) -> H:
        """Return the handle called ``name``; claim it if this registry claims resources."""
        try:
            handle = self._handles[name]
        except KeyError:
            raise HardwareInterfaceError(
                f"Could not find resource '{name}' in '{type(self).__name__}'."
            ) from None
        if self.claims_resources:
            self.claims.add(name)
        return handle

    def names(self) -> list[str]:
        """Names of all registered handles, sorted."""
        return sorted(self._handles)

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    def __iter__(self) -> Iterator[H]:
        return iter(self._handles[name] for name in self.names())


class JointStateInterface(HandleRegistry[JointStateHandle]):
    """Registry of joint state handles."""


class HybridJointInterface(HandleRegistry[HybridJointHandle]):
    """Registry of hybrid joint handles; looking one up claims it."""

    claims_resources = True


class ContactSensorInterface(HandleRegistry[ContactSensorHandle]):
    """Registry of contact sensor handles."""


class ImuSensorInterface(HandleRegistry[ImuSensorHandle]):
    """Registry of IMU handles."""