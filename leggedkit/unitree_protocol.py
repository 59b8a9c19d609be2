"""Binary layouts of the low-level state and command frames and of the wireless remote block.

Two protocol revisions are supported. All frames are packed without padding in
little-endian byte order; floating point fields travel as 32-bit floats.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass, field, fields
from enum import Enum, IntEnum
from typing import Sequence

LOW_LEVEL = 0xFF
TRIGGER_LEVEL = 0xF0
POS_STOP_F = struct.unpack("<f", struct.pack("<f", 2.146e9))[0]
VEL_STOP_F = 16000.0

MOTOR_COUNT = 20
FOOT_COUNT = 4
WIRELESS_REMOTE_LENGTH = 40


class LeggedType(Enum):
    """Robot models known to the protocol."""

    ALIENGO = "aliengo"
    A1 = "a1"
    GO1 = "go1"
    B1 = "b1"


class SdkVersion(Enum):
    """Protocol revision of the frames."""

    V3_3_1 = "3.3.1"
    V3_8_0 = "3.8.0"

    @property
    def high_level(self) -> int:
        """Level flag that marks high-level frames in this revision."""
        return 0x00 if self is SdkVersion.V3_3_1 else 0xEE

    @property
    def legged_types(self) -> tuple[LeggedType, ...]:
        """Robot models this revision can drive."""
        if self is SdkVersion.V3_3_1:
            return (LeggedType.ALIENGO, LeggedType.A1)
        return (LeggedType.ALIENGO, LeggedType.A1, LeggedType.GO1, LeggedType.B1)


class Leg(IntEnum):
    """Leg index; joint ``j`` of leg ``l`` has motor index ``3 * l + j``."""

    FR = 0
    FL = 1
    RR = 2
    RL = 3


def _fixed(values: Sequence, count: int, name: str) -> list:
    items = list(values)
    if len(items) != count:
        raise ValueError(f"'{name}' needs {count} entries, got {len(items)}")
    return items


def _raw(value, count: int, name: str) -> bytes:
    data = bytes(value)
    if len(data) != count:
        raise ValueError(f"'{name}' needs {count} bytes, got {len(data)}")
    return data


class _Reader:
    def __init__(self, data) -> None:
        self._view = memoryview(bytes(data))
        self._offset = 0

    def take(self, layout: struct.Struct) -> tuple:
        values = layout.unpack_from(self._view, self._offset)
        self._offset += layout.size
        return values


_IMU = struct.Struct("<4f3f3f3fb")
_MOTOR_STATE = struct.Struct("<B7fb2I")
_MOTOR_CMD = struct.Struct("<B5f3I")
_BMS_STATE = struct.Struct("<4BiH2b2b10H")
_BMS_CMD = struct.Struct("<4B")
_LED = struct.Struct("<3B")
_HEADER_331 = struct.Struct("<BHHIB")
_HEADER_380 = struct.Struct("<2sBB2I2IH")
_STATE_TAIL = struct.Struct(f"<{FOOT_COUNT}h{FOOT_COUNT}hI{WIRELESS_REMOTE_LENGTH}sII")
_CMD_TAIL = struct.Struct(f"<{WIRELESS_REMOTE_LENGTH}sII")
_ROCKER = struct.Struct("<2sH5f16s")


@dataclass
class Imu:
    """IMU block; the quaternion is ordered (w, x, y, z)."""

    quaternion: list[float] = field(default_factory=lambda: [0.0] * 4)
    gyroscope: list[float] = field(default_factory=lambda: [0.0] * 3)
    accelerometer: list[float] = field(default_factory=lambda: [0.0] * 3)
    rpy: list[float] = field(default_factory=lambda: [0.0] * 3)
    temperature: int = 0

    def _pack(self) -> bytes:
        return _IMU.pack(
            *_fixed(self.quaternion, 4, "quaternion"),
            *_fixed(self.gyroscope, 3, "gyroscope"),
            *_fixed(self.accelerometer, 3, "accelerometer"),
            *_fixed(self.rpy, 3, "rpy"),
            self.temperature,
        )

    @classmethod
    def _unpack(cls, reader: _Reader) -> "Imu":
        v = reader.take(_IMU)
        return cls(list(v[0:4]), list(v[4:7]), list(v[7:10]), list(v[10:13]), v[13])


@dataclass
class MotorState:
    """Feedback of one motor."""

    mode: int = 0
    q: float = 0.0
    dq: float = 0.0
    ddq: float = 0.0
    tau_est: float = 0.0
    q_raw: float = 0.0
    dq_raw: float = 0.0
    ddq_raw: float = 0.0
    temperature: int = 0
    reserve: list[int] = field(default_factory=lambda: [0, 0])

    def _pack(self) -> bytes:
        return _MOTOR_STATE.pack(
            self.mode,
            self.q,
            self.dq,
            self.ddq,
            self.tau_est,
            self.q_raw,
            self.dq_raw,
            self.ddq_raw,
            self.temperature,
            *_fixed(self.reserve, 2, "reserve"),
        )

    @classmethod
    def _unpack(cls, reader: _Reader) -> "MotorState":
        v = reader.take(_MOTOR_STATE)
        return cls(*v[0:9], reserve=list(v[9:11]))


@dataclass
class MotorCmd:
    """Command of one motor."""

    mode: int = 0
    q: float = 0.0
    dq: float = 0.0
    tau: float = 0.0
    kp: float = 0.0
    kd: float = 0.0
    reserve: list[int] = field(default_factory=lambda: [0, 0, 0])

    def _pack(self) -> bytes:
        return _MOTOR_CMD.pack(
            self.mode, self.q, self.dq, self.tau, self.kp, self.kd, *_fixed(self.reserve, 3, "reserve")
        )

    @classmethod
    def _unpack(cls, reader: _Reader) -> "MotorCmd":
        v = reader.take(_MOTOR_CMD)
        return cls(*v[0:6], reserve=list(v[6:9]))


@dataclass
class BmsState:
    """Battery feedback (newer revision only)."""

    version_h: int = 0
    version_l: int = 0
    bms_status: int = 0
    soc: int = 0
    current: int = 0
    cycle: int = 0
    bq_ntc: list[int] = field(default_factory=lambda: [0, 0])
    mcu_ntc: list[int] = field(default_factory=lambda: [0, 0])
    cell_vol: list[int] = field(default_factory=lambda: [0] * 10)

    def _pack(self) -> bytes:
        return _BMS_STATE.pack(
            self.version_h,
            self.version_l,
            self.bms_status,
            self.soc,
            self.current,
            self.cycle,
            *_fixed(self.bq_ntc, 2, "bq_ntc"),
            *_fixed(self.mcu_ntc, 2, "mcu_ntc"),
            *_fixed(self.cell_vol, 10, "cell_vol"),
        )

    @classmethod
    def _unpack(cls, reader: _Reader) -> "BmsState":
        v = reader.take(_BMS_STATE)
        return cls(*v[0:6], bq_ntc=list(v[6:8]), mcu_ntc=list(v[8:10]), cell_vol=list(v[10:20]))


@dataclass
class BmsCmd:
    """Battery command (newer revision only); ``off`` is 0xA5 to switch off."""

    off: int = 0
    reserve: list[int] = field(default_factory=lambda: [0, 0, 0])

    def _pack(self) -> bytes:
        return _BMS_CMD.pack(self.off, *_fixed(self.reserve, 3, "reserve"))

    @classmethod
    def _unpack(cls, reader: _Reader) -> "BmsCmd":
        v = reader.take(_BMS_CMD)
        return cls(v[0], list(v[1:4]))


@dataclass
class _Frame:
    """Header fields; each revision carries only its own subset."""

    level_flag: int = LOW_LEVEL
    head: bytes = bytes(2)
    frame_reserve: int = 0
    comm_version: int = 0
    robot_id: int = 0
    sn: list[int] = field(default_factory=lambda: [0, 0])
    version: list[int] = field(default_factory=lambda: [0, 0])
    band_width: int = 0

    def _pack_header(self, version: SdkVersion) -> bytes:
        sn = _fixed(self.sn, 2, "sn")
        if version is SdkVersion.V3_3_1:
            return _HEADER_331.pack(self.level_flag, self.comm_version, self.robot_id, sn[0], self.band_width)
        return _HEADER_380.pack(
            _raw(self.head, 2, "head"),
            self.level_flag,
            self.frame_reserve,
            *sn,
            *_fixed(self.version, 2, "version"),
            self.band_width,
        )


def _unpack_header(reader: _Reader, version: SdkVersion) -> dict:
    if version is SdkVersion.V3_3_1:
        level, comm, robot, sn, band = reader.take(_HEADER_331)
        return {"level_flag": level, "comm_version": comm, "robot_id": robot, "sn": [sn, 0], "band_width": band}
    head, level, frame_reserve, sn0, sn1, v0, v1, band = reader.take(_HEADER_380)
    return {
        "head": head,
        "level_flag": level,
        "frame_reserve": frame_reserve,
        "sn": [sn0, sn1],
        "version": [v0, v1],
        "band_width": band,
    }


def _check_size(data, expected: int, name: str) -> None:
    if len(data) != expected:
        raise ValueError(f"{name} frame needs {expected} bytes, got {len(data)}")


_LOW_STATE_SIZE = {
    SdkVersion.V3_3_1: _HEADER_331.size + _IMU.size + MOTOR_COUNT * _MOTOR_STATE.size + _STATE_TAIL.size,
    SdkVersion.V3_8_0: _HEADER_380.size
    + _IMU.size
    + MOTOR_COUNT * _MOTOR_STATE.size
    + _BMS_STATE.size
    + _STATE_TAIL.size,
}

_LOW_CMD_SIZE = {
    SdkVersion.V3_3_1: _HEADER_331.size + MOTOR_COUNT * _MOTOR_CMD.size + FOOT_COUNT * _LED.size + _CMD_TAIL.size,
    SdkVersion.V3_8_0: _HEADER_380.size + MOTOR_COUNT * _MOTOR_CMD.size + _BMS_CMD.size + _CMD_TAIL.size,
}


@dataclass
class LowState(_Frame):
    """Low-level feedback frame.

    The older revision carries ``comm_version``, ``robot_id`` and the first serial
    word; the newer one carries ``head``, ``frame_reserve``, both serial words,
    ``version`` and ``bms``. Fields a revision lacks are neither written nor read.
    """

    imu: Imu = field(default_factory=Imu)
    motor_state: list[MotorState] = field(default_factory=lambda: [MotorState() for _ in range(MOTOR_COUNT)])
    bms: BmsState = field(default_factory=BmsState)
    foot_force: list[int] = field(default_factory=lambda: [0] * FOOT_COUNT)
    foot_force_est: list[int] = field(default_factory=lambda: [0] * FOOT_COUNT)
    tick: int = 0
    wireless_remote: bytes = bytes(WIRELESS_REMOTE_LENGTH)
    reserve: int = 0
    crc: int = 0

    @classmethod
    def unpack(cls, data, version) -> "LowState":
        """Decode a frame of the given revision; the length must match exactly."""
        version = SdkVersion(version)
        _check_size(data, _LOW_STATE_SIZE[version], "LowState")
        reader = _Reader(data)
        header = _unpack_header(reader, version)
        imu = Imu._unpack(reader)
        motors = [MotorState._unpack(reader) for _ in range(MOTOR_COUNT)]
        bms = BmsState._unpack(reader) if version is SdkVersion.V3_8_0 else BmsState()
        tail = reader.take(_STATE_TAIL)
        return cls(
            **header,
            imu=imu,
            motor_state=motors,
            bms=bms,
            foot_force=list(tail[0:4]),
            foot_force_est=list(tail[4:8]),
            tick=tail[8],
            wireless_remote=tail[9],
            reserve=tail[10],
            crc=tail[11],
        )

    def pack(self, version) -> bytes:
        """Encode the frame in the given revision."""
        version = SdkVersion(version)
        try:
            parts = [self._pack_header(version), self.imu._pack()]
            parts.extend(m._pack() for m in _fixed(self.motor_state, MOTOR_COUNT, "motor_state"))
            if version is SdkVersion.V3_8_0:
                parts.append(self.bms._pack())
            parts.append(
                _STATE_TAIL.pack(
                    *_fixed(self.foot_force, FOOT_COUNT, "foot_force"),
                    *_fixed(self.foot_force_est, FOOT_COUNT, "foot_force_est"),
                    self.tick,
                    _raw(self.wireless_remote, WIRELESS_REMOTE_LENGTH, "wireless_remote"),
                    self.reserve,
                    self.crc,
                )
            )
        except struct.error as exc:
            raise ValueError(str(exc)) from None
        return b"".join(parts)


@dataclass
class LowCmd(_Frame):
    """Low-level command frame; ``led`` belongs to the older revision, ``bms`` to the newer."""

    motor_cmd: list[MotorCmd] = field(default_factory=lambda: [MotorCmd() for _ in range(MOTOR_COUNT)])
    led: list[tuple[int, int, int]] = field(default_factory=lambda: [(0, 0, 0)] * FOOT_COUNT)
    bms: BmsCmd = field(default_factory=BmsCmd)
    wireless_remote: bytes = bytes(WIRELESS_REMOTE_LENGTH)
    reserve: int = 0
    crc: int = 0

    @classmethod
    def unpack(cls, data, version) -> "LowCmd":
        """Decode a frame of the given revision; the length must match exactly."""
        version = SdkVersion(version)
        _check_size(data, _LOW_CMD_SIZE[version], "LowCmd")
        reader = _Reader(data)
        header = _unpack_header(reader, version)
        motors = [MotorCmd._unpack(reader) for _ in range(MOTOR_COUNT)]
        if version is SdkVersion.V3_3_1:
            leds = [reader.take(_LED) for _ in range(FOOT_COUNT)]
            bms = BmsCmd()
        else:
            leds = [(0, 0, 0)] * FOOT_COUNT
            bms = BmsCmd._unpack(reader)
        remote, reserve, crc = reader.take(_CMD_TAIL)
        return cls(
            **header,
            motor_cmd=motors,
            led=leds,
            bms=bms,
            wireless_remote=remote,
            reserve=reserve,
            crc=crc,
        )

    def pack(self, version) -> bytes:
        """Encode the frame in the given revision."""
        version = SdkVersion(version)
        try:
            parts = [self._pack_header(version)]
            parts.extend(m._pack() for m in _fixed(self.motor_cmd, MOTOR_COUNT, "motor_cmd"))
            if version is SdkVersion.V3_3_1:
                parts.extend(_LED.pack(*_fixed(led, 3, "led")) for led in _fixed(self.led, FOOT_COUNT, "led"))
            else:
                parts.append(self.bms._pack())
            parts.append(
                _CMD_TAIL.pack(
                    _raw(self.wireless_remote, WIRELESS_REMOTE_LENGTH, "wireless_remote"),
                    self.reserve,
                    self.crc,
                )
            )
        except struct.error as exc:
            raise ValueError(str(exc)) from None
        return b"".join(parts)


@dataclass
class KeySwitches:
    """Buttons of the wireless remote, in bit order from the lowest bit."""

    r1: bool = False
    l1: bool = False
    start: bool = False
    select: bool = False
    r2: bool = False
    l2: bool = False
    f1: bool = False
    f2: bool = False
    a: bool = False
    b: bool = False
    x: bool = False
    y: bool = False
    up: bool = False
    right: bool = False
    down: bool = False
    left: bool = False


_SWITCH_NAMES = tuple(f.name for f in fields(KeySwitches))


def _switches_from_value(value: int) -> KeySwitches:
    return KeySwitches(*(bool((value >> bit) & 1) for bit in range(len(_SWITCH_NAMES))))


def _switches_value(switches: KeySwitches) -> int:
    return sum(int(bool(getattr(switches, name))) << bit for bit, name in enumerate(_SWITCH_NAMES))


@dataclass
class RockerData:
    """Decoded wireless remote block: buttons and stick axes."""

    head: bytes = bytes(2)
    btn: KeySwitches = field(default_factory=KeySwitches)
    lx: float = 0.0
    rx: float = 0.0
    ry: float = 0.0
    l2: float = 0.0
    ly: float = 0.0
    idle: bytes = bytes(16)


def parse_wireless_remote(data) -> RockerData:
    """Decode the 40-byte wireless remote block of a state frame."""
    raw = bytes(data)
    if len(raw) != WIRELESS_REMOTE_LENGTH:
        raise ValueError(f"the wireless remote block needs {WIRELESS_REMOTE_LENGTH} bytes, got {len(raw)}")
    head, buttons, lx, rx, ry, l2, ly, idle = _ROCKER.unpack(raw)
    return RockerData(head, _switches_from_value(buttons), lx, rx, ry, l2, ly, idle)


def encode_wireless_remote(rocker: RockerData) -> bytes:
    """Encode remote data into the 40-byte block carried by the frames."""
    try:
        return _ROCKER.pack(
            _raw(rocker.head, 2, "head"),
            _switches_value(rocker.btn),
            rocker.lx,
            rocker.rx,
            rocker.ry,
            rocker.l2,
            rocker.ly,
            _raw(rocker.idle, 16, "idle"),
        )
    except struct.error as exc:
        raise ValueError(str(exc)) from None