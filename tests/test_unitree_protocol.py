import struct

import pytest

from leggedkit.unitree_protocol import (
    BmsCmd,
    BmsState,
    Imu,
    KeySwitches,
    LeggedType,
    LowCmd,
    LowState,
    MotorCmd,
    MotorState,
    RockerData,
    SdkVersion,
    encode_wireless_remote,
    parse_wireless_remote,
)

VERSIONS = [SdkVersion.V3_3_1, SdkVersion.V3_8_0]


def _sample_state() -> LowState:
    state = LowState()
    state.imu = Imu(
        quaternion=[1.0, 0.0, 0.5, -0.25],
        gyroscope=[0.125, -1.5, 2.0],
        accelerometer=[0.0, 0.0, 9.75],
        rpy=[0.5, 0.25, -0.5],
        temperature=-3,
    )
    state.motor_state = [
        MotorState(mode=10, q=0.5 * i, dq=-0.25 * i, tau_est=1.0 + i, temperature=40, reserve=[i, 7])
        for i in range(20)
    ]
    state.foot_force = [100, -20, 300, 0]
    state.foot_force_est = [1, 2, 3, 4]
    state.tick = 123456
    state.wireless_remote = bytes(range(40))
    state.crc = 0xDEADBEEF
    state.sn = [42, 0]
    return state


def _sample_cmd() -> LowCmd:
    cmd = LowCmd()
    cmd.motor_cmd = [MotorCmd(mode=10, q=0.25 * i, dq=-0.5, tau=1.5, kp=20.0, kd=0.75) for i in range(20)]
    cmd.wireless_remote = bytes(reversed(range(40)))
    cmd.crc = 77
    return cmd


@pytest.mark.parametrize("version", VERSIONS)
def test_low_state_round_trip(version):
    state = _sample_state()
    assert LowState.unpack(state.pack(version), version) == state


def test_low_state_newer_revision_keeps_bms_and_header():
    state = _sample_state()
    state.head = b"\xfe\xef"
    state.frame_reserve = 3
    state.sn = [42, 43]
    state.version = [1, 2]
    state.band_width = 0x3A
    state.bms = BmsState(soc=87, current=-1500, cycle=12, bq_ntc=[25, -5], mcu_ntc=[30, 31], cell_vol=list(range(3000, 3010)))
    assert LowState.unpack(state.pack(SdkVersion.V3_8_0), SdkVersion.V3_8_0) == state


def test_older_revision_does_not_carry_bms():
    state = _sample_state()
    state.bms = BmsState(soc=50)
    decoded = LowState.unpack(state.pack(SdkVersion.V3_3_1), SdkVersion.V3_3_1)
    assert decoded.bms == BmsState()
    assert decoded.motor_state == state.motor_state


def test_level_flag_position():
    assert LowState().pack(SdkVersion.V3_3_1)[0] == 0xFF
    assert LowState().pack(SdkVersion.V3_8_0)[2] == 0xFF


@pytest.mark.parametrize("version", VERSIONS)
def test_frame_size_is_fixed_and_checked(version):
    data = _sample_state().pack(version)
    assert len(data) == len(LowState().pack(version))
    with pytest.raises(ValueError):
        LowState.unpack(data[:-1], version)
    with pytest.raises(ValueError):
        LowState.unpack(data + b"\0", version)


def test_revision_given_as_string():
    state = _sample_state()
    assert LowState.unpack(state.pack("3.8.0"), "3.8.0") == state


def test_unknown_revision_is_rejected():
    with pytest.raises(ValueError):
        LowState().pack("9.9.9")


def test_wrong_motor_count_is_rejected():
    state = LowState(motor_state=[MotorState()] * 12)
    with pytest.raises(ValueError):
        state.pack(SdkVersion.V3_3_1)


def test_wrong_remote_length_is_rejected():
    state = LowState(wireless_remote=bytes(39))
    with pytest.raises(ValueError):
        state.pack(SdkVersion.V3_8_0)


def test_floats_travel_as_single_precision():
    state = LowState()
    state.motor_state[0].q = 0.1
    decoded = LowState.unpack(state.pack(SdkVersion.V3_3_1), SdkVersion.V3_3_1)
    assert decoded.motor_state[0].q == pytest.approx(0.1, abs=1e-7)


@pytest.mark.parametrize("version", VERSIONS)
def test_low_cmd_round_trip(version):
    cmd = _sample_cmd()
    if version is SdkVersion.V3_3_1:
        cmd.led = [(255, 0, 0), (0, 255, 0), (0, 0, 255), (1, 2, 3)]
    else:
        cmd.bms = BmsCmd(off=0xA5, reserve=[1, 2, 3])
    assert LowCmd.unpack(cmd.pack(version), version) == cmd


@pytest.mark.parametrize("version, offset", [(SdkVersion.V3_3_1, 10), (SdkVersion.V3_8_0, 22)])
def test_low_cmd_motor_layout(version, offset):
    cmd = LowCmd()
    cmd.motor_cmd[0] = MotorCmd(mode=0x0A, q=1.5, dq=-2.0, tau=0.5, kp=20.0, kd=0.75)
    data = cmd.pack(version)
    assert data[offset] == 0x0A
    assert struct.unpack_from("<5f", data, offset + 1) == (1.5, -2.0, 0.5, 20.0, 0.75)


def test_high_level_flag_per_revision():
    assert LowCmd(level_flag=SdkVersion.V3_8_0.high_level).pack(SdkVersion.V3_8_0)[2] == 0xEE
    assert LowCmd(level_flag=SdkVersion.V3_3_1.high_level).pack(SdkVersion.V3_3_1)[0] == 0x00


@pytest.mark.parametrize(
    "version, present, absent",
    [
        (SdkVersion.V3_8_0, [LeggedType.GO1, LeggedType.A1], []),
        (SdkVersion.V3_3_1, [LeggedType.A1], [LeggedType.GO1]),
    ],
)
def test_legged_types_per_revision(version, present, absent):
    cmd = LowCmd()
    decoded = LowCmd.unpack(cmd.pack(version), version)
    assert decoded == cmd
    for legged_type in present:
        assert legged_type in version.legged_types
    for legged_type in absent:
        assert legged_type not in version.legged_types


def test_remote_round_trip():
    rocker = RockerData(
        head=b"\x55\x51",
        btn=KeySwitches(a=True, start=True, left=True),
        lx=0.5,
        rx=-0.25,
        ry=1.0,
        l2=0.0,
        ly=-1.0,
    )
    encoded = encode_wireless_remote(rocker)
    assert len(encoded) == 40
    assert parse_wireless_remote(encoded) == rocker


@pytest.mark.parametrize(
    "switches, expected",
    [
        (KeySwitches(r1=True), b"\x01\x00"),
        (KeySwitches(a=True), b"\x00\x01"),
        (KeySwitches(left=True), b"\x00\x80"),
    ],
)
def test_button_bits(switches, expected):
    assert encode_wireless_remote(RockerData(btn=switches))[2:4] == expected


def test_stick_offsets():
    encoded = encode_wireless_remote(RockerData(lx=0.5, ly=-0.75))
    assert struct.unpack_from("<f", encoded, 4)[0] == 0.5
    assert struct.unpack_from("<f", encoded, 20)[0] == -0.75


def test_remote_carried_in_state_frame():
    rocker = RockerData(btn=KeySwitches(x=True, l1=True), lx=0.25, ry=-0.5)
    state = LowState(wireless_remote=encode_wireless_remote(rocker))
    decoded = LowState.unpack(state.pack(SdkVersion.V3_3_1), SdkVersion.V3_3_1)
    assert parse_wireless_remote(decoded.wireless_remote) == rocker


def test_parse_remote_wrong_length():
    with pytest.raises(ValueError):
        parse_wireless_remote(bytes(24))


def test_encode_remote_bad_head():
    with pytest.raises(ValueError):
        encode_wireless_remote(RockerData(head=b"\x00"))