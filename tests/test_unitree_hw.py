import time as _time

import pytest

from leggedkit.hw_loop import UrdfError
from leggedkit.unitree_hw import (
    CONTACT_SENSOR_NAMES,
    JoyMessage,
    UdpTransport,
    UnitreeError,
    UnitreeHW,
    joint_index,
)
from leggedkit.unitree_protocol import (
    KeySwitches,
    LeggedType,
    LowCmd,
    LowState,
    RockerData,
    SdkVersion,
    encode_wireless_remote,
)

LEGS = ("LF", "LH", "RF", "RH")
JOINTS = ("HAA", "HFE", "KFE")


def _urdf():
    links = ['<link name="base"/>', '<link name="imu_link"/>']
    joints = ['<joint name="imu_joint" type="fixed"/>', '<joint name="LF_foot_fixed" type="fixed"/>']
    for leg in LEGS:
        for joint in JOINTS:
            joints.append(f'<joint name="{leg}_{joint}" type="revolute"/>')
    return '<robot name="dog">' + "".join(links + joints) + "</robot>"


class FakeTransport:
    def __init__(self):
        self.frame = None
        self.sent = []

    def send(self, data):
        self.sent.append(data)
        return len(data)

    def receive(self):
        return self.frame


class FakeSafety:
    def __init__(self, legged_type):
        self.legged_type = legged_type
        self.calls = []

    def position_limit(self, cmd):
        self.calls.append("position")
        cmd.motor_cmd[0].q = 0.0

    def power_protect(self, cmd, state, limit):
        self.calls.append(("power", limit))


def _make(version=SdkVersion.V3_8_0, robot_type="go1", **kwargs):
    transport = FakeTransport()
    hw = UnitreeHW(version, transport=transport, **kwargs)
    hw.init(_urdf(), robot_type, 3, 20)
    return hw, transport


@pytest.mark.parametrize(
    "name, expected",
    [
        ("RF_HAA", 0),
        ("LF_HFE", 4),
        ("RH_KFE", 8),
        ("LH_HAA", 9),
        ("LF_foot_fixed", None),
        ("imu_joint", None),
    ],
)
def test_joint_index(name, expected):
    assert joint_index(name) == expected


def test_init_registers_handles():
    hw, _ = _make()
    expected = {f"{leg}_{joint}" for leg in LEGS for joint in JOINTS}
    assert set(hw.hybrid_joint_interface.names()) == expected
    assert set(hw.joint_state_interface.names()) == expected
    assert set(hw.contact_sensor_interface.names()) == set(CONTACT_SENSOR_NAMES)
    assert list(hw.imu_sensor_interface.names()) == ["base_imu"]
    assert hw.imu_data.orientation_covariance[0] == 0.0012
    assert hw.imu_data.angular_velocity_covariance[8] == 0.0004
    assert hw.legged_type is LeggedType.GO1


@pytest.mark.parametrize(
    "version, robot_type",
    [(SdkVersion.V3_8_0, "a1"), (SdkVersion.V3_3_1, "go1"), (SdkVersion.V3_8_0, "spot")],
)
def test_unknown_robot_type(version, robot_type):
    with pytest.raises(UnitreeError):
        _make(version, robot_type)


def test_older_revision_accepts_a1():
    hw, _ = _make(SdkVersion.V3_3_1, "a1")
    assert hw.legged_type is LeggedType.A1


def test_empty_urdf_rejected():
    hw = UnitreeHW(transport=FakeTransport())
    with pytest.raises(UrdfError):
        hw.init("", "go1", 3, 20)


def test_read_before_init_fails():
    hw = UnitreeHW(transport=FakeTransport())
    with pytest.raises(UnitreeError):
        hw.read(1.0, 0.002)
    with pytest.raises(UnitreeError):
        hw.write(1.0, 0.002)


def _state_frame(version):
    state = LowState()
    for i in range(12):
        state.motor_state[i].q = i * 0.5
        state.motor_state[i].dq = -i * 0.25
        state.motor_state[i].tau_est = i * 2.0
    state.imu.quaternion = [0.5, 0.25, 0.125, 0.0625]
    state.imu.gyroscope = [1.0, 2.0, 3.0]
    state.imu.accelerometer = [4.0, 5.0, 6.0]
    state.foot_force = [10, 50, 0, 100]
    rocker = RockerData(lx=0.5, ly=0.25, rx=-0.5, ry=1.0, btn=KeySwitches(x=True, start=True))
    state.wireless_remote = encode_wireless_remote(rocker)
    return state.pack(version)


@pytest.mark.parametrize("version, robot_type", [(SdkVersion.V3_8_0, "go1"), (SdkVersion.V3_3_1, "aliengo")])
def test_read_exposes_state(version, robot_type):
    joys, contacts = [], []
    hw, transport = _make(version, robot_type, joy_sink=joys.append, contact_sink=contacts.append)
    transport.frame = _state_frame(version)
    hw.read(1.0, 0.002)

    assert [m.state.position for m in hw.motors] == [i * 0.5 for i in range(12)]
    assert [m.state.velocity for m in hw.motors] == [-i * 0.25 for i in range(12)]
    assert [m.state.effort for m in hw.motors] == [i * 2.0 for i in range(12)]
    assert hw.imu_data.orientation == [0.25, 0.125, 0.0625, 0.5]
    assert hw.imu_data.angular_velocity == [1.0, 2.0, 3.0]
    assert hw.imu_data.linear_acceleration == [4.0, 5.0, 6.0]
    assert hw.contact_state == [False, True, False, True]
    assert contacts == [[10, 50, 0, 100]]
    assert joys == [JoyMessage(axes=[-0.5, 0.25, 0.5, 1.0], buttons=[1, 0, 0, 0, 0, 0, 0, 0, 0, 1])]


def test_read_resets_commands():
    hw, transport = _make()
    transport.frame = _state_frame(SdkVersion.V3_8_0)
    hw.hybrid_joint_interface.get("LF_HAA").set_command(1.0, 2.0, 3.0, 4.0, 5.0)
    hw.read(1.0, 0.002)
    command = hw.motors[3].command
    assert command.pos_des == 1.0
    assert command.kp == 3.0
    assert command.vel_des == 0.0
    assert command.ff == 0.0
    assert command.kd == 3.0


def test_write_sends_commands_through_safety():
    hw, transport = _make(safety_factory=FakeSafety)
    hw.hybrid_joint_interface.get("LF_HAA").set_command(1.0, 2.0, 3.0, 4.0, 5.0)
    hw.hybrid_joint_interface.get("RF_HAA").set_command(7.0, 0.0, 0.0, 0.0, 0.0)
    hw.write(1.0, 0.002)

    assert len(transport.sent) == 1
    sent = LowCmd.unpack(transport.sent[0], SdkVersion.V3_8_0)
    motor = sent.motor_cmd[3]
    assert (motor.q, motor.dq, motor.kp, motor.kd, motor.tau) == (1.0, 2.0, 3.0, 4.0, 5.0)
    assert sent.motor_cmd[0].q == 0.0
    assert hw._safety.calls == ["position", ("power", 3)]
    assert hw._safety.legged_type is LeggedType.GO1


def test_publish_throttling():
    hw, _ = _make()
    assert hw.update_joystick(0.01) is None
    first = hw.update_joystick(0.5)
    assert first.axes == [0.0, 0.0, 0.0, 0.0]
    assert hw.update_joystick(0.51) is None
    assert hw.update_contact(0.01) is None
    assert hw.update_contact(0.5) == [0, 0, 0, 0]
    assert hw.update_contact(0.505) is None


def test_udp_transport_keeps_frames_of_expected_length():
    with UdpTransport(0, "127.0.0.1", 9, 4) as receiver:
        port = receiver.local_address[1]
        with UdpTransport(0, "127.0.0.1", port, 4) as sender:
            assert receiver.receive() is None
            sender.send(b"abcd")
            sender.send(b"too long")
            received = None
            deadline = _time.monotonic() + 2.0
            while received is None and _time.monotonic() < deadline:
                received = receiver.receive()
                _time.sleep(0.01)
            assert received == b"abcd"
            assert receiver.receive() == b"abcd"