import math
from dataclasses import dataclass, field

import pytest

from leggedkit.hw_sim import ContactEvent, LeggedHWSim, SimJoint


@dataclass
class FakeLink:
    orientation: list = field(default_factory=lambda: [1.0, 0.0, 0.0, 0.0])
    angular_velocity: list = field(default_factory=lambda: [0.0, 0.0, 0.0])
    linear_acceleration: list = field(default_factory=lambda: [0.0, 0.0, 0.0])


def _imu_settings(frame="base"):
    return {
        "frame_id": frame,
        "orientation_covariance_diagonal": [0.1, 0.2, 0.3],
        "angular_velocity_covariance": [0.4, 0.5, 0.6],
        "linear_acceleration_covariance": [0.7, 0.8, 0.9],
    }


def test_hybrid_joint_names_are_sorted():
    sim = LeggedHWSim([SimJoint("RF_HAA"), SimJoint("LF_HAA"), SimJoint("LH_KFE")])
    assert sim.hybrid_joint_interface.names() == ["LF_HAA", "LH_KFE", "RF_HAA"]
    assert sim.joint_state_interface.names() == ["LF_HAA", "LH_KFE", "RF_HAA"]


def test_duplicate_joint_rejected():
    with pytest.raises(ValueError):
        LeggedHWSim([SimJoint("A"), SimJoint("A")])


def test_negative_delay_rejected():
    with pytest.raises(ValueError):
        LeggedHWSim([SimJoint("A")], delay=-1.0)


def test_first_step_velocity_zero_then_difference():
    joint = SimJoint("A", position=0.3)
    sim = LeggedHWSim([joint])
    sim.read_sim(0.5, 0.5)
    handle = sim.joint_state_interface.get("A")
    assert handle.position == pytest.approx(0.3)
    assert handle.velocity == 0.0
    joint.position = 0.55
    sim.read_sim(1.0, 0.5)
    assert handle.velocity == pytest.approx(0.5)


def test_revolute_position_unwraps():
    joint = SimJoint("A", position=math.pi - 0.1)
    sim = LeggedHWSim([joint])
    sim.read_sim(1.0, 1.0)
    joint.position = -math.pi + 0.1
    sim.read_sim(2.0, 1.0)
    assert sim.joint_state_interface.get("A").position > math.pi


def test_prismatic_position_is_raw():
    joint = SimJoint("P", joint_type="prismatic", position=5.0)
    sim = LeggedHWSim([joint])
    sim.read_sim(1.0, 1.0)
    assert sim.joint_state_interface.get("P").position == 5.0


def test_effort_copied_from_force():
    sim = LeggedHWSim([SimJoint("A", force=2.5)])
    sim.read_sim(1.0, 1.0)
    assert sim.joint_state_interface.get("A").effort == 2.5


def test_read_resets_command_to_hold_position():
    joint = SimJoint("A", position=0.4)
    sim = LeggedHWSim([joint])
    handle = sim.hybrid_joint_interface.get("A")
    handle.set_command(9.0, 9.0, 9.0, 9.0, 9.0)
    sim.read_sim(1.0, 1.0)
    assert handle.position_desired == pytest.approx(0.4)
    assert handle.velocity_desired == 0.0
    assert (handle.kp, handle.kd, handle.feedforward) == (0.0, 0.0, 0.0)


def test_non_positive_period_rejected():
    sim = LeggedHWSim([SimJoint("A")])
    with pytest.raises(ValueError):
        sim.read_sim(1.0, 0.0)


def test_write_applies_pd_and_feedforward():
    joint = SimJoint("A")
    sim = LeggedHWSim([joint])
    sim.read_sim(1.0, 1.0)
    sim.hybrid_joint_interface.get("A").set_command(0.7, 0.0, 1.0, 0.0, 0.0)
    sim.write_sim(1.0, 1.0)
    assert joint.effort_command == pytest.approx(0.7)
    sim.hybrid_joint_interface.get("A").set_command(0.0, 0.0, 0.0, 0.0, 3.0)
    sim.write_sim(1.0, 1.0)
    assert joint.effort_command == pytest.approx(3.0)


def test_delay_holds_back_commands_and_reset_clears():
    joint = SimJoint("A")
    sim = LeggedHWSim([joint], delay=1.5)
    handle = sim.hybrid_joint_interface.get("A")
    handle.feedforward = 1.0
    sim.write_sim(1.0, 1.0)
    assert joint.effort_command == 1.0
    handle.feedforward = 2.0
    sim.write_sim(2.0, 1.0)
    assert joint.effort_command == 1.0
    handle.feedforward = 3.0
    sim.write_sim(3.0, 1.0)
    assert joint.effort_command == 2.0
    handle.feedforward = 4.0
    sim.write_sim(1.0, 1.0)
    assert joint.effort_command == 4.0


def test_contacts_at_previous_step_are_detected():
    sim = LeggedHWSim([])
    sim.parse_contacts(["LF_FOOT", "RF_FOOT"])
    events = [ContactEvent(1.0, "LF_FOOT", "ground"), ContactEvent(0.5, "ground", "RF_FOOT")]
    sim.read_sim(2.0, 1.0, events)
    assert sim.contact_sensor_interface.get("LF_FOOT").is_contact is True
    assert sim.contact_sensor_interface.get("RF_FOOT").is_contact is False
    sim.read_sim(3.0, 1.0, [])
    assert sim.contact_sensor_interface.get("LF_FOOT").is_contact is False


def test_contact_source_used_by_read():
    sim = LeggedHWSim([], contact_source=lambda: [ContactEvent(1.0, "ground", "LH_FOOT")])
    sim.parse_contacts(["LH_FOOT"])
    sim.read(2.0, 1.0)
    assert sim.contact_sensor_interface.get("LH_FOOT").is_contact is True


def test_parse_contacts_rejects_string():
    sim = LeggedHWSim([])
    with pytest.raises(TypeError):
        sim.parse_contacts("LF_FOOT")


def test_imu_covariances_and_readings():
    link = FakeLink(
        orientation=[0.5, 0.5, 0.5, 0.5],
        angular_velocity=[0.1, 0.2, 0.3],
        linear_acceleration=[0.0, 0.0, 0.0],
    )
    sim = LeggedHWSim([])
    sim.parse_imus({"base_imu": _imu_settings()}, {"base": link})
    handle = sim.imu_sensor_interface.get("base_imu")
    assert handle.frame_id == "base"
    assert handle.orientation_covariance == [0.1, 0.0, 0.0, 0.0, 0.2, 0.0, 0.0, 0.0, 0.3]
    assert handle.linear_acceleration_covariance[8] == 0.9
    sim.read_sim(1.0, 1.0)
    assert handle.orientation == [0.5, 0.5, 0.5, 0.5]
    assert handle.angular_velocity == pytest.approx([0.1, 0.2, 0.3])


def test_imu_orientation_reordered_and_gravity_removed():
    link = FakeLink(orientation=[1.0, 0.0, 0.0, 0.0], linear_acceleration=[0.3, 0.0, 0.0])
    sim = LeggedHWSim([])
    sim.parse_imus({"base_imu": _imu_settings()}, {"base": link})
    sim.read_sim(1.0, 1.0)
    handle = sim.imu_sensor_interface.get("base_imu")
    assert handle.orientation == [0.0, 0.0, 0.0, 1.0]
    assert handle.linear_acceleration == pytest.approx([0.3, 0.0, 9.81])


def test_imu_missing_key_is_skipped():
    settings = _imu_settings()
    del settings["frame_id"]
    sim = LeggedHWSim([])
    sim.parse_imus({"bad": settings, "good": _imu_settings()}, {"base": FakeLink()})
    assert sim.imu_sensor_interface.names() == ["good"]


def test_imu_bad_covariance_rejected():
    settings = _imu_settings()
    settings["angular_velocity_covariance"] = [0.1, 0.2]
    sim = LeggedHWSim([])
    with pytest.raises(ValueError):
        sim.parse_imus({"imu": settings}, {"base": FakeLink()})


def test_imu_unknown_link_rejected():
    sim = LeggedHWSim([])
    with pytest.raises(KeyError):
        sim.parse_imus({"imu": _imu_settings("nowhere")}, {"base": FakeLink()})


def test_imu_config_must_be_mapping():
    sim = LeggedHWSim([])
    with pytest.raises(TypeError):
        sim.parse_imus(["imu"], {"base": FakeLink()})