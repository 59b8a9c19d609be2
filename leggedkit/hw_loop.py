"""Robot hardware base and the fixed-rate loop that drives read, control and write."""

from __future__ import annotations

import logging
import os
import threading
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, Optional

from .hardware_interface import (
    ContactSensorInterface,
    HybridJointInterface,
    ImuSensorInterface,
    JointStateInterface,
)

_log = logging.getLogger(__name__)

_JOINT_TYPES = frozenset({"revolute", "continuous", "prismatic", "fixed", "floating", "planar"})


class UrdfError(ValueError):
    """Raised when a robot description cannot be loaded."""


class LeggedHW:
    """Hardware exposing joint state, hybrid joint, IMU and contact interfaces."""

    def __init__(self) -> None:
        self.joint_state_interface = JointStateInterface()
        self.hybrid_joint_interface = HybridJointInterface()
        self.imu_sensor_interface = ImuSensorInterface()
        self.contact_sensor_interface = ContactSensorInterface()
        self.robot_name = ""
        self.links: list[str] = []
        self.joints: dict[str, str] = {}

    def load_urdf(self, urdf: str) -> None:
        """Parse a URDF string; joints are kept sorted by name with their types."""
        if not urdf:
            raise UrdfError("Error occurred while setting up urdf: the robot description is empty")
        try:
            root = ET.fromstring(urdf)
        except ET.ParseError as exc:
            raise UrdfError(f"Error occurred while setting up urdf: {exc}") from None
        if root.tag != "robot":
            raise UrdfError("Error occurred while setting up urdf: no <robot> element")
        name = root.get("name")
        if not name:
            raise UrdfError("Error occurred while setting up urdf: the robot has no name")

        links = []
        for link in root.findall("link"):
            link_name = link.get("name")
            if not link_name:
                raise UrdfError("Error occurred while setting up urdf: a link has no name")
            if link_name in links:
                raise UrdfError(f"Error occurred while setting up urdf: duplicate link '{link_name}'")
            links.append(link_name)
        if not links:
            raise UrdfError("Error occurred while setting up urdf: no link elements found")

        joints: dict[str, str] = {}
        for joint in root.findall("joint"):
            joint_name = joint.get("name")
            joint_type = joint.get("type")
            if not joint_name:
                raise UrdfError("Error occurred while setting up urdf: a joint has no name")
            if joint_type not in _JOINT_TYPES:
                raise UrdfError(
                    f"Error occurred while setting up urdf: joint '{joint_name}' has unknown type '{joint_type}'"
                )
            if joint_name in joints:
                raise UrdfError(f"Error occurred while setting up urdf: duplicate joint '{joint_name}'")
            joints[joint_name] = joint_type

        self.robot_name = name
        self.links = links
        self.joints = dict(sorted(joints.items()))

    def read(self, time: float, period: float) -> None:
        """Refresh the state exposed through the interfaces; generic hardware has none to fetch."""

    def write(self, time: float, period: float) -> None:
        """Send the commands held in the interfaces; generic hardware has nowhere to send them."""


@dataclass(frozen=True)
class LoopSettings:
    """Timing of the control loop."""

    loop_frequency: float
    cycle_time_error_threshold: float
    thread_priority: int = 0

    def __post_init__(self) -> None:
        if self.loop_frequency <= 0:
            raise ValueError("loop_frequency must be positive")


class LeggedHWLoop:
    """Runs hardware read, controller update and hardware write at a fixed rate."""

    def __init__(
        self,
        hardware: LeggedHW,
        controllers: Callable[[float, float], None],
        settings: LoopSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.hardware = hardware
        self.controllers = controllers
        self.settings = settings
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self._last_time = clock()
        self.elapsed_time = 0.0
        self.error: Optional[BaseException] = None
        self._running = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def update(self) -> float:
        """Run one cycle, sleep out the rest of the period and return the measured cycle time."""
        current = self._clock()
        desired = 1.0 / self.settings.loop_frequency
        elapsed = current - self._last_time
        self.elapsed_time = elapsed
        self._last_time = current

        threshold = self.settings.cycle_time_error_threshold
        cycle_time_error = elapsed - desired
        if cycle_time_error > threshold:
            _log.warning(
                "Cycle time exceeded error threshold by: %gs, cycle time: %gs, threshold: %gs",
                cycle_time_error - threshold,
                elapsed,
                threshold,
            )

        self.hardware.read(self._now(), elapsed)
        self.controllers(self._now(), elapsed)
        self.hardware.write(self._now(), elapsed)

        remaining = current + desired - self._clock()
        if remaining > 0:
            self._sleep(remaining)
        return elapsed

    def _set_priority(self) -> None:
        try:
            os.sched_setscheduler(0, os.SCHED_FIFO, os.sched_param(self.settings.thread_priority))
        except (AttributeError, OSError, ValueError):
            _log.warning(
                "Failed to set threads priority (one possible reason could be that the user and the group "
                "permissions are not set properly.)."
            )

    def _run(self) -> None:
        self._set_priority()
        while self._running.is_set():
            try:
                self.update()
            except Exception as exc:
                _log.exception("Control loop stopped")
                self.error = exc
                self._running.clear()

    def start(self) -> None:
        """Start the loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            raise RuntimeError("the control loop is already running")
        self.error = None
        self._running.set()
        self._thread = threading.Thread(target=self._run, name="legged-hw-loop", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the loop and wait for its thread to finish."""
        self._running.clear()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def __enter__(self) -> "LeggedHWLoop":
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()