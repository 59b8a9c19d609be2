# leggedkit

Building blocks for controlling a quadruped robot. They work with numpy
arrays and plain Python objects and need no middleware runtime. Where data
would normally be published, the classes take a callable ("sink") that
receives it.

## Modules

- `leggedkit.hardware_interface`: named handles for joints, contact sensors
  and IMUs. `JointState`, `JointCommand` and `ImuData` hold the shared data.
  `HybridJointHandle` exposes a joint's measured state and its hybrid command.
  The command is made of a desired position, a desired velocity, `kp`, `kd`
  and a feed-forward torque, and `set_command` writes all five at once.
  `ContactSensorHandle` reads a contact flag from a callable, and
  `ImuSensorHandle` reads `ImuData`. Handles are grouped in registries:
  `JointStateInterface`, `HybridJointInterface`, `ContactSensorInterface` and
  `ImuSensorInterface`. Each registry has `register`, `get` and `names`. Looking
  up a name that is not registered raises `HardwareInterfaceError`.
- `leggedkit.rotations`: helpers for ZYX Euler angles. It provides
  `quat_to_zyx`, `rotation_matrix_from_zyx`, `quat_to_rotation_matrix` and
  `euler_angles_xyz`. It converts between angular velocity and Euler-angle
  rates with `zyx_derivatives_from_local_angular_velocity`,
  `zyx_derivatives_from_global_angular_velocity` and
  `global_angular_velocity_from_zyx_derivatives`. It also has
  `shortest_angular_distance` and `stance_legs_to_mode`. Quaternions are
  ordered (w, x, y, z).
- `leggedkit.info_config`: a reader for INFO-format configuration files. It
  handles `key value` lines, `{ }` blocks, quoted strings, `;` comments and
  `#include`. The functions are `parse_info`, `load_info` and `lookup`, and
  `lookup` takes a dotted path. Malformed text raises `InfoParseError`.
- `leggedkit.state_estimate`: `StateEstimateBase` holds the rigid-body state
  in the order [zyx, position, joints, angular velocity, linear velocity,
  joint velocities]. It is updated from joint readings, contact flags and IMU
  data, and it rate-limits the `Odometry` it passes to its sink to 200 Hz.
  `FromTopicStateEstimate` takes the base pose and twist straight from the
  latest odometry given to `on_odometry`.
- `leggedkit.kalman_filter`: `KalmanFilterEstimate` is a linear Kalman
  filter. It fuses IMU acceleration with the feet positions and velocities of
  the legs in contact. When a transform lookup is supplied, it can also take
  an external pose through `on_odometry`. The noise values live in
  `KalmanFilterSettings`, and `load_kalman_settings` reads them from the
  `kalmanFilter` block of an INFO file.
- `leggedkit.safety`: `SafetyChecker.check` rejects a centroidal state
  whose base roll lies outside [-π/2, π/2].
- `leggedkit.target_trajectories`: turns a goal pose or a velocity command
  into `TargetTrajectories` for a model-predictive controller. The functions
  are `goal_to_target_trajectories`, `cmd_vel_to_target_trajectories`,
  `target_pose_to_target_trajectories` and `estimate_time_to_target`.
  `load_reference_settings` reads `ReferenceSettings` from reference and task
  INFO files. `TargetTrajectoriesPublisher` keeps the latest
  `SystemObservation` and publishes a trajectory for each goal or velocity
  command. It publishes nothing while the observation time is still zero.
- `leggedkit.hw_loop`: `LeggedHW` is the base class for hardware. It owns
  the four registries, and `load_urdf` parses a URDF string, raising
  `UrdfError` on bad input. `LeggedHWLoop` runs read → controllers → write at
  the rate set in `LoopSettings`. It can be driven one cycle at a time with
  `update`, or in a background thread with `start`, `stop` or a `with` block.
  It logs a warning when a cycle overruns the threshold.
- `leggedkit.hw_sim`: `LeggedHWSim` is hardware backed by a simulator. It
  reads `SimJoint` positions and unwraps revolute joint angles. It reads IMUs
  from link objects and sets contact flags from `ContactEvent`s. It applies
  the hybrid commands as PD efforts after a configurable delay.
- `leggedkit.unitree_protocol`: packed little-endian `LowState` and `LowCmd`
  frames for two protocol revisions, `SdkVersion.V3_3_1` and
  `SdkVersion.V3_8_0`. It also covers the 40-byte wireless-remote block, with
  `parse_wireless_remote` and `encode_wireless_remote`.
- `leggedkit.unitree_hw`: `UnitreeHW` maps joint names to motor indices (see
  `joint_index`). It exchanges frames over a transport, which is a UDP socket
  by default. It sets contact flags by thresholding the foot forces. It builds
  `JoyMessage`s and foot-force lists and passes them to sinks at most 50 times
  a second.

## Examples

```python
from leggedkit.hardware_interface import (
    HybridJointHandle, HybridJointInterface, JointCommand, JointState, JointStateHandle,
)

state, command = JointState(position=0.1), JointCommand()
joints = HybridJointInterface()
joints.register(HybridJointHandle(JointStateHandle("LF_HAA", state), command))
joints.get("LF_HAA").set_command(0.2, 0.0, 15.0, 0.3, 1.5)
assert command.kp == 15.0
```

```python
import math

from leggedkit.rotations import shortest_angular_distance

# Keep a yaw reading continuous across ±π.
previous_yaw, measured_yaw = 3.1, -3.1
yaw = previous_yaw + shortest_angular_distance(previous_yaw, measured_yaw)
assert abs(yaw - (2 * math.pi - 3.1)) < 1e-12
```

```python
from leggedkit.unitree_protocol import LowState, SdkVersion

data = LowState(foot_force=[10, 20, 30, 40]).pack(SdkVersion.V3_8_0)
assert LowState.unpack(data, SdkVersion.V3_8_0).foot_force == [10, 20, 30, 40]
```

## What it does not do

- It has no model-predictive or whole-body controller. `LeggedHWLoop` calls
  whatever controller callable you pass to it.
- It has no robot kinematics model. `KalmanFilterEstimate` needs a callable
  that returns feet positions and velocities.
- It has no physics simulator. `LeggedHWSim` reads state from the objects
  you give it.
- It has no safety limits for the motors. `UnitreeHW` applies them only
  through a `safety_factory` that you supply.
- It supports only low-level frames. High-level frames are not supported.
- It has no command-line program and no message-bus integration. Outputs go
  to the callables you supply.

## Tests

The tests use pytest, which is listed in the `test` optional dependency
group:

```
pip install -e .[test]
pytest
```