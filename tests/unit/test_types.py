"""Unit tests for pickmotion.protocol.types value types."""

import math

import numpy as np
import pytest

from pickmotion.protocol.types import (
    CartesianDirection,
    ExecutionStatus,
    JointConfiguration,
    JointLimits,
    Pose,
    PoseGoal,
    Trajectory,
    Waypoint,
)

pytestmark = pytest.mark.unit


class TestPose:
    def test_rejects_non_unit_quaternion(self):
        with pytest.raises(ValueError, match="unit quaternion"):
            Pose((0.0, 0.0, 0.0), (0.0, 0.0, 0.0, 1.1))

    def test_renormalizes_within_tolerance(self):
        pose = Pose((0.0, 0.0, 0.0), (0.0, 0.0, 0.0, 1.0 + 1e-7))
        assert np.linalg.norm(pose.orientation) == pytest.approx(1.0, abs=1e-12)

    def test_arrays_are_read_only(self):
        pose = Pose((1.0, 2.0, 3.0))
        with pytest.raises(ValueError):
            pose.position[0] = 5.0

    def test_matrix_roundtrip_preserves_pose(self):
        pose = Pose.from_euler((0.1, -0.2, 0.3), (math.pi, 0.0, 0.4))
        again = Pose.from_matrix(pose.as_matrix())
        assert again.position_distance(pose) < 1e-12
        assert again.angular_distance(pose) < 1e-9

    def test_translated_keeps_orientation(self):
        pose = Pose.from_euler((0.0, 0.0, 0.0), (0.0, 0.0, 1.0))
        moved = pose.translated((0.0, 0.0, -0.05))
        assert moved.position[2] == pytest.approx(-0.05)
        assert moved.angular_distance(pose) == pytest.approx(0.0, abs=1e-12)


class TestJointConfiguration:
    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="Duplicate"):
            JointConfiguration("arm", ("a", "a"), [0.0, 1.0])

    def test_length_mismatch_rejected(self):
        with pytest.raises(ValueError):
            JointConfiguration("arm", ("a", "b"), [0.0])

    def test_distance_is_sum_of_absolute_differences(self):
        a = JointConfiguration("arm", ("a", "b"), [0.0, 1.0])
        b = a.with_positions([0.5, 0.0])
        assert a.distance(b) == pytest.approx(1.5)

    def test_distance_across_chains_rejected(self):
        a = JointConfiguration("arm", ("a", "b"), [0.0, 1.0])
        b = JointConfiguration("other", ("a", "b"), [0.0, 1.0])
        with pytest.raises(ValueError):
            a.distance(b)

    def test_from_mapping_picks_named_joints(self):
        cfg = JointConfiguration.from_mapping("arm", ("b", "a"), {"a": 1.0, "b": 2.0, "c": 3.0})
        assert cfg.as_dict() == {"b": 2.0, "a": 1.0}
        assert cfg["a"] == 1.0
        with pytest.raises(KeyError):
            cfg["c"]


class TestCartesianDirection:
    def test_vector_is_normalized(self):
        d = CartesianDirection((0.0, 0.0, -2.0), 0.05)
        assert np.allclose(d.vector, (0.0, 0.0, -1.0))
        assert np.allclose(d.world_displacement(np.eye(3)), (0.0, 0.0, -0.05))

    @pytest.mark.parametrize("vector,distance", [((0.0, 0.0, 0.0), 0.05), ((0.0, 0.0, 1.0), 0.0)])
    def test_invalid_inputs_rejected(self, vector, distance):
        with pytest.raises(ValueError):
            CartesianDirection(vector, distance)

    def test_invalid_frame_rejected(self):
        with pytest.raises(ValueError, match="frame"):
            CartesianDirection((0.0, 0.0, 1.0), 0.05, frame="XYZ")  # type: ignore[arg-type]

    def test_tool_frame_is_rotated(self):
        # Tool pointing down: tool +z is world -z
        d = CartesianDirection((0.0, 0.0, 1.0), 0.05, frame="TRF")
        R = Pose.from_euler((0.0, 0.0, 0.0), (math.pi, 0.0, 0.0)).rotation_matrix()
        assert np.allclose(d.world_displacement(R), (0.0, 0.0, -0.05))

    def test_reversed(self):
        d = CartesianDirection((0.0, 0.0, -1.0), 0.05).reversed()
        assert np.allclose(d.vector, (0.0, 0.0, 1.0))
        assert d.distance == 0.05


class TestJointLimits:
    def test_negative_limits_rejected(self):
        with pytest.raises(ValueError):
            JointLimits(("a",), [-1.0], [1.0])

    def test_for_joints_reorders(self):
        limits = JointLimits(("a", "b"), [1.0, 2.0], [3.0, 4.0])
        sub = limits.for_joints(("b",))
        assert sub.velocity.tolist() == [2.0]
        assert sub.acceleration.tolist() == [4.0]

    def test_for_joints_unknown_rejected(self):
        with pytest.raises(ValueError, match="No limits"):
            JointLimits.uniform(("a",), 1.0, 1.0).for_joints(("a", "z"))


class TestTrajectory:
    @pytest.fixture
    def trajectory(self) -> Trajectory:
        names = ("a", "b")
        cfg = JointConfiguration("arm", names, [0.0, 0.0])
        return Trajectory(
            "arm",
            names,
            (
                Waypoint(cfg, 0.0),
                Waypoint(cfg.with_positions([1.0, 2.0]), 1.0),
            ),
            JointLimits.uniform(names, 1.0, 1.0),
        )

    def test_untimed_waypoint_rejected(self):
        cfg = JointConfiguration("arm", ("a",), [0.0])
        with pytest.raises(ValueError, match="time_from_start"):
            Trajectory("arm", ("a",), (Waypoint(cfg),), JointLimits.uniform(("a",), 1.0, 1.0))

    def test_sample_interpolates_and_clamps(self, trajectory):
        assert np.allclose(trajectory.sample(0.5), (0.5, 1.0))
        assert np.allclose(trajectory.sample(-1.0), (0.0, 0.0))
        assert np.allclose(trajectory.sample(5.0), (1.0, 2.0))
        assert trajectory.duration == 1.0

    def test_empty_trajectory_cannot_be_sampled(self):
        empty = Trajectory("arm", ("a",), (), JointLimits.uniform(("a",), 1.0, 1.0))
        assert len(empty) == 0
        assert empty.duration == 0.0
        with pytest.raises(ValueError):
            empty.sample(0.0)


class TestPoseGoal:
    def test_link_target_applies_offset_in_link_frame(self):
        # Downward gripper, yaw 0: link x axis is world x
        pose = Pose.from_euler((0.75, -0.3, 0.09), (math.pi, 0.0, 0.0))
        goal = PoseGoal(pose, "wrist", 1e-4, 1e-2, target_offset=(0.15, 0.0, 0.0))
        target = goal.link_target()
        assert np.allclose(target.position, (0.6, -0.3, 0.09), atol=1e-12)
        assert target.angular_distance(pose) < 1e-12

    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            PoseGoal(Pose(), "wrist", -1.0, 0.0)


def test_execution_status_terminality():
    assert not ExecutionStatus.PENDING.is_terminal
    assert all(
        s.is_terminal
        for s in (
            ExecutionStatus.SUCCEEDED,
            ExecutionStatus.PREEMPTED,
            ExecutionStatus.TIMED_OUT,
            ExecutionStatus.CONTROL_FAILED,
        )
    )
