"""Unit tests for display message encoding and the queued DisplayPublisher."""

import io
import math
import struct
import threading
import time

import msgspec
import numpy as np
import pytest

from pickmotion.execution.display_publisher import DisplayPublisher, length_prefixed_writer
from pickmotion.motion.trajectory import TrajectoryTimeParameterizer
from pickmotion.protocol import display
from pickmotion.protocol.types import Pose

pytestmark = pytest.mark.unit


@pytest.fixture
def trajectory(kinematics, limits):
    path = [kinematics.configuration(0.6, -0.3, z, 0.0) for z in (0.09, 0.08, 0.07)]
    return TrajectoryTimeParameterizer().parameterize(path, limits)


def _frames(data: bytes) -> list[bytes]:
    frames = []
    offset = 0
    while offset < len(data):
        (size,) = struct.unpack_from(">I", data, offset)
        offset += 4
        frames.append(data[offset : offset + size])
        offset += size
    return frames


class TestMessages:
    def test_trajectory_message(self, trajectory):
        msg = display.display_trajectory_from(trajectory, "gantry")
        decoded = display.decode(display.encode(msg))

        assert isinstance(decoded, display.DisplayTrajectory)
        assert decoded.model_id == "gantry"
        assert decoded.group == "right_arm"
        assert decoded.joint_names == list(trajectory.joint_names)
        assert decoded.trajectory_start == trajectory.positions[0].tolist()
        assert len(decoded.points) == 3
        assert decoded.points[0].time_from_start == 0.0
        assert decoded.points[-1].time_from_start == pytest.approx(trajectory.duration)
        assert decoded.points[-1].positions[2] == pytest.approx(0.07)

    def test_pose_marker_message(self):
        pose = Pose.from_euler((0.75, -0.3, 0.09), (math.pi, 0.0, 0.0))
        decoded = display.decode(display.encode(display.pose_marker_from(pose, "base")))

        assert isinstance(decoded, display.PoseMarker)
        assert decoded.frame_id == "base"
        assert decoded.position == pytest.approx([0.75, -0.3, 0.09])
        assert decoded.namespace == "goal"

    def test_numpy_scalars_encode(self):
        marker = display.PoseMarker(
            frame_id="base",
            position=[np.float64(1.0), 2.0, 3.0],
            orientation=[0.0, 0.0, 0.0, 1.0],
        )
        assert display.decode(display.encode(marker)).position == [1.0, 2.0, 3.0]

    def test_malformed_payload_rejected(self):
        with pytest.raises(msgspec.ValidationError):
            display.decode(msgspec.msgpack.encode({"type": "pose_marker", "frame_id": 3}))


class TestPublisher:
    def test_publishes_in_order(self, trajectory):
        stream = io.BytesIO()
        with DisplayPublisher(length_prefixed_writer(stream), model_id="gantry") as publisher:
            publisher.publish_pose_marker(Pose((0.1, 0.2, 0.3)))
            publisher.publish_trajectory(trajectory)

        frames = _frames(stream.getvalue())
        assert [type(display.decode(f)) for f in frames] == [
            display.PoseMarker,
            display.DisplayTrajectory,
        ]
        assert publisher.published == 2
        assert publisher.dropped == 0

    def test_full_queue_drops_instead_of_blocking(self):
        gate = threading.Event()
        written: list[bytes] = []

        def slow_writer(payload: bytes) -> None:
            gate.wait(2.0)
            written.append(payload)

        publisher = DisplayPublisher(slow_writer, max_pending=1)
        publisher.start()
        try:
            for _ in range(10):
                publisher.publish_pose_marker(Pose())
            assert publisher.dropped > 0
        finally:
            gate.set()
            publisher.stop()
        assert publisher.published == len(written)
        assert publisher.published + publisher.dropped == 10

    def test_writer_failure_keeps_draining(self, caplog):
        calls = {"n": 0}
        written: list[bytes] = []

        def flaky(payload: bytes) -> None:
            calls["n"] += 1
            if calls["n"] == 1:
                raise BrokenPipeError("viewer went away")
            written.append(payload)

        with DisplayPublisher(flaky) as publisher:
            publisher.publish_pose_marker(Pose())
            publisher.publish_pose_marker(Pose())

        assert len(written) == 1
        assert publisher.published == 1
        assert "Display write failed" in caplog.text

    def test_stop_returns_when_writer_is_wedged(self, caplog):
        gate = threading.Event()
        writing = threading.Event()

        def wedged_writer(payload: bytes) -> None:
            writing.set()
            gate.wait(5.0)

        publisher = DisplayPublisher(wedged_writer, max_pending=1)
        publisher.start()
        worker = publisher._worker
        try:
            publisher.publish_pose_marker(Pose())
            assert writing.wait(1.0)
            publisher.publish_pose_marker(Pose())

            t0 = time.monotonic()
            publisher.stop(timeout=0.1)
            assert time.monotonic() - t0 < 1.0
        finally:
            gate.set()
        assert "abandoning 1 pending" in caplog.text

        worker.join(1.0)
        assert not worker.is_alive()
        assert publisher.published == 1

    def test_stop_without_start_is_noop(self):
        DisplayPublisher(lambda payload: None).stop()
