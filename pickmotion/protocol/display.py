"""
Display messages for visualization sinks.

Planned trajectories and goal markers are encoded as msgpack using typed
msgspec structs, so any viewer process can decode them without importing
the motion core.
"""

import logging

import msgspec
import numpy as np

from pickmotion.protocol.types import Pose, Trajectory

logger = logging.getLogger(__name__)


def _enc_hook(obj: object) -> object:
    """Custom encoder hook for numpy types."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (np.integer, np.floating)):
        return obj.item()  # Convert numpy scalar to Python native type
    raise NotImplementedError(f"Cannot encode {type(obj)}")


class TrajectoryPoint(msgspec.Struct, array_like=True, frozen=True):
    """[positions, velocities, accelerations, time_from_start]"""

    positions: list[float]
    velocities: list[float]
    accelerations: list[float]
    time_from_start: float


class DisplayTrajectory(msgspec.Struct, tag="display_trajectory", frozen=True):
    """Planned trajectory for preview before execution."""

    model_id: str
    group: str
    joint_names: list[str]
    trajectory_start: list[float]
    points: list[TrajectoryPoint]


class PoseMarker(msgspec.Struct, tag="pose_marker", frozen=True):
    """Goal marker (sphere + end-effector axes) in ``frame_id``."""

    frame_id: str
    position: list[float]
    orientation: list[float]
    namespace: str = "goal"
    lifetime: float = 120.0


DisplayMessage = DisplayTrajectory | PoseMarker

# Module-level encoder/decoder (thread-safe, reusable)
_encoder = msgspec.msgpack.Encoder(enc_hook=_enc_hook)
_decoder = msgspec.msgpack.Decoder(DisplayMessage)


def display_trajectory_from(trajectory: Trajectory, model_id: str) -> DisplayTrajectory:
    positions = trajectory.positions
    velocities = trajectory.velocities
    accelerations = trajectory.accelerations
    points = [
        TrajectoryPoint(
            positions=positions[i].tolist(),
            velocities=velocities[i].tolist(),
            accelerations=accelerations[i].tolist(),
            time_from_start=float(wp.time_from_start or 0.0),
        )
        for i, wp in enumerate(trajectory.waypoints)
    ]
    start = positions[0].tolist() if len(positions) else []
    return DisplayTrajectory(
        model_id=model_id,
        group=trajectory.group,
        joint_names=list(trajectory.joint_names),
        trajectory_start=start,
        points=points,
    )


def pose_marker_from(pose: Pose, frame_id: str, namespace: str = "goal") -> PoseMarker:
    return PoseMarker(
        frame_id=frame_id,
        position=pose.position.tolist(),
        orientation=pose.orientation.tolist(),
        namespace=namespace,
    )


def encode(msg: DisplayMessage) -> bytes:
    return _encoder.encode(msg)


def decode(data: bytes) -> DisplayMessage:
    """Decode a display message; raises msgspec.ValidationError on malformed input."""
    return _decoder.decode(data)
