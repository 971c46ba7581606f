"""
Value types shared across the motion pipeline.

Poses, joint configurations, waypoints and trajectories are immutable once
built. Array fields are stored as read-only float64 NumPy arrays so a value
handed to another thread can never be modified behind its back.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.spatial.transform import Rotation

# Frame literals: world reference frame / tool (end-effector) reference frame
Frame = Literal["WRF", "TRF"]

QUATERNION_NORM_TOL: float = 1e-6


def _frozen_vector(values: ArrayLike, size: int | None, name: str) -> NDArray[np.float64]:
    arr = np.array(values, dtype=np.float64).reshape(-1)
    if size is not None and arr.shape != (size,):
        raise ValueError(f"{name} must have {size} elements, got {arr.shape[0]}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"{name} contains non-finite values: {arr}")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, slots=True, eq=False)
class Pose:
    """
    Position (metres) plus unit quaternion orientation.

    The quaternion uses scipy's scalar-last ``(x, y, z, w)`` order. Its norm
    must be 1 within ``QUATERNION_NORM_TOL``; it is re-normalized on storage.
    """

    position: NDArray[np.float64] = field(default=(0.0, 0.0, 0.0))  # type: ignore[assignment]
    orientation: NDArray[np.float64] = field(default=(0.0, 0.0, 0.0, 1.0))  # type: ignore[assignment]

    def __post_init__(self) -> None:
        position = _frozen_vector(self.position, 3, "position")
        quat = np.array(self.orientation, dtype=np.float64).reshape(-1)
        if quat.shape != (4,):
            raise ValueError(f"orientation must be a quaternion, got shape {quat.shape}")
        norm = float(np.linalg.norm(quat))
        if not np.isfinite(norm) or abs(norm - 1.0) > QUATERNION_NORM_TOL:
            raise ValueError(f"orientation is not a unit quaternion (norm={norm:.9f})")
        object.__setattr__(self, "position", position)
        object.__setattr__(self, "orientation", _frozen_vector(quat / norm, 4, "orientation"))

    @classmethod
    def from_matrix(cls, matrix: ArrayLike) -> Pose:
        """Build from a 4x4 homogeneous transform."""
        m = np.asarray(matrix, dtype=np.float64)
        return cls(m[:3, 3], Rotation.from_matrix(m[:3, :3]).as_quat())

    @classmethod
    def from_euler(
        cls, position: ArrayLike, rpy: ArrayLike, degrees: bool = False
    ) -> Pose:
        """Build from position and extrinsic xyz roll/pitch/yaw."""
        return cls(position, Rotation.from_euler("xyz", rpy, degrees=degrees).as_quat())

    @property
    def rotation(self) -> Rotation:
        return Rotation.from_quat(self.orientation)

    def rotation_matrix(self) -> NDArray[np.float64]:
        return self.rotation.as_matrix()

    def as_matrix(self) -> NDArray[np.float64]:
        m = np.eye(4, dtype=np.float64)
        m[:3, :3] = self.rotation_matrix()
        m[:3, 3] = self.position
        return m

    def with_position(self, position: ArrayLike) -> Pose:
        return Pose(position, self.orientation)

    def translated(self, delta: ArrayLike) -> Pose:
        return Pose(self.position + np.asarray(delta, dtype=np.float64), self.orientation)

    def position_distance(self, other: Pose) -> float:
        return float(np.linalg.norm(self.position - other.position))

    def angular_distance(self, other: Pose) -> float:
        """Rotation angle (rad) between the two orientations."""
        return float((self.rotation.inv() * other.rotation).magnitude())

    def __repr__(self) -> str:
        p = ", ".join(f"{v:.4f}" for v in self.position)
        q = ", ".join(f"{v:.4f}" for v in self.orientation)
        return f"Pose(position=[{p}], orientation=[{q}])"


@dataclass(frozen=True, slots=True, eq=False)
class JointConfiguration:
    """
    Ordered joint name -> position mapping for one planning group.

    Attributes:
        group: Name of the kinematic chain ("planning group")
        names: Joint names in chain order, fixed per group
        positions: Joint positions (rad or m), same order as ``names``
    """

    group: str
    names: tuple[str, ...]
    positions: NDArray[np.float64]

    def __post_init__(self) -> None:
        names = tuple(self.names)
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate joint names in {names}")
        object.__setattr__(self, "names", names)
        object.__setattr__(
            self, "positions", _frozen_vector(self.positions, len(names), "positions")
        )

    @classmethod
    def from_mapping(
        cls, group: str, names: Sequence[str], values: Mapping[str, float]
    ) -> JointConfiguration:
        """Pick ``names`` out of a wider joint-state mapping (KeyError if absent)."""
        return cls(group, tuple(names), [values[n] for n in names])

    def __len__(self) -> int:
        return len(self.names)

    def __getitem__(self, name: str) -> float:
        try:
            return float(self.positions[self.names.index(name)])
        except ValueError:
            raise KeyError(name) from None

    def as_dict(self) -> dict[str, float]:
        return {n: float(v) for n, v in zip(self.names, self.positions)}

    def with_positions(self, positions: ArrayLike) -> JointConfiguration:
        return JointConfiguration(self.group, self.names, positions)

    def same_chain(self, other: JointConfiguration) -> bool:
        return self.group == other.group and self.names == other.names

    def distance(self, other: JointConfiguration) -> float:
        """Joint-space distance: sum of absolute per-joint differences."""
        if not self.same_chain(other):
            raise ValueError(
                f"Cannot compare configurations of {self.group}{self.names} "
                f"and {other.group}{other.names}"
            )
        return float(np.sum(np.abs(self.positions - other.positions)))


@dataclass(frozen=True, slots=True, eq=False)
class Waypoint:
    """A joint configuration with optional timing filled in by time parameterization."""

    configuration: JointConfiguration
    time_from_start: float | None = None
    velocities: NDArray[np.float64] | None = None
    accelerations: NDArray[np.float64] | None = None

    def __post_init__(self) -> None:
        n = len(self.configuration)
        if self.velocities is not None:
            object.__setattr__(
                self, "velocities", _frozen_vector(self.velocities, n, "velocities")
            )
        if self.accelerations is not None:
            object.__setattr__(
                self,
                "accelerations",
                _frozen_vector(self.accelerations, n, "accelerations"),
            )

    @property
    def positions(self) -> NDArray[np.float64]:
        return self.configuration.positions

    @property
    def is_timed(self) -> bool:
        return self.time_from_start is not None


@dataclass(frozen=True, slots=True, eq=False)
class CartesianDirection:
    """
    Straight-line displacement request: unit direction, distance, frame.

    ``vector`` is normalized on construction. With ``frame == "TRF"`` it is
    expressed in the end-effector frame and rotated into the world frame by
    the planner.
    """

    vector: NDArray[np.float64]
    distance: float
    frame: Frame = "WRF"

    def __post_init__(self) -> None:
        vec = np.array(self.vector, dtype=np.float64).reshape(-1)
        if vec.shape != (3,):
            raise ValueError(f"direction must have 3 elements, got {vec.shape[0]}")
        norm = float(np.linalg.norm(vec))
        if not np.isfinite(norm) or norm < 1e-12:
            raise ValueError("direction vector must be non-zero and finite")
        distance = float(self.distance)
        if not np.isfinite(distance) or distance <= 0.0:
            raise ValueError(f"distance must be positive, got {self.distance}")
        if self.frame not in ("WRF", "TRF"):
            raise ValueError(f"Invalid frame: {self.frame}. Must be WRF or TRF")
        object.__setattr__(self, "vector", _frozen_vector(vec / norm, 3, "direction"))
        object.__setattr__(self, "distance", distance)

    def world_displacement(self, rotation_matrix: ArrayLike) -> NDArray[np.float64]:
        """Full displacement in the world frame given the start orientation."""
        vec = self.vector
        if self.frame == "TRF":
            vec = np.asarray(rotation_matrix, dtype=np.float64) @ vec
        return vec * self.distance

    def reversed(self) -> CartesianDirection:
        return CartesianDirection(-self.vector, self.distance, self.frame)


@dataclass(frozen=True, slots=True, eq=False)
class JointLimits:
    """Per-joint velocity and acceleration maxima. Zero means the joint may not move."""

    names: tuple[str, ...]
    velocity: NDArray[np.float64]
    acceleration: NDArray[np.float64]

    def __post_init__(self) -> None:
        names = tuple(self.names)
        vel = _frozen_vector(self.velocity, len(names), "velocity")
        acc = _frozen_vector(self.acceleration, len(names), "acceleration")
        if np.any(vel < 0.0) or np.any(acc < 0.0):
            raise ValueError("Joint limits must be non-negative")
        object.__setattr__(self, "names", names)
        object.__setattr__(self, "velocity", vel)
        object.__setattr__(self, "acceleration", acc)

    @classmethod
    def uniform(
        cls, names: Sequence[str], velocity: float, acceleration: float
    ) -> JointLimits:
        n = len(names)
        return cls(tuple(names), np.full(n, velocity), np.full(n, acceleration))

    def for_joints(self, names: Sequence[str]) -> JointLimits:
        """Limits re-ordered to ``names``; raises ValueError for unknown joints."""
        missing = [n for n in names if n not in self.names]
        if missing:
            raise ValueError(f"No limits defined for joints: {missing}")
        idx = [self.names.index(n) for n in names]
        return JointLimits(tuple(names), self.velocity[idx], self.acceleration[idx])


@dataclass(frozen=True, slots=True, eq=False)
class Trajectory:
    """
    Time-stamped waypoint sequence ready for execution.

    Attributes:
        group: Planning group the trajectory drives
        joint_names: Joint order for every waypoint
        waypoints: Ordered waypoints, each with ``time_from_start`` set
        limits: The joint limits the timing was computed against
    """

    group: str
    joint_names: tuple[str, ...]
    waypoints: tuple[Waypoint, ...]
    limits: JointLimits

    def __post_init__(self) -> None:
        waypoints = tuple(self.waypoints)
        names = tuple(self.joint_names)
        for i, wp in enumerate(waypoints):
            if wp.configuration.names != names or wp.configuration.group != self.group:
                raise ValueError(f"Waypoint {i} does not belong to {self.group}{names}")
            if wp.time_from_start is None:
                raise ValueError(f"Waypoint {i} has no time_from_start")
        object.__setattr__(self, "waypoints", waypoints)
        object.__setattr__(self, "joint_names", names)

    def __len__(self) -> int:
        return len(self.waypoints)

    def __getitem__(self, idx: int) -> Waypoint:
        return self.waypoints[idx]

    def __iter__(self) -> Iterator[Waypoint]:
        return iter(self.waypoints)

    @property
    def positions(self) -> NDArray[np.float64]:
        """(N, J) joint positions."""
        if not self.waypoints:
            return np.empty((0, len(self.joint_names)), dtype=np.float64)
        return np.stack([wp.positions for wp in self.waypoints])

    @property
    def times(self) -> NDArray[np.float64]:
        return np.array([wp.time_from_start for wp in self.waypoints], dtype=np.float64)

    @property
    def velocities(self) -> NDArray[np.float64]:
        n = len(self.joint_names)
        return np.array(
            [wp.velocities if wp.velocities is not None else np.zeros(n) for wp in self.waypoints],
            dtype=np.float64,
        ).reshape(-1, n)

    @property
    def accelerations(self) -> NDArray[np.float64]:
        n = len(self.joint_names)
        return np.array(
            [
                wp.accelerations if wp.accelerations is not None else np.zeros(n)
                for wp in self.waypoints
            ],
            dtype=np.float64,
        ).reshape(-1, n)

    @property
    def duration(self) -> float:
        if not self.waypoints:
            return 0.0
        return float(self.waypoints[-1].time_from_start or 0.0)

    def sample(self, t: float) -> NDArray[np.float64]:
        """Piecewise-linear joint positions at time ``t`` (clamped to the ends)."""
        if not self.waypoints:
            raise ValueError("Cannot sample an empty trajectory")
        times = self.times
        positions = self.positions
        if len(times) == 1:
            return positions[0].copy()
        return np.array(
            [np.interp(t, times, positions[:, j]) for j in range(positions.shape[1])]
        )


class ExecutionStatus(Enum):
    """Lifecycle of one submitted trajectory."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    PREEMPTED = "preempted"
    TIMED_OUT = "timed_out"
    CONTROL_FAILED = "control_failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ExecutionStatus.PENDING


@dataclass(frozen=True, slots=True, eq=False)
class GraspCandidate:
    """Grasp produced by an external generator. Read-only to the motion core."""

    pose: Pose
    approach: CartesianDirection
    retreat: CartesianDirection
    quality: float = 0.0
    id: str = ""


@dataclass(frozen=True, slots=True, eq=False)
class PoseGoal:
    """
    Full 6-DOF goal for a link, solved by the planning backend.

    ``target_offset`` is a point in the link frame that must reach
    ``pose.position``; the link origin itself ends up offset from it.
    """

    pose: Pose
    link: str
    tolerance_position: float
    tolerance_angle: float
    target_offset: NDArray[np.float64] = field(default=(0.0, 0.0, 0.0))  # type: ignore[assignment]
    planning_time: float = 5.0

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "target_offset", _frozen_vector(self.target_offset, 3, "target_offset")
        )
        if self.tolerance_position < 0.0 or self.tolerance_angle < 0.0:
            raise ValueError("Goal tolerances must be non-negative")

    def link_target(self) -> Pose:
        """Pose the link origin must reach for the offset point to hit the goal."""
        R = self.pose.rotation_matrix()
        return Pose(self.pose.position - R @ self.target_offset, self.pose.orientation)
