"""
Contracts the motion core requires from its collaborators.

Concrete middleware (a robot driver, a motion planning server, a grasp
generator, a viewer) plugs in by subclassing these. The kinematics contract
lives in :mod:`pickmotion.utils.ik` next to the IK helpers.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence

from pickmotion.protocol.types import (
    ExecutionStatus,
    GraspCandidate,
    Pose,
    PoseGoal,
    Trajectory,
)


class ActuatorBackend(ABC):
    """
    Trajectory execution interface of an actuator (real or simulated).

    One trajectory per group at a time: ``push`` loads it, ``execute``
    starts it, ``status`` reports progress, ``stop`` aborts it and ``clear``
    drops anything loaded but not yet finished.
    """

    @abstractmethod
    def push(self, trajectory: Trajectory) -> bool:
        """Load ``trajectory``. False means the backend refuses it outright."""
        raise NotImplementedError

    @abstractmethod
    def execute(self, group: str) -> None:
        """Start the loaded trajectory for ``group``."""
        raise NotImplementedError

    @abstractmethod
    def status(self, group: str) -> ExecutionStatus:
        """Status of the most recently pushed trajectory for ``group``."""
        raise NotImplementedError

    @abstractmethod
    def stop(self, group: str) -> None:
        """Abort motion of ``group``; its status becomes PREEMPTED."""
        raise NotImplementedError

    @abstractmethod
    def clear(self, group: str) -> None:
        """Forget any loaded trajectory for ``group``."""
        raise NotImplementedError


class PosePlanner(ABC):
    """Full motion-planning backend used for free-space pose goals."""

    @abstractmethod
    def wait_for_server(self, timeout: float) -> bool:
        """Block up to ``timeout`` seconds for the backend to become available."""
        raise NotImplementedError

    @abstractmethod
    def move_to_pose(self, group: str, goal: PoseGoal, timeout: float) -> ExecutionStatus:
        """Plan and execute a motion of ``group`` satisfying ``goal``."""
        raise NotImplementedError


class GraspPipeline(ABC):
    """Grasp generation and filtering."""

    @abstractmethod
    def generate_candidates(self, object_pose: Pose) -> Sequence[GraspCandidate]:
        """Candidates ordered by descending quality."""
        raise NotImplementedError

    @abstractmethod
    def filter_and_select_best(
        self, candidates: Sequence[GraspCandidate]
    ) -> GraspCandidate | None:
        """First acceptable candidate, or None."""
        raise NotImplementedError


class VisualizationSink(ABC):
    """Display output. Calls must not block; failures must not reach the caller."""

    @abstractmethod
    def publish_pose_marker(self, pose: Pose) -> None:
        raise NotImplementedError

    @abstractmethod
    def publish_trajectory(self, trajectory: Trajectory) -> None:
        raise NotImplementedError
