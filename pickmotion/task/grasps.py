"""Top-down grasps for a cube resting on a horizontal surface."""

import logging
import math
from collections.abc import Callable, Sequence

import numpy as np
from numpy.typing import ArrayLike

from pickmotion.config import BLOCK_SIZE_M, HOVER_HEIGHT_M, HOVER_X_OFFSET_M
from pickmotion.protocol.interfaces import GraspPipeline
from pickmotion.protocol.types import (
    CartesianDirection,
    GraspCandidate,
    JointConfiguration,
    Pose,
    PoseGoal,
)
from pickmotion.utils.ik import KinematicsSolver, solve_ik

logger = logging.getLogger(__name__)


class BlockGraspPipeline(GraspPipeline):
    """
    Generates vertical grasps around a block's z axis and keeps reachable ones.

    A cube looks the same every quarter turn, so candidates are spread over
    ``yaw_samples`` headings within +/-45 degrees of the block's yaw, with
    quality falling off away from it. A candidate is accepted when the link
    target of its hover pose has an IK solution from the current state.
    """

    def __init__(
        self,
        kinematics: KinematicsSolver,
        link: str,
        seed_provider: Callable[[], JointConfiguration] | None = None,
        block_size: float = BLOCK_SIZE_M,
        hover_height: float = HOVER_HEIGHT_M,
        target_offset: ArrayLike = (HOVER_X_OFFSET_M, 0.0, 0.0),
        yaw_samples: int = 4,
    ):
        self._kinematics = kinematics
        self._link = link
        self._seed_provider = seed_provider
        self._block_size = block_size
        self._hover_height = hover_height
        self._target_offset = np.asarray(target_offset, dtype=np.float64)
        self._yaw_samples = max(1, yaw_samples)

    def generate_candidates(self, object_pose: Pose) -> Sequence[GraspCandidate]:
        block_yaw = float(object_pose.rotation.as_euler("xyz")[2])
        top = object_pose.position + np.array([0.0, 0.0, self._block_size / 2.0])
        down = CartesianDirection((0.0, 0.0, -1.0), self._block_size / 2.0)

        candidates = []
        for i in range(self._yaw_samples):
            offset = (math.pi / 2.0) * i / self._yaw_samples
            if offset > math.pi / 4.0:
                offset -= math.pi / 2.0
            candidates.append(
                GraspCandidate(
                    pose=Pose.from_euler(top, (math.pi, 0.0, block_yaw + offset)),
                    approach=down,
                    retreat=down.reversed(),
                    quality=math.cos(2.0 * offset),
                    id=f"top_{i}",
                )
            )
        candidates.sort(key=lambda c: c.quality, reverse=True)
        logger.debug("Generated %d block grasps", len(candidates))
        return candidates

    def hover_goal(self, candidate: GraspCandidate) -> PoseGoal:
        """Goal above ``candidate`` at the hover height (tolerances unused here)."""
        x, y, _ = candidate.pose.position
        return PoseGoal(
            candidate.pose.with_position((x, y, self._hover_height)),
            self._link,
            tolerance_position=0.0,
            tolerance_angle=0.0,
            target_offset=self._target_offset,
        )

    def filter_and_select_best(
        self, candidates: Sequence[GraspCandidate]
    ) -> GraspCandidate | None:
        if not candidates:
            return None
        if self._seed_provider is None:
            return candidates[0]

        seed = self._seed_provider()
        for candidate in candidates:
            target = self.hover_goal(candidate).link_target()
            result = solve_ik(self._kinematics, self._link, target, seed, quiet_logging=True)
            if result.success:
                logger.info("Selected grasp %s (quality %.3f)", candidate.id, candidate.quality)
                return candidate
            logger.debug("Grasp %s rejected: %s", candidate.id, result.violations)
        return None
