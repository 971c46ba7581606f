"""
Straight-line Cartesian path computation by incremental IK.

A requested displacement of a link is cut into equal steps no longer than
``max_step``. Each step is solved with IK seeded by the previous solution,
so the joint-space path stays on one solution branch as long as the solver
allows. The result reports how far the link actually got; a short or empty
path is a normal result, not an error.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numba import njit  # type: ignore[import-untyped]
from numpy.typing import NDArray

from pickmotion.config import TRACE
from pickmotion.protocol.types import (
    CartesianDirection,
    JointConfiguration,
    Pose,
    Waypoint,
)
from pickmotion.utils.ik import KinematicsSolver, solve_ik
from pickmotion.utils.se3_utils import (
    pose_from_se3,
    se3_from_pose,
    se3_interp,
    se3_translate,
)

logger = logging.getLogger(__name__)

StateValidityFn = Callable[[JointConfiguration], bool]

# Guards ceil() against 0.05 / 0.001 == 50.000000000000007
_STEP_EPS: float = 1e-9


class PathTruncation(Enum):
    """Why a Cartesian path stopped short of the requested distance."""

    NONE = "none"
    NO_SOLVER = "no_solver"
    IK_FAILURE = "ik_failure"
    INVALID_STATE = "invalid_state"
    JUMP = "jump"


@dataclass(frozen=True, slots=True, eq=False)
class CartesianPathResult:
    """
    Waypoints of a straight-line path and the distance they cover.

    Unpacks as ``waypoints, achieved_distance = result``.

    Attributes:
        start: Configuration the path starts from (not part of ``waypoints``)
        waypoints: One waypoint per completed step, in traversal order
        achieved_distance: Cartesian distance covered by ``waypoints``
        requested_distance: Distance that was asked for
        truncation: Cause of a short path, NONE for a complete one
        failed_step: 1-based step at which the path was cut, if any
        final_pose: Link pose at the last waypoint (start pose if empty)
    """

    start: JointConfiguration
    waypoints: tuple[Waypoint, ...]
    achieved_distance: float
    requested_distance: float
    truncation: PathTruncation = PathTruncation.NONE
    failed_step: int | None = None
    final_pose: Pose | None = None

    def __iter__(self) -> Iterator[object]:
        yield self.waypoints
        yield self.achieved_distance

    @property
    def is_unreachable(self) -> bool:
        return not self.waypoints

    @property
    def is_partial(self) -> bool:
        return bool(self.waypoints) and self.truncation is not PathTruncation.NONE

    @property
    def fraction(self) -> float:
        if self.requested_distance <= 0.0:
            return 0.0
        return self.achieved_distance / self.requested_distance

    def configurations(self) -> list[JointConfiguration]:
        """Start configuration followed by every waypoint configuration."""
        return [self.start] + [wp.configuration for wp in self.waypoints]


@njit(cache=True)
def _consecutive_distances(positions: NDArray[np.float64]) -> NDArray[np.float64]:
    """Sum-of-absolute-differences distance between consecutive rows."""
    n = positions.shape[0]
    out = np.zeros(max(n - 1, 0))
    for i in range(1, n):
        d = 0.0
        for j in range(positions.shape[1]):
            d += abs(positions[i, j] - positions[i - 1, j])
        out[i - 1] = d
    return out


@njit(cache=True)
def _first_jump(distances: NDArray[np.float64], factor: float) -> int:
    """Index of the first distance above ``mean * factor``, or -1."""
    n = distances.shape[0]
    if n == 0:
        return -1
    mean = 0.0
    for i in range(n):
        mean += distances[i]
    mean /= n
    limit = mean * factor
    for i in range(n):
        if distances[i] > limit:
            return i
    return -1


class CartesianPathPlanner:
    """
    Converts a direction and distance into joint-space waypoints.

    Stateless: every call to :meth:`plan` depends only on its arguments and
    the (stateless) kinematics collaborator, so identical inputs give
    identical paths.
    """

    def __init__(self, kinematics: KinematicsSolver):
        self._kinematics = kinematics

    def plan(
        self,
        direction: CartesianDirection,
        start_state: JointConfiguration,
        link_name: str,
        max_step: float,
        jump_threshold: float,
        validity_check: StateValidityFn | None = None,
    ) -> CartesianPathResult:
        """
        Compute the joint path moving ``link_name`` along ``direction``.

        Args:
            direction: Unit direction, distance and frame (WRF or TRF)
            start_state: Configuration the motion starts from
            link_name: Link whose origin follows the straight line
            max_step: Maximum Cartesian distance between consecutive waypoints (m)
            jump_threshold: Truncate before any joint-space step larger than
                this factor times the mean step; 0 disables the check
            validity_check: Optional predicate; a rejected configuration
                ends the path like an IK failure

        Returns:
            CartesianPathResult. ``achieved_distance == 0`` with no waypoints
            means the very first step failed.

        Raises:
            ValueError: If ``max_step`` is not positive or ``jump_threshold``
                is negative
        """
        if not (math.isfinite(max_step) and max_step > 0.0):
            raise ValueError(f"max_step must be positive, got {max_step}")
        if not (math.isfinite(jump_threshold) and jump_threshold >= 0.0):
            raise ValueError(f"jump_threshold must be non-negative, got {jump_threshold}")

        requested = direction.distance
        group = start_state.group

        if not self._kinematics.has_solver(group, link_name):
            logger.error(
                "No IK solver loaded for %s/%s - check the kinematics configuration",
                group,
                link_name,
            )
            return CartesianPathResult(
                start=start_state,
                waypoints=(),
                achieved_distance=0.0,
                requested_distance=requested,
                truncation=PathTruncation.NO_SOLVER,
                failed_step=1,
            )

        start_pose = self._kinematics.link_pose(link_name, start_state)
        start_se3 = se3_from_pose(start_pose)
        displacement = direction.world_displacement(start_pose.rotation_matrix())
        target_se3 = se3_translate(start_se3, displacement)

        n_steps = max(1, math.ceil(requested / max_step - _STEP_EPS))
        step_length = requested / n_steps
        logger.debug(
            "Cartesian path %s/%s: %.4f m along %s (%s) in %d steps",
            group,
            link_name,
            requested,
            np.round(direction.vector, 4).tolist(),
            direction.frame,
            n_steps,
        )

        waypoints: list[Waypoint] = []
        poses: list[Pose] = []
        truncation = PathTruncation.NONE
        failed_step: int | None = None
        seed = start_state

        for k in range(1, n_steps + 1):
            target = pose_from_se3(se3_interp(start_se3, target_se3, k / n_steps))
            ik_result = solve_ik(
                self._kinematics, link_name, target, seed, quiet_logging=True
            )
            if not ik_result.success or ik_result.q is None:
                truncation = PathTruncation.IK_FAILURE
                failed_step = k
                logger.debug(
                    "IK failed at step %d/%d: %s", k, n_steps, ik_result.violations
                )
                break

            config = seed.with_positions(ik_result.q)
            if validity_check is not None and not validity_check(config):
                truncation = PathTruncation.INVALID_STATE
                failed_step = k
                logger.debug("State rejected at step %d/%d", k, n_steps)
                break

            logger.log(TRACE, "step %d/%d q=%s", k, n_steps, config.positions)
            waypoints.append(Waypoint(config))
            poses.append(target)
            seed = config

        if jump_threshold > 0.0 and waypoints:
            positions = np.ascontiguousarray(
                np.vstack([start_state.positions] + [wp.positions for wp in waypoints]),
                dtype=np.float64,
            )
            jump_idx = _first_jump(_consecutive_distances(positions), jump_threshold)
            if jump_idx >= 0:
                logger.warning(
                    "Joint-space jump into waypoint %d/%d exceeds %.2fx the mean step, "
                    "truncating path",
                    jump_idx + 1,
                    len(waypoints),
                    jump_threshold,
                )
                waypoints = waypoints[:jump_idx]
                poses = poses[:jump_idx]
                truncation = PathTruncation.JUMP
                failed_step = jump_idx + 1

        if len(waypoints) == n_steps:
            achieved = requested
        else:
            achieved = len(waypoints) * step_length

        logger.info(
            "Cartesian path %s: achieved %.4f of %.4f m (%d waypoints, %s)",
            link_name,
            achieved,
            requested,
            len(waypoints),
            truncation.value,
        )

        return CartesianPathResult(
            start=start_state,
            waypoints=tuple(waypoints),
            achieved_distance=achieved,
            requested_distance=requested,
            truncation=truncation,
            failed_step=failed_step,
            final_pose=poses[-1] if poses else start_pose,
        )
