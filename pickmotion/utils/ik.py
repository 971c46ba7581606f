"""
IK collaborator contract and helper functions.

The kinematic model and its solver live outside the motion core. Everything
here talks to them through :class:`KinematicsSolver`.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from pickmotion.protocol.types import JointConfiguration, Pose
from pickmotion.utils.errors import BackendError

logger = logging.getLogger(__name__)

# Rate limiting for IK warnings (a Cartesian path makes one call per step)
_ik_last_warn_time: float = 0.0
_IK_WARN_INTERVAL: float = 1.0  # Log at most once per second


def _rate_limited_warning(msg: str) -> None:
    """Log a warning with rate limiting to avoid spam."""
    global _ik_last_warn_time
    now = time.monotonic()
    if now - _ik_last_warn_time > _IK_WARN_INTERVAL:
        logger.warning(msg)
        _ik_last_warn_time = now


@dataclass
class SolveIKResult:
    """IK result with failure reason tracking."""

    q: NDArray[np.float64] | None
    success: bool
    iterations: int = 0
    residual: float = 0.0
    violations: str | None = None


class KinematicsSolver(ABC):
    """
    Kinematic model of the robot, as seen by the planner.

    Implementations must be stateless per call: no solver state may leak
    from one ``solve`` to the next, so one instance can be shared by every
    reader without locking.
    """

    @abstractmethod
    def has_solver(self, group: str, link: str) -> bool:
        """True when IK for ``link`` within ``group`` is available."""
        raise NotImplementedError

    @abstractmethod
    def link_pose(self, link: str, state: JointConfiguration) -> Pose:
        """Forward kinematics: world pose of ``link`` at ``state``."""
        raise NotImplementedError

    @abstractmethod
    def solve(
        self, group: str, link: str, target: Pose, seed: JointConfiguration
    ) -> SolveIKResult:
        """Joint positions placing ``link`` at ``target``, seeded by ``seed``."""
        raise NotImplementedError


def solve_ik(
    solver: KinematicsSolver,
    link: str,
    target: Pose,
    seed: JointConfiguration,
    quiet_logging: bool = False,
) -> SolveIKResult:
    """
    Ask ``solver`` for a configuration reaching ``target``.

    Ordinary failures come back as ``success=False`` with a reason in
    ``violations``. A successful result whose joint vector does not match
    the seed's chain is malformed and raises BackendError.

    Parameters
    ----------
    solver : KinematicsSolver
        Kinematic model to query
    link : str
        Link whose origin must reach ``target``
    target : Pose
        Desired world pose of ``link``
    seed : JointConfiguration
        Starting guess; also defines the group and joint order
    quiet_logging : bool
        Suppress the rate-limited failure warning

    Returns
    -------
    SolveIKResult
    """
    result = solver.solve(seed.group, link, target, seed)

    if result.success:
        if result.q is None or np.shape(result.q) != (len(seed),):
            raise BackendError(
                f"IK for {seed.group}/{link} returned {np.shape(result.q)} "
                f"joint values, expected {len(seed)}"
            )
        if not np.all(np.isfinite(result.q)):
            raise BackendError(f"IK for {seed.group}/{link} returned non-finite values")
    else:
        if result.violations is None:
            result.violations = "IK failed to solve."
        if not quiet_logging:
            _rate_limited_warning(result.violations)

    return result
