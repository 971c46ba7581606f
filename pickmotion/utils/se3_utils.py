"""SE3 helpers built on sophuspy.

Bridges between :class:`pickmotion.protocol.types.Pose` and sophuspy
transforms, and provides the interpolation used for Cartesian stepping.
"""

import numpy as np
import sophuspy as sp
from numpy.typing import ArrayLike
from scipy.spatial.transform import Rotation

from pickmotion.protocol.types import Pose

__all__ = [
    "se3_from_pose",
    "pose_from_se3",
    "se3_interp",
    "se3_translate",
]


def se3_from_pose(pose: Pose) -> sp.SE3:
    """Create SE3 from a Pose."""
    return sp.SE3(pose.rotation_matrix(), pose.position)


def pose_from_se3(se3: sp.SE3) -> Pose:
    """Create a Pose from an SE3 transform."""
    return Pose(
        np.asarray(se3.translation(), dtype=np.float64),
        Rotation.from_matrix(se3.rotationMatrix()).as_quat(),
    )


def se3_interp(se3_1: sp.SE3, se3_2: sp.SE3, s: float) -> sp.SE3:
    """Interpolate on the SE3 manifold.

    For two poses that differ only by a translation this is exact linear
    interpolation of the origin.

    Args:
        se3_1: Start pose
        se3_2: End pose
        s: Interpolation factor [0, 1]

    Returns:
        Interpolated SE3 pose
    """
    delta = se3_1.inverse() * se3_2
    return se3_1 * sp.SE3.exp(delta.log() * s)


def se3_translate(se3: sp.SE3, delta: ArrayLike) -> sp.SE3:
    """Translate ``se3`` by a world-frame vector, keeping its orientation."""
    return sp.SE3(
        se3.rotationMatrix(),
        np.asarray(se3.translation(), dtype=np.float64) + np.asarray(delta, dtype=np.float64),
    )
