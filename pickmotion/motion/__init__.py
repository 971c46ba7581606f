"""
Motion pipeline: straight-line Cartesian paths and their time parameterization.

A Cartesian motion request becomes a joint-space waypoint sequence via
incremental IK (CartesianPathPlanner), which is then stamped with times
under joint velocity/acceleration limits (TrajectoryTimeParameterizer).
"""

from pickmotion.motion.cartesian_path import (
    CartesianPathPlanner,
    CartesianPathResult,
    PathTruncation,
)
from pickmotion.motion.trajectory import TrajectoryTimeParameterizer

__all__ = [
    "CartesianPathPlanner",
    "CartesianPathResult",
    "PathTruncation",
    "TrajectoryTimeParameterizer",
]
