"""
pickmotion Python Package

Motion choreography for pick-and-place: straight-line Cartesian paths by
incremental IK, iterative parabolic time parameterization, and trajectory
execution with timeouts and preemption, sequenced by a staged orchestrator.

Key components:
- CartesianPathPlanner: direction + distance -> joint-space waypoints
- TrajectoryTimeParameterizer: waypoints + joint limits -> timed trajectory
- TrajectoryExecutor: drives an ActuatorBackend, one trajectory per group
- MotionOrchestrator: vertical approach pick sequence over a PlanningContext
"""

from ._version import __version__
from .execution.state_monitor import StateMonitor
from .execution.trajectory_executor import TrajectoryExecutor
from .motion.cartesian_path import CartesianPathPlanner
from .motion.trajectory import TrajectoryTimeParameterizer
from .task.orchestrator import MotionOrchestrator, PlanningContext

__all__ = [
    "__version__",
    "CartesianPathPlanner",
    "MotionOrchestrator",
    "PlanningContext",
    "StateMonitor",
    "TrajectoryExecutor",
    "TrajectoryTimeParameterizer",
]
