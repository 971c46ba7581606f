"""
Execution layer: robot state tracking, trajectory execution and display output.
"""

from pickmotion.execution.display_publisher import DisplayPublisher
from pickmotion.execution.state_monitor import (
    IncompleteState,
    RobotSnapshot,
    StateMonitor,
    StateReady,
)
from pickmotion.execution.trajectory_executor import (
    ExecutionHandle,
    ExecutionRecord,
    TrajectoryExecutor,
)

__all__ = [
    "DisplayPublisher",
    "ExecutionHandle",
    "ExecutionRecord",
    "IncompleteState",
    "RobotSnapshot",
    "StateMonitor",
    "StateReady",
    "TrajectoryExecutor",
]
