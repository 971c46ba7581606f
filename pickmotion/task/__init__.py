"""
Pick-and-place task layer: grasp selection and the staged motion sequence.
"""

from pickmotion.task.grasps import BlockGraspPipeline
from pickmotion.task.orchestrator import (
    FailureReason,
    MotionOrchestrator,
    PlanningContext,
    Stage,
    StageResult,
    TaskResult,
)

__all__ = [
    "BlockGraspPipeline",
    "FailureReason",
    "MotionOrchestrator",
    "PlanningContext",
    "Stage",
    "StageResult",
    "TaskResult",
]
