"""
Pick sequence state machine.

    AWAIT_SERVER -> AWAIT_ROBOT_STATE -> GENERATE_GRASP -> FILTER_GRASP ->
    APPROACH_HOVER -> APPROACH_STRAIGHT_LINE -> LIFT_STRAIGHT_LINE -> DONE

The first unrecoverable error ends the run with a failed StageResult naming
the stage and a FailureReason. Nothing is retried. Every suspension point
(server, joint state, execution) is bounded by a timeout from config.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import assert_never

from pickmotion.config import BASE_LINK, EE_PARENT_LINK, PLANNING_GROUP_NAME, OrchestratorConfig
from pickmotion.execution.state_monitor import IncompleteState, StateMonitor, StateReady
from pickmotion.execution.trajectory_executor import TrajectoryExecutor
from pickmotion.motion.cartesian_path import (
    CartesianPathPlanner,
    PathTruncation,
    StateValidityFn,
)
from pickmotion.motion.trajectory import TrajectoryTimeParameterizer
from pickmotion.protocol.interfaces import GraspPipeline, PosePlanner, VisualizationSink
from pickmotion.protocol.types import (
    CartesianDirection,
    ExecutionStatus,
    GraspCandidate,
    JointLimits,
    Pose,
    PoseGoal,
)
from pickmotion.utils.errors import (
    IncompleteStateError,
    InfeasibleLimitsError,
    PlanningError,
    RejectedSubmissionError,
)
from pickmotion.utils.ik import KinematicsSolver

logger = logging.getLogger(__name__)

_FRACTION_EPS = 1e-9


class Stage(Enum):
    AWAIT_SERVER = "await_server"
    AWAIT_ROBOT_STATE = "await_robot_state"
    GENERATE_GRASP = "generate_grasp"
    FILTER_GRASP = "filter_grasp"
    APPROACH_HOVER = "approach_hover"
    APPROACH_STRAIGHT_LINE = "approach_straight_line"
    LIFT_STRAIGHT_LINE = "lift_straight_line"
    DONE = "done"


class FailureReason(Enum):
    SERVER_UNAVAILABLE = "server_unavailable"
    INCOMPLETE_STATE = "incomplete_state"
    NO_GRASPS = "no_grasps"
    NO_GRASP_ACCEPTED = "no_grasp_accepted"
    PLANNING_FAILED = "planning_failed"
    UNREACHABLE_TARGET = "unreachable_target"
    PARTIAL_PATH = "partial_path"
    JUMP_DETECTED = "jump_detected"
    REJECTED_SUBMISSION = "rejected_submission"
    PREEMPTED = "preempted"
    TIMED_OUT = "timed_out"
    CONTROL_FAILED = "control_failed"
    GOAL_TOLERANCE_VIOLATED = "goal_tolerance_violated"
    BACKEND_ERROR = "backend_error"


@dataclass(frozen=True, slots=True)
class StageResult:
    """
    Outcome of one stage.

    Attributes:
        stage: The stage this result belongs to
        reason: None on success, otherwise why the stage failed
        detail: Human-readable context (missing joints, distances, ...)
        status: Execution status for motion stages
        achieved_distance: Straight-line stages: distance the path covered
        requested_distance: Straight-line stages: distance asked for
        elapsed: Wall time spent in the stage (s)
    """

    stage: Stage
    reason: FailureReason | None = None
    detail: str = ""
    status: ExecutionStatus | None = None
    achieved_distance: float | None = None
    requested_distance: float | None = None
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.reason is None


@dataclass(frozen=True, slots=True)
class TaskResult:
    """Ordered stage results of one run; the last one decides the outcome."""

    stages: tuple[StageResult, ...]
    grasp: GraspCandidate | None = None

    @property
    def succeeded(self) -> bool:
        return bool(self.stages) and self.stages[-1].stage is Stage.DONE

    @property
    def final(self) -> StageResult:
        return self.stages[-1]

    @property
    def failed_stage(self) -> Stage | None:
        return None if self.succeeded else self.final.stage

    @property
    def reason(self) -> FailureReason | None:
        return None if self.succeeded else self.final.reason

    def result_for(self, stage: Stage) -> StageResult | None:
        for r in self.stages:
            if r.stage is stage:
                return r
        return None


@dataclass(frozen=True, slots=True)
class PlanningContext:
    """Collaborators and robot description for one orchestrator."""

    kinematics: KinematicsSolver
    state_monitor: StateMonitor
    executor: TrajectoryExecutor
    pose_planner: PosePlanner
    grasp_pipeline: GraspPipeline
    joint_names: tuple[str, ...]
    limits: JointLimits
    visualizer: VisualizationSink | None = None
    group: str = PLANNING_GROUP_NAME
    ee_link: str = EE_PARENT_LINK
    base_frame: str = BASE_LINK
    validity_check: StateValidityFn | None = None


@dataclass
class _Run:
    object_pose: Pose
    candidates: Sequence[GraspCandidate] = field(default_factory=tuple)
    grasp: GraspCandidate | None = None


def _failure(stage: Stage, reason: FailureReason, detail: str, **kwargs) -> StageResult:
    return StageResult(stage, reason, detail, **kwargs)


class MotionOrchestrator:
    """Runs the vertical-approach pick sequence against a PlanningContext."""

    def __init__(
        self,
        context: PlanningContext,
        config: OrchestratorConfig | None = None,
        planner: CartesianPathPlanner | None = None,
        parameterizer: TrajectoryTimeParameterizer | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.context = context
        self.config = config or OrchestratorConfig()
        self.planner = planner or CartesianPathPlanner(context.kinematics)
        self.parameterizer = parameterizer or TrajectoryTimeParameterizer()
        self._sleep = sleep
        self._clock = clock

    def run(self, object_pose: Pose) -> TaskResult:
        """Run every stage in order, stopping at the first failure."""
        run = _Run(object_pose)
        approach = CartesianDirection((0.0, 0.0, -1.0), self.config.approach_distance)
        lift = CartesianDirection((0.0, 0.0, 1.0), self.config.lift_distance)

        stages: list[tuple[Stage, Callable[[], StageResult]]] = [
            (Stage.AWAIT_SERVER, self._await_server),
            (Stage.AWAIT_ROBOT_STATE, self._await_robot_state),
            (Stage.GENERATE_GRASP, lambda: self._generate_grasp(run)),
            (Stage.FILTER_GRASP, lambda: self._filter_grasp(run)),
            (Stage.APPROACH_HOVER, lambda: self._approach_hover(run)),
            (
                Stage.APPROACH_STRAIGHT_LINE,
                lambda: self._straight_line(Stage.APPROACH_STRAIGHT_LINE, approach),
            ),
            (
                Stage.LIFT_STRAIGHT_LINE,
                lambda: self._straight_line(Stage.LIFT_STRAIGHT_LINE, lift),
            ),
        ]
        settle_stages = (Stage.APPROACH_STRAIGHT_LINE, Stage.LIFT_STRAIGHT_LINE)

        results: list[StageResult] = []
        for stage, step in stages:
            logger.info("Stage %s", stage.name)
            t0 = self._clock()
            try:
                result = step()
            except Exception as e:
                logger.exception("Unexpected error in stage %s", stage.name)
                result = _failure(stage, FailureReason.BACKEND_ERROR, f"{type(e).__name__}: {e}")
            result = _with_elapsed(result, self._clock() - t0)
            results.append(result)

            if not result.ok:
                assert result.reason is not None
                logger.error(
                    "Stage %s failed: %s (%s)", stage.name, result.reason.name, result.detail
                )
                return TaskResult(tuple(results), run.grasp)

            if stage in settle_stages and self.config.settle_time > 0.0:
                self._sleep(self.config.settle_time)

        results.append(StageResult(Stage.DONE))
        logger.info("Pick sequence complete")
        return TaskResult(tuple(results), run.grasp)

    # ---- readiness ----

    def _await_server(self) -> StageResult:
        timeout = self.config.timeouts.server_wait
        if not self.context.pose_planner.wait_for_server(timeout):
            return _failure(
                Stage.AWAIT_SERVER,
                FailureReason.SERVER_UNAVAILABLE,
                f"planning backend not available after {timeout:.1f}s",
            )
        return StageResult(Stage.AWAIT_SERVER)

    def _await_robot_state(self) -> StageResult:
        ctx = self.context
        timeouts = self.config.timeouts
        match ctx.state_monitor.wait_for_complete_state(
            ctx.joint_names, timeouts.state_wait, timeouts.poll_interval
        ):
            case StateReady(waited=waited):
                return StageResult(Stage.AWAIT_ROBOT_STATE, detail=f"ready after {waited:.2f}s")
            case IncompleteState(missing=missing, waited=waited):
                return _failure(
                    Stage.AWAIT_ROBOT_STATE,
                    FailureReason.INCOMPLETE_STATE,
                    f"missing joints after {waited:.2f}s: {', '.join(missing)}",
                )
            case other:
                assert_never(other)

    # ---- grasps ----

    def _generate_grasp(self, run: _Run) -> StageResult:
        run.candidates = tuple(self.context.grasp_pipeline.generate_candidates(run.object_pose))
        if not run.candidates:
            return _failure(Stage.GENERATE_GRASP, FailureReason.NO_GRASPS, "no grasp candidates")
        return StageResult(Stage.GENERATE_GRASP, detail=f"{len(run.candidates)} candidates")

    def _filter_grasp(self, run: _Run) -> StageResult:
        run.grasp = self.context.grasp_pipeline.filter_and_select_best(run.candidates)
        if run.grasp is None:
            return _failure(
                Stage.FILTER_GRASP,
                FailureReason.NO_GRASP_ACCEPTED,
                f"none of {len(run.candidates)} candidates accepted",
            )
        return StageResult(Stage.FILTER_GRASP, detail=f"grasp {run.grasp.id}")

    # ---- motion ----

    def _approach_hover(self, run: _Run) -> StageResult:
        ctx = self.context
        cfg = self.config
        assert run.grasp is not None
        x, y, _ = run.grasp.pose.position
        hover = run.grasp.pose.with_position((x, y, cfg.hover_height))
        goal = PoseGoal(
            hover,
            ctx.ee_link,
            tolerance_position=cfg.tolerances.position,
            tolerance_angle=cfg.tolerances.angle,
            target_offset=(cfg.hover_x_offset, 0.0, 0.0),
            planning_time=cfg.timeouts.planning_time,
        )
        self._display_marker(hover)

        try:
            status = ctx.pose_planner.move_to_pose(
                ctx.group, goal, cfg.timeouts.planning_time + cfg.timeouts.execution_wait
            )
        except PlanningError as e:
            return _failure(Stage.APPROACH_HOVER, FailureReason.PLANNING_FAILED, str(e))

        failed = self._status_failure(Stage.APPROACH_HOVER, status)
        if failed is not None:
            return failed
        return self._check_goal(Stage.APPROACH_HOVER, goal.link_target(), status=status)

    def _straight_line(self, stage: Stage, direction: CartesianDirection) -> StageResult:
        ctx = self.context
        cfg = self.config
        line = cfg.straight_line

        try:
            start = ctx.state_monitor.current_configuration(ctx.group, ctx.joint_names)
        except IncompleteStateError as e:
            return _failure(stage, FailureReason.INCOMPLETE_STATE, str(e))

        path = self.planner.plan(
            direction,
            start,
            ctx.ee_link,
            line.max_step,
            line.jump_threshold,
            ctx.validity_check,
        )
        distances = {
            "achieved_distance": path.achieved_distance,
            "requested_distance": path.requested_distance,
        }

        # A jump on the first step leaves no waypoints but is still a jump.
        if path.is_unreachable and path.truncation is not PathTruncation.JUMP:
            detail = f"no step of the {direction.distance:.4f} m path reachable ({path.truncation.value})"
            return _failure(stage, FailureReason.UNREACHABLE_TARGET, detail, **distances)

        if path.fraction < line.min_path_fraction - _FRACTION_EPS:
            reason = (
                FailureReason.JUMP_DETECTED
                if path.truncation is PathTruncation.JUMP
                else FailureReason.PARTIAL_PATH
            )
            detail = (
                f"achieved {path.achieved_distance:.4f} of {path.requested_distance:.4f} m "
                f"({path.truncation.value} at step {path.failed_step})"
            )
            return _failure(stage, reason, detail, **distances)
        if path.is_partial:
            logger.warning(
                "%s: executing partial path %.4f of %.4f m (%s)",
                stage.name,
                path.achieved_distance,
                path.requested_distance,
                path.truncation.value,
            )

        try:
            trajectory = self.parameterizer.parameterize(path.configurations(), ctx.limits)
        except InfeasibleLimitsError as e:
            return _failure(stage, FailureReason.PLANNING_FAILED, str(e), **distances)

        try:
            handle = ctx.executor.submit(trajectory)
        except RejectedSubmissionError as e:
            return _failure(stage, FailureReason.REJECTED_SUBMISSION, str(e), **distances)

        status = ctx.executor.wait(handle, cfg.timeouts.execution_wait)
        failed = self._status_failure(stage, status, **distances)
        if failed is not None:
            return failed

        assert path.final_pose is not None
        return self._check_goal(stage, path.final_pose, status=status, **distances)

    def _status_failure(
        self, stage: Stage, status: ExecutionStatus, **kwargs
    ) -> StageResult | None:
        """Failed StageResult for a non-successful execution status, else None."""
        match status:
            case ExecutionStatus.SUCCEEDED:
                return None
            case ExecutionStatus.PREEMPTED:
                return _failure(
                    stage, FailureReason.PREEMPTED, "execution preempted", status=status, **kwargs
                )
            case ExecutionStatus.TIMED_OUT:
                return _failure(
                    stage, FailureReason.TIMED_OUT, "execution timed out", status=status, **kwargs
                )
            case ExecutionStatus.CONTROL_FAILED:
                return _failure(
                    stage, FailureReason.CONTROL_FAILED, "controller failure", status=status, **kwargs
                )
            case ExecutionStatus.PENDING:
                return _failure(
                    stage,
                    FailureReason.BACKEND_ERROR,
                    "execution still pending after wait",
                    status=status,
                    **kwargs,
                )
            case _:
                assert_never(status)

    def _check_goal(self, stage: Stage, expected: Pose, **kwargs) -> StageResult:
        """Compare the observed end-effector pose with ``expected``."""
        ctx = self.context
        tol = self.config.tolerances
        state = ctx.state_monitor.current_configuration(ctx.group, ctx.joint_names)
        observed = ctx.kinematics.link_pose(ctx.ee_link, state)
        pos_err = observed.position_distance(expected)
        ang_err = observed.angular_distance(expected)
        if pos_err > tol.position or ang_err > tol.angle:
            return _failure(
                stage,
                FailureReason.GOAL_TOLERANCE_VIOLATED,
                f"final pose off by {pos_err:.2e} m / {ang_err:.2e} rad",
                **kwargs,
            )
        logger.debug("%s reached goal (%.2e m, %.2e rad)", stage.name, pos_err, ang_err)
        return StageResult(stage, **kwargs)

    def _display_marker(self, pose: Pose) -> None:
        if self.context.visualizer is None:
            return
        try:
            self.context.visualizer.publish_pose_marker(pose)
        except Exception:
            logger.warning("Pose marker display failed", exc_info=True)


def _with_elapsed(result: StageResult, elapsed: float) -> StageResult:
    return dataclasses.replace(result, elapsed=elapsed)
