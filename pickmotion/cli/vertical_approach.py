"""Command-line runner for the vertical approach pick sequence on the simulated gantry."""

import argparse
import contextlib
import logging
import math

import pickmotion.config as cfg
from pickmotion.config import TRACE
from pickmotion.execution.display_publisher import DisplayPublisher, length_prefixed_writer
from pickmotion.execution.mock_backend import (
    GANTRY_LIMITS,
    GantryKinematics,
    MockActuator,
    MockPosePlanner,
)
from pickmotion.execution.state_monitor import StateMonitor
from pickmotion.execution.trajectory_executor import TrajectoryExecutor
from pickmotion.protocol.types import Pose
from pickmotion.task.grasps import BlockGraspPipeline
from pickmotion.task.orchestrator import MotionOrchestrator, PlanningContext

logger = logging.getLogger(__name__)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Vertical approach pick test against the simulated gantry"
    )
    parser.add_argument(
        "--block",
        type=float,
        nargs=3,
        default=(0.75, -0.3, 0.0),
        metavar=("X", "Y", "Z"),
        help="Block centre in the base frame (m)",
    )
    parser.add_argument("--block-yaw", type=float, default=0.0, help="Block yaw (deg)")
    parser.add_argument(
        "--start",
        type=float,
        nargs=4,
        default=(0.4, -0.2, 0.3, 0.0),
        metavar=("X", "Y", "Z", "YAW"),
        help="Initial gantry configuration (m, m, m, rad)",
    )
    parser.add_argument("--max-step", type=float, default=cfg.MAX_STEP_M)
    parser.add_argument("--jump-threshold", type=float, default=cfg.JUMP_THRESHOLD)
    parser.add_argument("--min-path-fraction", type=float, default=cfg.MIN_PATH_FRACTION)
    parser.add_argument(
        "--time-scale",
        type=float,
        default=1.0,
        help="Simulated playback speed relative to real time",
    )
    parser.add_argument(
        "--display-file",
        help="Write length-prefixed msgpack display messages to this file",
    )

    # Verbose logging options
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity; -v=INFO, -vv=DEBUG, -vvv=TRACE",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Enable quiet logging (WARNING level)",
    )
    parser.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set specific log level",
    )
    return parser.parse_args(argv)


def _log_level(args: argparse.Namespace) -> int:
    # Precedence: --log-level, then -v/-q, then PICKMOTION_TRACE, then INFO
    if args.log_level:
        if args.log_level == "TRACE":
            cfg.TRACE_ENABLED = True
            return TRACE
        return getattr(logging, args.log_level)
    if args.verbose >= 3:
        cfg.TRACE_ENABLED = True
        return TRACE
    if args.verbose >= 2:
        return logging.DEBUG
    if args.verbose == 1:
        return logging.INFO
    if args.quiet:
        return logging.WARNING
    if cfg.TRACE_ENABLED:
        return TRACE
    return logging.INFO


def main(argv: list[str] | None = None) -> int:
    """Entry point for the pickmotion-vertical-approach command."""
    args = _parse_args(argv)
    log_level = _log_level(args)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("numba").setLevel(max(log_level, logging.INFO))

    from pickmotion.utils.warmup import warmup_jit

    warmup_jit()

    try:
        config = cfg.OrchestratorConfig(
            straight_line=cfg.StraightLineConfig(
                max_step=args.max_step,
                jump_threshold=args.jump_threshold,
                min_path_fraction=args.min_path_fraction,
            )
        )
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    kinematics = GantryKinematics()
    monitor = StateMonitor()
    actuator = MockActuator(monitor, time_scale=args.time_scale)

    with contextlib.ExitStack() as stack:
        visualizer = None
        if args.display_file:
            stream = stack.enter_context(open(args.display_file, "wb"))
            visualizer = stack.enter_context(
                DisplayPublisher(
                    length_prefixed_writer(stream),
                    model_id="gantry",
                    frame_id=kinematics.base_link,
                )
            )

        executor = TrajectoryExecutor(
            actuator, visualizer, poll_interval=config.timeouts.poll_interval
        )
        pose_planner = MockPosePlanner(
            kinematics, monitor, executor, GANTRY_LIMITS, kinematics.joint_names
        )
        grasps = BlockGraspPipeline(
            kinematics,
            kinematics.ee_link,
            seed_provider=lambda: monitor.current_configuration(
                kinematics.group, kinematics.joint_names
            ),
            hover_height=config.hover_height,
            target_offset=(config.hover_x_offset, 0.0, 0.0),
        )
        context = PlanningContext(
            kinematics=kinematics,
            state_monitor=monitor,
            executor=executor,
            pose_planner=pose_planner,
            grasp_pipeline=grasps,
            joint_names=kinematics.joint_names,
            limits=GANTRY_LIMITS,
            visualizer=visualizer,
            group=kinematics.group,
            ee_link=kinematics.ee_link,
            base_frame=kinematics.base_link,
        )

        actuator.home(kinematics.configuration(*args.start))
        block = Pose.from_euler(args.block, (0.0, 0.0, math.radians(args.block_yaw)))
        logger.info("Picking block at %s", block)

        try:
            result = MotionOrchestrator(context, config).run(block)
        except KeyboardInterrupt:
            logger.info("Interrupted, stopping motion")
            actuator.stop(kinematics.group)
            return 130

    for stage in result.stages:
        outcome = stage.reason.name if stage.reason is not None else "ok"
        logger.info("%-24s %-24s %s", stage.stage.name, outcome, stage.detail)
    if not result.succeeded:
        final = result.final
        logger.error(
            "Pick failed in %s: %s",
            final.stage.name,
            final.reason.name if final.reason is not None else "unknown",
        )
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
