"""
Simulated robot backend for demonstration and testing.

Provides a four-axis gantry (x, y, z translation plus wrist yaw, gripper
pointing down) behind the kinematics, actuator and pose-planner contracts.
The simulation works at the contract level, so the motion core cannot tell
it from real middleware.

Fault injection:
  - workspace bounds: IK fails for any target outside them, so a path that
    starts near the floor runs out after a known number of steps
  - ``flip_below_z``: below this height IK answers on another yaw branch,
    producing a joint-space jump in an otherwise smooth path
  - ``solver_available``: False makes ``has_solver`` report no IK solver
  - MockActuator ``reject_pushes`` / ``stall`` / ``fail_at_fraction``
"""

import logging
import math
import threading
import time
from collections.abc import Callable, Sequence

import numpy as np
from numpy.typing import ArrayLike, NDArray
from scipy.spatial.transform import Rotation

from pickmotion.config import BASE_LINK, EE_PARENT_LINK, PLANNING_GROUP_NAME, TRACE
from pickmotion.execution.state_monitor import StateMonitor
from pickmotion.execution.trajectory_executor import TrajectoryExecutor
from pickmotion.motion.trajectory import TrajectoryTimeParameterizer
from pickmotion.protocol.interfaces import ActuatorBackend, PosePlanner
from pickmotion.protocol.types import (
    ExecutionStatus,
    JointConfiguration,
    JointLimits,
    Pose,
    PoseGoal,
    Trajectory,
)
from pickmotion.utils.errors import BackendError, PlanningError
from pickmotion.utils.ik import KinematicsSolver, SolveIKResult, solve_ik

logger = logging.getLogger(__name__)

GANTRY_JOINTS: tuple[str, ...] = ("right_x", "right_y", "right_z", "right_yaw")
GANTRY_LOWER = np.array([-1.0, -1.0, 0.0, -3.0 * math.pi])
GANTRY_UPPER = np.array([1.5, 1.0, 1.0, 3.0 * math.pi])
GANTRY_LIMITS = JointLimits(
    GANTRY_JOINTS,
    velocity=np.array([0.5, 0.5, 0.5, 1.5]),
    acceleration=np.array([2.0, 2.0, 2.0, 4.0]),
)

# Gripper points down: tool z axis = -world z
_R_TOOL = Rotation.from_euler("x", math.pi)
_ORIENTATION_TOL = 1e-6


def top_down_orientation(yaw: float) -> NDArray[np.float64]:
    """Quaternion (xyzw) of a downward-pointing gripper rotated by ``yaw``."""
    return (Rotation.from_euler("z", yaw) * _R_TOOL).as_quat()


class GantryKinematics(KinematicsSolver):
    """
    Closed-form kinematics of the simulated gantry.

    Stateless per call: the answer depends only on the arguments and the
    construction-time fault settings.
    """

    def __init__(
        self,
        group: str = PLANNING_GROUP_NAME,
        ee_link: str = EE_PARENT_LINK,
        base_link: str = BASE_LINK,
        joint_names: Sequence[str] = GANTRY_JOINTS,
        lower: ArrayLike = GANTRY_LOWER,
        upper: ArrayLike = GANTRY_UPPER,
        flip_below_z: float | None = None,
        solver_available: bool = True,
    ):
        if len(joint_names) != 4:
            raise ValueError("The gantry has exactly four joints")
        self.group = group
        self.ee_link = ee_link
        self.base_link = base_link
        self.joint_names = tuple(joint_names)
        self.lower = np.asarray(lower, dtype=np.float64)
        self.upper = np.asarray(upper, dtype=np.float64)
        self.flip_below_z = flip_below_z
        self.solver_available = solver_available

    def configuration(self, x: float, y: float, z: float, yaw: float = 0.0) -> JointConfiguration:
        return JointConfiguration(self.group, self.joint_names, [x, y, z, yaw])

    def has_solver(self, group: str, link: str) -> bool:
        return self.solver_available and group == self.group and link == self.ee_link

    def link_pose(self, link: str, state: JointConfiguration) -> Pose:
        if link == self.base_link:
            return Pose()
        if link != self.ee_link:
            raise BackendError(f"Unknown link '{link}'")
        q = JointConfiguration.from_mapping(self.group, self.joint_names, state.as_dict()).positions
        return Pose(q[:3], top_down_orientation(q[3]))

    def solve(
        self, group: str, link: str, target: Pose, seed: JointConfiguration
    ) -> SolveIKResult:
        if not self.has_solver(group, link):
            return SolveIKResult(None, False, violations=f"No solver for {group}/{link}")

        xyz = target.position
        if np.any(xyz < self.lower[:3]) or np.any(xyz > self.upper[:3]):
            return SolveIKResult(
                None, False, violations=f"Target {np.round(xyz, 4).tolist()} outside workspace"
            )

        # Remaining rotation after removing the tool flip must be about world z
        m = (target.rotation * _R_TOOL.inv()).as_matrix()
        if abs(m[2, 2] - 1.0) > _ORIENTATION_TOL:
            return SolveIKResult(None, False, violations="Orientation not reachable (tilted)")
        principal = math.atan2(m[1, 0], m[0, 0])

        if self.flip_below_z is not None and xyz[2] < self.flip_below_z:
            reference = principal + 2.0 * math.pi
        else:
            reference = float(seed[self.joint_names[3]])
        yaw = principal + 2.0 * math.pi * round((reference - principal) / (2.0 * math.pi))
        if yaw < self.lower[3] or yaw > self.upper[3]:
            yaw = principal

        q = np.array([xyz[0], xyz[1], xyz[2], yaw])
        # Seed may list the joints in another order
        order = [self.joint_names.index(n) for n in seed.names]
        return SolveIKResult(q[order], True, iterations=1)


class MockActuator(ActuatorBackend):
    """
    Plays trajectories back in real time and publishes the joint state.

    One playback thread per running group. ``time_scale`` > 1 plays faster
    than real time.
    """

    def __init__(
        self,
        monitor: StateMonitor,
        rate_hz: float = 200.0,
        time_scale: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if rate_hz <= 0.0 or time_scale <= 0.0:
            raise ValueError("rate_hz and time_scale must be positive")
        self._monitor = monitor
        self._period = 1.0 / rate_hz
        self._time_scale = time_scale
        self._clock = clock

        self._lock = threading.Lock()
        self._loaded: dict[str, Trajectory] = {}
        self._status: dict[str, ExecutionStatus] = {}
        self._players: dict[str, tuple[threading.Thread, threading.Event]] = {}

        self.reject_pushes = False
        self.stall = False
        self.fail_at_fraction: float | None = None
        self.pushed: list[Trajectory] = []
        self.stops = 0

    def home(self, configuration: JointConfiguration) -> None:
        """Publish ``configuration`` as the current state."""
        self._monitor.update(configuration.as_dict())

    def push(self, trajectory: Trajectory) -> bool:
        if self.reject_pushes or len(trajectory) == 0:
            logger.warning("Mock actuator refusing trajectory on %s", trajectory.group)
            return False
        with self._lock:
            self._loaded[trajectory.group] = trajectory
            self.pushed.append(trajectory)
        return True

    def execute(self, group: str) -> None:
        with self._lock:
            trajectory = self._loaded.pop(group, None)
            if trajectory is None:
                raise BackendError(f"No trajectory loaded for {group}")
            self._status[group] = ExecutionStatus.PENDING
            if trajectory.duration <= 0.0 and not self.stall:
                self._publish(trajectory, trajectory.positions[-1])
                self._status[group] = ExecutionStatus.SUCCEEDED
                return
            stop = threading.Event()
            player = threading.Thread(
                target=self._play,
                args=(group, trajectory, stop),
                daemon=True,
                name=f"MockActuator-{group}",
            )
            self._players[group] = (player, stop)
        player.start()

    def status(self, group: str) -> ExecutionStatus:
        with self._lock:
            try:
                return self._status[group]
            except KeyError:
                raise BackendError(f"Nothing executed on {group}") from None

    def stop(self, group: str) -> None:
        with self._lock:
            self.stops += 1
            player = self._players.pop(group, None)
            if self._status.get(group) is ExecutionStatus.PENDING:
                self._status[group] = ExecutionStatus.PREEMPTED
        if player is not None:
            thread, stop = player
            stop.set()
            if thread is not threading.current_thread():
                thread.join(timeout=1.0)

    def clear(self, group: str) -> None:
        with self._lock:
            self._loaded.pop(group, None)

    def _publish(self, trajectory: Trajectory, q: NDArray[np.float64]) -> None:
        self._monitor.update(dict(zip(trajectory.joint_names, q.tolist())))

    def _finish(self, group: str, stop: threading.Event, status: ExecutionStatus) -> None:
        with self._lock:
            player = self._players.get(group)
            if player is None or player[1] is not stop:
                return
            if self._status.get(group) is ExecutionStatus.PENDING:
                self._status[group] = status
            del self._players[group]

    def _play(self, group: str, trajectory: Trajectory, stop: threading.Event) -> None:
        duration = trajectory.duration
        t0 = self._clock()
        while not stop.is_set():
            if self.stall:
                stop.wait(self._period)
                continue
            t = (self._clock() - t0) * self._time_scale
            if self.fail_at_fraction is not None and t >= self.fail_at_fraction * duration:
                logger.error("Mock actuator fault on %s at t=%.3fs", group, t)
                self._finish(group, stop, ExecutionStatus.CONTROL_FAILED)
                return
            self._publish(trajectory, trajectory.sample(t))
            logger.log(TRACE, "mock %s t=%.3f/%.3f", group, t, duration)
            if t >= duration:
                self._finish(group, stop, ExecutionStatus.SUCCEEDED)
                return
            stop.wait(self._period)


class MockPosePlanner(PosePlanner):
    """
    Pose planner backed by closed-form IK and a joint-space straight line.

    Executes through the shared TrajectoryExecutor so the one-trajectory-per-
    group rule covers pose moves too.
    """

    def __init__(
        self,
        kinematics: KinematicsSolver,
        monitor: StateMonitor,
        executor: TrajectoryExecutor,
        limits: JointLimits,
        joint_names: Sequence[str],
        parameterizer: TrajectoryTimeParameterizer | None = None,
        samples: int = 20,
        poll_interval: float = 0.05,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._kinematics = kinematics
        self._monitor = monitor
        self._executor = executor
        self._limits = limits
        self._joint_names = tuple(joint_names)
        self._parameterizer = parameterizer or TrajectoryTimeParameterizer()
        self._samples = max(2, samples)
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self.available = True
        self.goals: list[PoseGoal] = []

    def wait_for_server(self, timeout: float) -> bool:
        deadline = self._clock() + timeout
        while not self.available:
            remaining = deadline - self._clock()
            if remaining <= 0.0:
                return False
            self._sleep(min(self._poll_interval, remaining))
        return True

    def move_to_pose(self, group: str, goal: PoseGoal, timeout: float) -> ExecutionStatus:
        self.goals.append(goal)
        start = self._monitor.current_configuration(group, self._joint_names)
        result = solve_ik(self._kinematics, goal.link, goal.link_target(), start)
        if not result.success or result.q is None:
            raise PlanningError(f"No IK solution for {goal.link} at {goal.pose}: {result.violations}")

        target = start.with_positions(result.q)
        path = [
            start.with_positions(q)
            for q in np.linspace(start.positions, target.positions, self._samples)
        ]
        trajectory = self._parameterizer.parameterize(path, self._limits)
        logger.info(
            "Pose plan for %s: %.3fs (planning time budget %.1fs)",
            goal.link,
            trajectory.duration,
            goal.planning_time,
        )
        return self._executor.execute(trajectory, timeout)
