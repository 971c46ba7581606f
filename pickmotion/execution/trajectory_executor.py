"""
Trajectory execution against an actuator backend.

Each submitted trajectory gets a handle whose status moves from PENDING to
exactly one terminal status (SUCCEEDED, PREEMPTED, TIMED_OUT or
CONTROL_FAILED) and then never changes. At most one trajectory per actuator
group is in flight: submitting a new one preempts the old.
"""

import dataclasses
import itertools
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from pickmotion.config import POLL_INTERVAL_S, TRACE
from pickmotion.protocol.interfaces import ActuatorBackend, VisualizationSink
from pickmotion.protocol.types import ExecutionStatus, Trajectory
from pickmotion.utils.errors import RejectedSubmissionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionHandle:
    """Opaque reference to one submitted trajectory."""

    id: int
    group: str
    planned_duration: float


@dataclass
class ExecutionRecord:
    """Lifecycle bookkeeping for one handle."""

    handle_id: int
    group: str
    submitted_at: float
    status: ExecutionStatus = ExecutionStatus.PENDING
    finished_at: float | None = None
    detail: str = ""

    @property
    def elapsed(self) -> float | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.submitted_at


class TrajectoryExecutor:
    """
    Submits trajectories to an ActuatorBackend and tracks their outcome.

    ``clock`` and ``sleep`` drive the bounded polling in :meth:`wait`; tests
    substitute a simulated clock for them.

    Records of finished handles are kept for the most recent ``max_history``
    submissions; older ones are dropped and their handles become unknown.
    """

    def __init__(
        self,
        backend: ActuatorBackend,
        visualizer: VisualizationSink | None = None,
        poll_interval: float = POLL_INTERVAL_S,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        max_history: int = 64,
    ):
        if poll_interval <= 0.0:
            raise ValueError("poll_interval must be positive")
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self._backend = backend
        self._visualizer = visualizer
        self._poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep
        self._max_history = max_history

        self._lock = threading.RLock()
        self._records: dict[int, ExecutionRecord] = {}
        self._active: dict[str, int] = {}  # group -> in-flight handle id
        self._ids = itertools.count(1)

    # ---- submission ----

    def submit(self, trajectory: Trajectory) -> ExecutionHandle:
        """
        Load and start ``trajectory``.

        Any in-flight trajectory of the same group is stopped first and its
        handle becomes PREEMPTED.

        Raises:
            RejectedSubmissionError: Empty trajectory or the backend refused it.
                No handle exists in that case.
        """
        group = trajectory.group
        if len(trajectory) == 0:
            raise RejectedSubmissionError(f"Refusing to execute an empty trajectory on {group}")

        self._visualize(trajectory)

        with self._lock:
            prev_id = self._active.get(group)
            if prev_id is not None and not self._records[prev_id].status.is_terminal:
                logger.warning(
                    "Preempting trajectory %d on %s for a new submission", prev_id, group
                )
                self._backend.stop(group)
                self._finish(prev_id, ExecutionStatus.PREEMPTED, "superseded")

            self._backend.clear(group)
            if not self._backend.push(trajectory):
                raise RejectedSubmissionError(
                    f"Backend refused trajectory of {len(trajectory)} waypoints on {group}"
                )

            handle = ExecutionHandle(next(self._ids), group, trajectory.duration)
            self._records[handle.id] = ExecutionRecord(handle.id, group, self._clock())
            self._active[group] = handle.id
            self._prune()
            try:
                self._backend.execute(group)
            except Exception as e:
                self._finish(handle.id, ExecutionStatus.CONTROL_FAILED, f"execute failed: {e}")
                raise

        logger.info(
            "Executing trajectory %d on %s: %d waypoints, %.3fs",
            handle.id,
            group,
            len(trajectory),
            trajectory.duration,
        )
        return handle

    def _visualize(self, trajectory: Trajectory) -> None:
        if self._visualizer is None:
            return
        try:
            self._visualizer.publish_trajectory(trajectory)
        except Exception:
            logger.warning("Trajectory display failed; executing anyway", exc_info=True)

    # ---- status ----

    def _get(self, handle_id: int) -> ExecutionRecord:
        try:
            return self._records[handle_id]
        except KeyError:
            raise KeyError(f"Unknown or expired execution handle {handle_id}") from None

    def _prune(self) -> None:
        """Drop the oldest finished records beyond ``max_history``. Caller holds the lock."""
        excess = len(self._records) - self._max_history
        if excess <= 0:
            return
        stale = [hid for hid, rec in self._records.items() if rec.status.is_terminal][:excess]
        for hid in stale:
            del self._records[hid]
        logger.log(TRACE, "dropped %d finished execution records", len(stale))

    def _finish(self, handle_id: int, status: ExecutionStatus, detail: str = "") -> None:
        """Move a record to a terminal status. Caller holds the lock."""
        record = self._get(handle_id)
        if record.status.is_terminal:
            return
        record.status = status
        record.finished_at = self._clock()
        record.detail = detail
        if self._active.get(record.group) == handle_id:
            del self._active[record.group]

    def _poll(self, handle: ExecutionHandle) -> ExecutionStatus:
        with self._lock:
            record = self._get(handle.id)
            if record.status.is_terminal:
                return record.status
            try:
                status = self._backend.status(handle.group)
            except Exception as e:
                logger.exception("Status query failed for trajectory %d", handle.id)
                self._finish(handle.id, ExecutionStatus.CONTROL_FAILED, f"status failed: {e}")
                return record.status
            if status.is_terminal:
                self._finish(handle.id, status)
            return record.status

    def status(self, handle: ExecutionHandle) -> ExecutionStatus:
        """Current status of ``handle`` (queries the backend while pending)."""
        return self._poll(handle)

    def record(self, handle: ExecutionHandle) -> ExecutionRecord:
        """Copy of the bookkeeping for ``handle``; KeyError once it has expired."""
        with self._lock:
            return dataclasses.replace(self._get(handle.id))

    def active_handle(self, group: str) -> int | None:
        with self._lock:
            return self._active.get(group)

    # ---- waiting and cancellation ----

    def wait(self, handle: ExecutionHandle, timeout: float) -> ExecutionStatus:
        """
        Poll until ``handle`` is terminal or ``timeout`` seconds pass.

        On timeout the backend motion is stopped and the handle becomes
        TIMED_OUT. There is no retry.
        """
        deadline = self._clock() + max(0.0, timeout)
        while True:
            status = self._poll(handle)
            if status.is_terminal:
                logger.debug("Trajectory %d finished: %s", handle.id, status.name)
                return status
            remaining = deadline - self._clock()
            if remaining <= 0.0:
                break
            logger.log(TRACE, "trajectory %d pending, %.3fs left", handle.id, remaining)
            self._sleep(min(self._poll_interval, remaining))

        with self._lock:
            record = self._get(handle.id)
            if not record.status.is_terminal:
                logger.error(
                    "Trajectory %d on %s did not finish within %.2fs; stopping",
                    handle.id,
                    handle.group,
                    timeout,
                )
                try:
                    self._backend.stop(handle.group)
                finally:
                    self._finish(handle.id, ExecutionStatus.TIMED_OUT, f"timeout {timeout:.2f}s")
            return record.status

    def cancel(self, handle: ExecutionHandle) -> ExecutionStatus:
        """Stop ``handle`` if still pending. Terminal handles keep their status."""
        with self._lock:
            record = self._get(handle.id)
            if record.status.is_terminal:
                return record.status
            logger.info("Cancelling trajectory %d on %s", handle.id, handle.group)
            try:
                self._backend.stop(handle.group)
            finally:
                self._finish(handle.id, ExecutionStatus.PREEMPTED, "cancelled")
            return record.status

    def execute(self, trajectory: Trajectory, timeout: float) -> ExecutionStatus:
        """Submit ``trajectory`` and wait for it."""
        return self.wait(self.submit(trajectory), timeout)
