"""
Latest-known robot joint state, shared between one writer and many readers.

Every update publishes a new immutable RobotSnapshot under a lock, so a
reader always sees one complete snapshot and never a half-applied update.
The writer is either a background listener thread polling a joint-state
source or a simulator calling :meth:`StateMonitor.update` directly.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

from pickmotion.config import TRACE
from pickmotion.protocol.types import JointConfiguration
from pickmotion.utils.errors import IncompleteStateError

logger = logging.getLogger(__name__)

# Returns a (possibly partial) joint name -> position mapping, or None when
# nothing new is available.
JointStateSource = Callable[[], Mapping[str, float] | None]


@dataclass(frozen=True, slots=True)
class RobotSnapshot:
    """
    Immutable view of the joint state at one instant.

    Attributes:
        positions: Read-only joint name -> position mapping
        stamp: Monotonic time of the update that produced this snapshot
        generation: Increments by one per update, 0 before the first
    """

    positions: Mapping[str, float]
    stamp: float
    generation: int

    def missing(self, names: Sequence[str]) -> tuple[str, ...]:
        return tuple(n for n in names if n not in self.positions)

    def has_all(self, names: Sequence[str]) -> bool:
        return not self.missing(names)

    def configuration(self, group: str, names: Sequence[str]) -> JointConfiguration:
        """Configuration of ``names``; raises IncompleteStateError if any is unknown."""
        missing = self.missing(names)
        if missing:
            raise IncompleteStateError(missing)
        return JointConfiguration.from_mapping(group, names, self.positions)


@dataclass(frozen=True, slots=True)
class StateReady:
    snapshot: RobotSnapshot
    waited: float


@dataclass(frozen=True, slots=True)
class IncompleteState:
    missing: tuple[str, ...]
    waited: float


StateWaitResult = StateReady | IncompleteState

_EMPTY = RobotSnapshot(MappingProxyType({}), 0.0, 0)


class StateMonitor:
    """
    Thread-safe holder of the latest RobotSnapshot.

    Updates merge into the previous state, so partial joint-state messages
    (one per controller, say) accumulate into a complete picture.

    Waits block on the update condition, which runs on wall time. Pass a
    ``sleep`` matching a simulated ``clock`` to make waits advance that
    clock instead.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] | None = None,
    ):
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._changed = threading.Condition(self._lock)
        self._snapshot = _EMPTY

        self._listener: threading.Thread | None = None
        self._shutdown_event = threading.Event()

    def update(self, positions: Mapping[str, float]) -> RobotSnapshot:
        """Merge ``positions`` into the state and publish a new snapshot."""
        clean: dict[str, float] = {}
        for name, value in positions.items():
            v = float(value)
            if not math.isfinite(v):
                raise ValueError(f"Non-finite position for joint {name}: {value}")
            clean[name] = v

        with self._changed:
            merged = dict(self._snapshot.positions)
            merged.update(clean)
            snap = RobotSnapshot(
                MappingProxyType(merged),
                self._clock(),
                self._snapshot.generation + 1,
            )
            self._snapshot = snap
            self._changed.notify_all()
        logger.log(TRACE, "state generation %d: %s", snap.generation, clean)
        return snap

    def snapshot(self) -> RobotSnapshot:
        with self._lock:
            return self._snapshot

    def wait_for_update(self, after_generation: int, timeout: float) -> RobotSnapshot | None:
        """Block until a snapshot newer than ``after_generation`` exists."""
        with self._changed:
            ok = self._changed.wait_for(
                lambda: self._snapshot.generation > after_generation, timeout=timeout
            )
            return self._snapshot if ok else None

    def wait_for_complete_state(
        self,
        names: Sequence[str],
        timeout: float,
        poll_interval: float = 0.1,
    ) -> StateWaitResult:
        """
        Bounded wait until every joint in ``names`` has been published.

        Checks at least once, then every ``poll_interval`` seconds (or on any
        update) until ``timeout`` elapses. Unpublished joints are logged.
        """
        if poll_interval <= 0.0:
            raise ValueError("poll_interval must be positive")
        start = self._clock()
        deadline = start + max(0.0, timeout)

        while True:
            snap = self.snapshot()
            missing = snap.missing(names)
            now = self._clock()
            if not missing:
                return StateReady(snap, now - start)
            remaining = deadline - now
            if remaining <= 0.0:
                for name in missing:
                    logger.warning("Joint '%s' has not been published", name)
                logger.error(
                    "Joint state incomplete after %.2fs (%d of %d joints missing)",
                    now - start,
                    len(missing),
                    len(names),
                )
                return IncompleteState(missing, now - start)
            step = min(poll_interval, remaining)
            if self._sleep is not None:
                self._sleep(step)
                continue
            with self._changed:
                self._changed.wait_for(
                    lambda: self._snapshot.generation > snap.generation, timeout=step
                )

    def current_configuration(self, group: str, names: Sequence[str]) -> JointConfiguration:
        """Configuration of ``names`` from the latest snapshot."""
        return self.snapshot().configuration(group, names)

    # ---- background listener ----

    @property
    def listening(self) -> bool:
        return self._listener is not None and self._listener.is_alive()

    def start_listener(self, source: JointStateSource, interval: float = 0.01) -> None:
        """Poll ``source`` every ``interval`` seconds on a daemon thread."""
        if interval <= 0.0:
            raise ValueError("interval must be positive")
        if self.listening:
            raise RuntimeError("State listener already running")

        self._shutdown_event.clear()
        self._listener = threading.Thread(
            target=self._listen,
            args=(source, interval),
            daemon=True,
            name="StateMonitorListener",
        )
        self._listener.start()
        logger.info("State listener started (interval %.3fs)", interval)

    def stop_listener(self, timeout: float = 2.0) -> None:
        self._shutdown_event.set()
        listener = self._listener
        if listener is not None:
            listener.join(timeout=timeout)
            if listener.is_alive():
                logger.warning("State listener did not exit within %.1fs", timeout)
            else:
                logger.info("State listener stopped")
        self._listener = None

    def _listen(self, source: JointStateSource, interval: float) -> None:
        while not self._shutdown_event.is_set():
            try:
                positions = source()
                if positions:
                    self.update(positions)
            except Exception:
                logger.exception("Joint state source raised; listener keeps running")
            self._shutdown_event.wait(interval)
