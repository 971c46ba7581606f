"""Non-blocking display output using a queue drained by a background thread.

Pose markers and planned trajectories are queued immediately by the task
thread and encoded/written by a worker thread, so a slow or broken viewer
connection never delays motion.
"""

import logging
import queue
import struct
import threading
import time
from collections.abc import Callable
from typing import BinaryIO

from pickmotion.protocol import display
from pickmotion.protocol.interfaces import VisualizationSink
from pickmotion.protocol.types import Pose, Trajectory

logger = logging.getLogger(__name__)

# Writes one encoded display message
DisplayWriter = Callable[[bytes], None]

_STOP = object()


def length_prefixed_writer(stream: BinaryIO) -> DisplayWriter:
    """Writer framing each message as a 4-byte big-endian length plus payload."""

    def _write(payload: bytes) -> None:
        stream.write(struct.pack(">I", len(payload)))
        stream.write(payload)
        stream.flush()

    return _write


class DisplayPublisher(VisualizationSink):
    """Queue-backed VisualizationSink.

    Messages beyond ``max_pending`` are dropped with a warning rather than
    blocking the caller. Writer failures are logged and the worker keeps
    draining.
    """

    def __init__(
        self,
        writer: DisplayWriter,
        model_id: str = "robot",
        frame_id: str = "base",
        max_pending: int = 64,
    ):
        self._writer = writer
        self._model_id = model_id
        self._frame_id = frame_id
        self._queue: queue.Queue[object] = queue.Queue(maxsize=max_pending)
        self._worker: threading.Thread | None = None
        self._abandon = threading.Event()
        self._started = False
        self.published = 0
        self.dropped = 0

    def start(self) -> None:
        """Start the drain thread. Call once before publishing."""
        if self._started:
            return
        self._abandon = threading.Event()
        self._worker = threading.Thread(
            target=self._drain, args=(self._abandon,), daemon=True, name="DisplayPublisher"
        )
        self._worker.start()
        self._started = True

    def stop(self, timeout: float = 2.0) -> None:
        """Flush queued messages and stop the drain thread.

        Returns within ``timeout`` seconds. A worker stuck in its writer is
        abandoned and exits as soon as that write returns; messages still
        queued are then discarded.
        """
        if not self._started:
            return
        worker, abandon = self._worker, self._abandon
        self._worker = None
        self._started = False

        timeout = max(0.0, timeout)
        deadline = time.monotonic() + timeout
        try:
            self._queue.put(_STOP, timeout=timeout)
        except queue.Full:
            abandon.set()
            logger.warning(
                "Display queue still full after %.1fs, abandoning %d pending messages",
                timeout,
                self._queue.qsize(),
            )
            return
        if worker is not None:
            worker.join(timeout=max(0.0, deadline - time.monotonic()))
            if worker.is_alive():
                abandon.set()
                logger.warning("Display publisher did not drain within %.1fs", timeout)

    def __enter__(self) -> "DisplayPublisher":
        self.start()
        return self

    def __exit__(self, *exc: object) -> None:
        self.stop()

    def publish_pose_marker(self, pose: Pose) -> None:
        self._enqueue(pose)

    def publish_trajectory(self, trajectory: Trajectory) -> None:
        self._enqueue(trajectory)

    def _enqueue(self, item: object) -> None:
        try:
            self._queue.put_nowait(item)
        except queue.Full:
            self.dropped += 1
            logger.warning("Display queue full, dropping %s", type(item).__name__)

    def _to_message(self, item: object) -> display.DisplayMessage:
        if isinstance(item, Trajectory):
            return display.display_trajectory_from(item, self._model_id)
        if isinstance(item, Pose):
            return display.pose_marker_from(item, self._frame_id)
        raise TypeError(f"Cannot display {type(item).__name__}")

    def _drain(self, abandon: threading.Event) -> None:
        while not abandon.is_set():
            item = self._queue.get()
            if item is _STOP or abandon.is_set():
                return
            try:
                self._writer(display.encode(self._to_message(item)))
                self.published += 1
            except Exception:
                logger.warning("Display write failed", exc_info=True)
