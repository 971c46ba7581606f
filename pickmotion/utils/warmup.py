"""
JIT warmup utilities.

Call warmup_jit() on startup to compile the numba kernels before the first
plan. With cache=True this is fast if the cache exists, slower on first run.
"""

import logging
import time

import numpy as np

from pickmotion.motion.cartesian_path import _consecutive_distances, _first_jump
from pickmotion.motion.trajectory import (
    _acceleration_passes,
    _point_accel_ratio,
    _worst_accel_ratio,
)

logger = logging.getLogger(__name__)


def warmup_jit() -> float:
    """
    Pre-compile all numba JIT functions by calling them with dummy data.

    Returns the time taken in seconds.
    """
    logger.info("Warming JIT...")
    start = time.perf_counter()

    positions = np.zeros((3, 4), dtype=np.float64)
    positions[1:, 0] = (0.001, 0.002)

    # pickmotion/motion/cartesian_path.py
    distances = _consecutive_distances(positions)
    _first_jump(distances, 10.0)

    # pickmotion/motion/trajectory.py
    dq = np.ascontiguousarray(np.diff(positions, axis=0))
    dt = np.full(2, 0.01, dtype=np.float64)
    amax = np.ones(4, dtype=np.float64)
    _point_accel_ratio(dq, dt, amax, 0)
    _acceleration_passes(dq, dt, amax, 1, 1.01)
    _worst_accel_ratio(dq, dt, amax)

    elapsed = time.perf_counter() - start
    logger.info("JIT warmup done in %.3fs", elapsed)
    return elapsed
