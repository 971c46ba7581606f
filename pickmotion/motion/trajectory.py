"""
Iterative parabolic time parameterization of joint-space paths.

Each segment between consecutive waypoints is first given the shortest
duration allowed by the joint velocity limits (the slowest joint governs).
Forward and backward passes then stretch segments where the acceleration
implied at a waypoint exceeds the joint acceleration limit. The trajectory
starts and ends at rest.

Pipeline:
  1. Velocity pass: dt_k = max_j |dq_kj| / v_max_j
  2. Acceleration passes until no segment changes or the iteration cap hits
  3. Uniform stretch by sqrt(worst ratio) if a violation remains
  4. Cumulative time stamps, per-point velocities and accelerations
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence

import numpy as np
from numba import njit  # type: ignore[import-untyped]
from numpy.typing import NDArray

from pickmotion.protocol.types import (
    JointConfiguration,
    JointLimits,
    Trajectory,
    Waypoint,
)
from pickmotion.utils.errors import EmptyPathError, InfeasibleLimitsError

logger = logging.getLogger(__name__)

# Motion below this (rad or m) counts as stationary for limit checks
_MOTION_EPS: float = 1e-12
# Lower bound for a segment duration so duplicate waypoints stay well defined
_MIN_SEGMENT_TIME: float = 1e-6
# Per-point cap on 1.01 stretches within one pass (1.01**2000 ~ 4e8)
_MAX_STRETCH_STEPS: int = 2000


@njit(cache=True)
def _point_accel_ratio(
    dq: NDArray[np.float64], dt: NDArray[np.float64], amax: NDArray[np.float64], i: int
) -> float:
    """Worst |a| / a_max over joints at point ``i`` (0..n_seg)."""
    n_seg = dt.shape[0]
    t_before = dt[i - 1] if i > 0 else 0.0
    t_after = dt[i] if i < n_seg else 0.0
    worst = 0.0
    for j in range(dq.shape[1]):
        if amax[j] <= 0.0:
            continue
        v_in = dq[i - 1, j] / t_before if i > 0 else 0.0
        v_out = dq[i, j] / t_after if i < n_seg else 0.0
        a = 2.0 * (v_out - v_in) / (t_before + t_after)
        r = abs(a) / amax[j]
        if r > worst:
            worst = r
    return worst


@njit(cache=True)
def _acceleration_passes(
    dq: NDArray[np.float64],
    dt: NDArray[np.float64],
    amax: NDArray[np.float64],
    max_iterations: int,
    stretch: float,
) -> int:
    """Forward/backward stretching of ``dt`` in place. Returns passes used."""
    n_seg = dt.shape[0]
    iterations = 0
    updated = True
    while updated and iterations < max_iterations:
        updated = False
        iterations += 1

        # Forward: stretch the segment after each point
        for i in range(n_seg + 1):
            k = i if i < n_seg else i - 1
            steps = 0
            while _point_accel_ratio(dq, dt, amax, i) > 1.0 and steps < _MAX_STRETCH_STEPS:
                dt[k] *= stretch
                updated = True
                steps += 1

        # Backward: stretch the segment before each point
        for i in range(n_seg, -1, -1):
            k = i - 1 if i > 0 else 0
            steps = 0
            while _point_accel_ratio(dq, dt, amax, i) > 1.0 and steps < _MAX_STRETCH_STEPS:
                dt[k] *= stretch
                updated = True
                steps += 1

    return iterations


@njit(cache=True)
def _worst_accel_ratio(
    dq: NDArray[np.float64], dt: NDArray[np.float64], amax: NDArray[np.float64]
) -> float:
    worst = 0.0
    for i in range(dt.shape[0] + 1):
        r = _point_accel_ratio(dq, dt, amax, i)
        if r > worst:
            worst = r
    return worst


def _point_kinematics(
    dq: NDArray[np.float64], dt: NDArray[np.float64]
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Per-point velocities and accelerations, at rest at both ends."""
    n_seg, n_joints = dq.shape
    seg_vel = dq / dt[:, None]
    zero = np.zeros((1, n_joints))
    v_in = np.vstack([zero, seg_vel])
    v_out = np.vstack([seg_vel, zero])
    t_before = np.concatenate([[0.0], dt])
    t_after = np.concatenate([dt, [0.0]])

    velocities = 0.5 * (v_in + v_out)
    velocities[0] = 0.0
    velocities[-1] = 0.0
    accelerations = 2.0 * (v_out - v_in) / (t_before + t_after)[:, None]
    return velocities, accelerations


class TrajectoryTimeParameterizer:
    """
    Assigns time stamps to a waypoint sequence under joint limits.

    Stateless apart from its settings; ``parameterize`` is deterministic.

    Attributes:
        max_iterations: Cap on forward/backward acceleration passes
        velocity_scaling: Fraction of the velocity limits to use, in (0, 1]
        acceleration_scaling: Fraction of the acceleration limits to use, in (0, 1]
        stretch_factor: Multiplier applied to a segment per violating check
    """

    def __init__(
        self,
        max_iterations: int = 100,
        velocity_scaling: float = 1.0,
        acceleration_scaling: float = 1.0,
        stretch_factor: float = 1.01,
    ):
        if max_iterations < 1:
            raise ValueError(f"max_iterations must be >= 1, got {max_iterations}")
        if not 0.0 < velocity_scaling <= 1.0:
            raise ValueError(f"velocity_scaling must be in (0, 1], got {velocity_scaling}")
        if not 0.0 < acceleration_scaling <= 1.0:
            raise ValueError(
                f"acceleration_scaling must be in (0, 1], got {acceleration_scaling}"
            )
        if stretch_factor <= 1.0:
            raise ValueError(f"stretch_factor must be > 1, got {stretch_factor}")
        self.max_iterations = int(max_iterations)
        self.velocity_scaling = float(velocity_scaling)
        self.acceleration_scaling = float(acceleration_scaling)
        self.stretch_factor = float(stretch_factor)

    def parameterize(
        self,
        waypoints: Sequence[Waypoint | JointConfiguration],
        limits: JointLimits,
    ) -> Trajectory:
        """
        Time-parameterize ``waypoints`` under ``limits``.

        Args:
            waypoints: Ordered configurations of one chain (timing, if any, is ignored)
            limits: Velocity/acceleration limits for at least the chain's joints

        Returns:
            Trajectory starting at t=0 whose velocities and implied
            accelerations stay within the (scaled) limits

        Raises:
            EmptyPathError: No waypoints
            InfeasibleLimitsError: A joint with a zero limit has to move
            ValueError: Waypoints from different chains, or joints missing from ``limits``
        """
        if not waypoints:
            raise EmptyPathError("Cannot time-parameterize an empty path")

        configs = [
            wp.configuration if isinstance(wp, Waypoint) else wp for wp in waypoints
        ]
        first = configs[0]
        for i, cfg in enumerate(configs[1:], start=1):
            if not cfg.same_chain(first):
                raise ValueError(
                    f"Waypoint {i} belongs to {cfg.group}{cfg.names}, "
                    f"expected {first.group}{first.names}"
                )

        base = limits.for_joints(first.names)
        effective = JointLimits(
            base.names,
            base.velocity * self.velocity_scaling,
            base.acceleration * self.acceleration_scaling,
        )
        n_joints = len(first)

        if len(configs) == 1:
            zeros = np.zeros(n_joints)
            return Trajectory(
                first.group,
                first.names,
                (Waypoint(first, 0.0, zeros, zeros),),
                effective,
            )

        positions = np.stack([cfg.positions for cfg in configs])
        dq = np.ascontiguousarray(np.diff(positions, axis=0))
        moving = np.any(np.abs(dq) > _MOTION_EPS, axis=0)
        blocked = moving & ((effective.velocity <= 0.0) | (effective.acceleration <= 0.0))
        if np.any(blocked):
            names = [n for n, b in zip(first.names, blocked) if b]
            raise InfeasibleLimitsError(
                f"Joints {names} have a zero velocity/acceleration limit but must move"
            )

        # Velocity pass
        vmax = np.where(effective.velocity > 0.0, effective.velocity, np.inf)
        dt = np.max(np.abs(dq) / vmax, axis=1)
        dt = np.ascontiguousarray(np.maximum(dt, _MIN_SEGMENT_TIME))

        amax = np.ascontiguousarray(effective.acceleration, dtype=np.float64)
        passes = _acceleration_passes(
            dq, dt, amax, self.max_iterations, self.stretch_factor
        )

        worst = _worst_accel_ratio(dq, dt, amax)
        if worst > 1.0:
            scale = math.sqrt(worst)
            logger.debug(
                "Acceleration passes left ratio %.4f after %d passes, stretching all "
                "segments by %.4f",
                worst,
                passes,
                scale,
            )
            dt = dt * scale

        velocities, accelerations = _point_kinematics(dq, dt)
        times = np.concatenate([[0.0], np.cumsum(dt)])

        timed = tuple(
            Waypoint(cfg, float(times[i]), velocities[i], accelerations[i])
            for i, cfg in enumerate(configs)
        )
        logger.debug(
            "Parameterized %d waypoints of %s: duration %.3fs (%d passes)",
            len(timed),
            first.group,
            times[-1],
            passes,
        )
        return Trajectory(first.group, first.names, timed, effective)
