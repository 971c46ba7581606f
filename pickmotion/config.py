"""
Central configuration for pickmotion tunables and shared constants.

Every default used by the task layer lives here and can be overridden through
``PICKMOTION_*`` environment variables. The planning and timing algorithms
never read this module; callers pass values in explicitly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

TRACE: int = 5
logging.addLevelName(TRACE, "TRACE")
# Add Logger.trace if missing
if not hasattr(logging.Logger, "trace"):

    def _trace(self, msg, *args, **kwargs):
        if self.isEnabledFor(TRACE):
            self._log(TRACE, msg, args, **kwargs)

    logging.Logger.trace = _trace  # type: ignore[attr-defined]
    logging.TRACE = TRACE  # type: ignore[attr-defined]

TRACE_ENABLED = str(os.getenv("PICKMOTION_TRACE", "0")).lower() in (
    "1",
    "true",
    "yes",
    "on",
)

logger = logging.getLogger(__name__)

LOG_LEVEL_DEFAULT: str = "INFO"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    return raw.strip() if raw and raw.strip() else default


# Robot description (names match the simulated gantry in execution.mock_backend)
PLANNING_GROUP_NAME: str = _env_str("PICKMOTION_GROUP", "right_arm")
EE_PARENT_LINK: str = _env_str("PICKMOTION_EE_LINK", "right_wrist")
BASE_LINK: str = _env_str("PICKMOTION_BASE_LINK", "base")

# Cartesian path discretization (m) and joint-space jump factor (0 disables)
MAX_STEP_M: float = _env_float("PICKMOTION_MAX_STEP", 0.001)
JUMP_THRESHOLD: float = _env_float("PICKMOTION_JUMP_THRESHOLD", 0.0)

# Goal tolerances
TOLERANCE_POSITION_M: float = _env_float("PICKMOTION_TOL_POS", 1e-4)
TOLERANCE_ANGLE_RAD: float = _env_float("PICKMOTION_TOL_ANGLE", 1e-2)

# Pick geometry
HOVER_HEIGHT_M: float = _env_float("PICKMOTION_HOVER_HEIGHT", 0.09)
HOVER_X_OFFSET_M: float = _env_float("PICKMOTION_HOVER_X_OFFSET", 0.15)
APPROACH_DISTANCE_M: float = _env_float("PICKMOTION_APPROACH_DISTANCE", 0.05)
LIFT_DISTANCE_M: float = _env_float("PICKMOTION_LIFT_DISTANCE", 0.05)
BLOCK_SIZE_M: float = _env_float("PICKMOTION_BLOCK_SIZE", 0.04)

# Timeouts and polling (s)
SERVER_WAIT_S: float = _env_float("PICKMOTION_SERVER_WAIT", 4.0)
STATE_WAIT_S: float = _env_float("PICKMOTION_STATE_WAIT", 5.0)
EXECUTION_WAIT_S: float = _env_float("PICKMOTION_EXECUTION_WAIT", 5.0)
PLANNING_TIME_S: float = _env_float("PICKMOTION_PLANNING_TIME", 5.0)
POLL_INTERVAL_S: float = _env_float("PICKMOTION_POLL_INTERVAL", 0.1)
SETTLE_TIME_S: float = _env_float("PICKMOTION_SETTLE_TIME", 0.5)

# Fraction of a requested straight-line distance that must be achieved
MIN_PATH_FRACTION: float = _env_float("PICKMOTION_MIN_PATH_FRACTION", 1.0)


@dataclass(frozen=True, slots=True)
class StraightLineConfig:
    """Discretization settings for Cartesian straight-line stages."""

    max_step: float = MAX_STEP_M
    jump_threshold: float = JUMP_THRESHOLD
    min_path_fraction: float = MIN_PATH_FRACTION

    def __post_init__(self) -> None:
        if self.max_step <= 0.0:
            raise ValueError(f"max_step must be positive, got {self.max_step}")
        if self.jump_threshold < 0.0:
            raise ValueError(
                f"jump_threshold must be non-negative, got {self.jump_threshold}"
            )
        if not 0.0 < self.min_path_fraction <= 1.0:
            raise ValueError(
                f"min_path_fraction must be in (0, 1], got {self.min_path_fraction}"
            )


@dataclass(frozen=True, slots=True)
class Tolerances:
    """Final-pose tolerances (metres, radians)."""

    position: float = TOLERANCE_POSITION_M
    angle: float = TOLERANCE_ANGLE_RAD


@dataclass(frozen=True, slots=True)
class Timeouts:
    """Upper bounds for every suspension point of a task run."""

    server_wait: float = SERVER_WAIT_S
    state_wait: float = STATE_WAIT_S
    execution_wait: float = EXECUTION_WAIT_S
    planning_time: float = PLANNING_TIME_S
    poll_interval: float = POLL_INTERVAL_S

    def __post_init__(self) -> None:
        for name in ("server_wait", "state_wait", "execution_wait", "planning_time"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"{name} must be non-negative")
        if self.poll_interval <= 0.0:
            raise ValueError("poll_interval must be positive")


@dataclass(frozen=True, slots=True)
class OrchestratorConfig:
    """Everything the pick sequence needs besides its collaborators."""

    straight_line: StraightLineConfig = field(default_factory=StraightLineConfig)
    tolerances: Tolerances = field(default_factory=Tolerances)
    timeouts: Timeouts = field(default_factory=Timeouts)
    hover_height: float = HOVER_HEIGHT_M
    hover_x_offset: float = HOVER_X_OFFSET_M
    approach_distance: float = APPROACH_DISTANCE_M
    lift_distance: float = LIFT_DISTANCE_M
    settle_time: float = SETTLE_TIME_S
