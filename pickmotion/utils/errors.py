"""Exception hierarchy for pickmotion.

Ordinary unreachability is reported as a result value (zero or partial
achieved distance), never through these exceptions. They are reserved for
precondition violations and unexpected backend behaviour.
"""


class MotionError(Exception):
    """Base class for all pickmotion errors."""


class EmptyPathError(MotionError, ValueError):
    """A waypoint sequence that must be non-empty was empty."""


class InfeasibleLimitsError(MotionError, ValueError):
    """Joint limits forbid a motion the waypoints require."""


class RejectedSubmissionError(MotionError):
    """The actuator backend refused a trajectory before execution started."""


class IncompleteStateError(MotionError):
    """Required joints have not been observed yet."""

    def __init__(self, missing: tuple[str, ...], message: str | None = None):
        self.missing = tuple(missing)
        super().__init__(
            message or f"Joint state incomplete, missing: {', '.join(self.missing)}"
        )


class BackendError(MotionError):
    """A collaborator returned something malformed or failed unexpectedly."""


class PlanningError(MotionError):
    """The pose planner found no motion satisfying a goal."""
