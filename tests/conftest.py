"""Shared fixtures: simulated gantry, fake clock and a scripted actuator."""

import pytest

from pickmotion.execution.mock_backend import GANTRY_LIMITS, GantryKinematics
from pickmotion.execution.state_monitor import StateMonitor
from pickmotion.protocol.interfaces import ActuatorBackend
from pickmotion.protocol.types import ExecutionStatus, JointConfiguration, Trajectory


class FakeClock:
    """Simulated monotonic clock; ``sleep`` advances it instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, dt: float) -> None:
        self.sleeps.append(dt)
        self.now += dt


class ScriptedActuator(ActuatorBackend):
    """
    Actuator that records calls and reports statuses from a script.

    Each ``status`` call pops the next scripted status; once the script is
    exhausted the last status repeats (PENDING if nothing was scripted).
    """

    def __init__(self, statuses=(), accept: bool = True):
        self.script = list(statuses)
        self.accept = accept
        self.current = ExecutionStatus.PENDING
        self.status_error: Exception | None = None
        self.calls: list[str] = []
        self.pushed: list[Trajectory] = []

    def count(self, name: str) -> int:
        return self.calls.count(name)

    def push(self, trajectory: Trajectory) -> bool:
        self.calls.append("push")
        if self.accept:
            self.pushed.append(trajectory)
        return self.accept

    def execute(self, group: str) -> None:
        self.calls.append("execute")
        self.current = ExecutionStatus.PENDING

    def status(self, group: str) -> ExecutionStatus:
        self.calls.append("status")
        if self.status_error is not None:
            raise self.status_error
        if self.script:
            self.current = self.script.pop(0)
        return self.current

    def stop(self, group: str) -> None:
        self.calls.append("stop")
        if self.current is ExecutionStatus.PENDING:
            self.current = ExecutionStatus.PREEMPTED

    def clear(self, group: str) -> None:
        self.calls.append("clear")


@pytest.fixture
def kinematics() -> GantryKinematics:
    return GantryKinematics()


@pytest.fixture
def limits():
    return GANTRY_LIMITS


@pytest.fixture
def hover_state(kinematics) -> JointConfiguration:
    """Gantry at the hover height used by the vertical approach."""
    return kinematics.configuration(0.6, -0.3, 0.09, 0.0)


@pytest.fixture
def monitor() -> StateMonitor:
    return StateMonitor()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scripted_actuator():
    """Factory for ScriptedActuator instances."""

    def _make(statuses=(), accept: bool = True) -> ScriptedActuator:
        return ScriptedActuator(statuses, accept)

    return _make
