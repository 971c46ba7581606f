"""Unit tests for pickmotion.execution.state_monitor."""

import logging
import threading

import pytest

from pickmotion.execution.state_monitor import IncompleteState, StateMonitor, StateReady
from pickmotion.utils.errors import IncompleteStateError

pytestmark = pytest.mark.unit

NAMES = ("right_x", "right_y", "right_z", "right_yaw")


class TestSnapshots:
    def test_updates_merge_and_bump_generation(self, monitor):
        monitor.update({"right_x": 0.1, "right_y": 0.2})
        snap = monitor.update({"right_z": 0.3})
        assert snap.generation == 2
        assert dict(snap.positions) == {"right_x": 0.1, "right_y": 0.2, "right_z": 0.3}

    def test_snapshot_is_read_only(self, monitor):
        snap = monitor.update({"right_x": 0.1})
        with pytest.raises(TypeError):
            snap.positions["right_x"] = 1.0  # type: ignore[index]

    def test_old_snapshot_unchanged_by_later_update(self, monitor):
        first = monitor.update({"right_x": 0.1})
        monitor.update({"right_x": 0.5})
        assert first.positions["right_x"] == 0.1
        assert monitor.snapshot().positions["right_x"] == 0.5

    def test_non_finite_rejected(self, monitor):
        with pytest.raises(ValueError):
            monitor.update({"right_x": float("nan")})
        assert monitor.snapshot().generation == 0

    def test_current_configuration(self, monitor):
        monitor.update({n: float(i) for i, n in enumerate(NAMES)})
        cfg = monitor.current_configuration("right_arm", NAMES)
        assert cfg.positions.tolist() == [0.0, 1.0, 2.0, 3.0]

    def test_current_configuration_incomplete(self, monitor):
        monitor.update({"right_x": 0.0})
        with pytest.raises(IncompleteStateError) as exc:
            monitor.current_configuration("right_arm", NAMES)
        assert exc.value.missing == ("right_y", "right_z", "right_yaw")


class TestWaitForCompleteState:
    def test_ready_immediately(self, monitor):
        monitor.update({n: 0.0 for n in NAMES})
        result = monitor.wait_for_complete_state(NAMES, timeout=1.0, poll_interval=0.01)
        assert isinstance(result, StateReady)
        assert result.snapshot.has_all(NAMES)

    def test_times_out_and_logs_missing(self, monitor, caplog):
        monitor.update({"right_x": 0.0, "right_y": 0.0, "right_z": 0.0})
        with caplog.at_level(logging.WARNING, logger="pickmotion.execution.state_monitor"):
            result = monitor.wait_for_complete_state(NAMES, timeout=0.05, poll_interval=0.01)
        assert isinstance(result, IncompleteState)
        assert result.missing == ("right_yaw",)
        assert result.waited >= 0.05
        assert "right_yaw" in caplog.text

    def test_zero_timeout_checks_once(self, monitor):
        result = monitor.wait_for_complete_state(NAMES, timeout=0.0)
        assert isinstance(result, IncompleteState)
        assert result.missing == NAMES

    def test_becomes_ready_on_update(self, monitor):
        timer = threading.Timer(0.05, monitor.update, args=({n: 0.0 for n in NAMES},))
        timer.start()
        try:
            result = monitor.wait_for_complete_state(NAMES, timeout=2.0, poll_interval=0.5)
        finally:
            timer.cancel()
        assert isinstance(result, StateReady)
        assert result.waited < 2.0


class TestListener:
    def test_listener_publishes_source_values(self, monitor):
        values = {n: 0.25 for n in NAMES}
        monitor.start_listener(lambda: values, interval=0.005)
        try:
            assert monitor.listening
            snap = monitor.wait_for_update(0, timeout=2.0)
            assert snap is not None
            assert snap.positions["right_z"] == 0.25
        finally:
            monitor.stop_listener()
        assert not monitor.listening

    def test_listener_survives_source_errors(self, monitor):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("driver hiccup")
            return {"right_x": 1.0}

        monitor.start_listener(flaky, interval=0.005)
        try:
            assert monitor.wait_for_update(0, timeout=2.0) is not None
        finally:
            monitor.stop_listener()

    def test_listener_skips_empty_reads(self, monitor):
        monitor.start_listener(lambda: None, interval=0.005)
        try:
            assert monitor.wait_for_update(0, timeout=0.05) is None
        finally:
            monitor.stop_listener()

    def test_second_listener_rejected(self, monitor):
        monitor.start_listener(lambda: None, interval=0.01)
        try:
            with pytest.raises(RuntimeError):
                monitor.start_listener(lambda: None, interval=0.01)
        finally:
            monitor.stop_listener()


class TestSimulatedClock:
    """Waits driven by an injected clock and sleep, without wall time."""

    def test_timeout_advances_simulated_clock(self, fake_clock):
        monitor = StateMonitor(clock=fake_clock, sleep=fake_clock.sleep)
        monitor.update({"right_x": 0.0})
        result = monitor.wait_for_complete_state(NAMES, timeout=0.05, poll_interval=0.01)

        assert isinstance(result, IncompleteState)
        assert result.missing == ("right_y", "right_z", "right_yaw")
        assert result.waited == pytest.approx(0.05)
        assert fake_clock.sleeps
        assert max(fake_clock.sleeps) <= 0.01 + 1e-12
        assert sum(fake_clock.sleeps) == pytest.approx(0.05)

    def test_state_published_while_sleeping(self, fake_clock):
        def sleep(dt):
            fake_clock.sleep(dt)
            if len(fake_clock.sleeps) == 3:
                monitor.update({n: 0.0 for n in NAMES})

        monitor = StateMonitor(clock=fake_clock, sleep=sleep)
        result = monitor.wait_for_complete_state(NAMES, timeout=1.0, poll_interval=0.1)

        assert isinstance(result, StateReady)
        assert result.waited == pytest.approx(0.3)
