"""Unit tests for pickmotion.config."""

import logging

import pytest

from pickmotion import config
from pickmotion.config import OrchestratorConfig, StraightLineConfig, Timeouts

pytestmark = pytest.mark.unit


class TestStraightLineConfig:
    def test_defaults(self):
        line = StraightLineConfig()
        assert line.max_step == pytest.approx(0.001)
        assert line.jump_threshold == 0.0
        assert line.min_path_fraction == 1.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_step": 0.0},
            {"jump_threshold": -0.1},
            {"min_path_fraction": 0.0},
            {"min_path_fraction": 1.2},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            StraightLineConfig(**kwargs)


class TestTimeouts:
    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError, match="execution_wait"):
            Timeouts(execution_wait=-1.0)

    def test_poll_interval_positive(self):
        with pytest.raises(ValueError):
            Timeouts(poll_interval=0.0)


def test_orchestrator_defaults():
    cfg = OrchestratorConfig()
    assert cfg.hover_height == pytest.approx(0.09)
    assert cfg.hover_x_offset == pytest.approx(0.15)
    assert cfg.approach_distance == pytest.approx(0.05)
    assert cfg.lift_distance == pytest.approx(0.05)
    assert cfg.tolerances.position == pytest.approx(1e-4)
    assert cfg.tolerances.angle == pytest.approx(1e-2)


def test_env_float_override(monkeypatch):
    monkeypatch.setenv("PICKMOTION_TEST_VALUE", "0.25")
    assert config._env_float("PICKMOTION_TEST_VALUE", 1.0) == 0.25


def test_env_float_ignores_garbage(monkeypatch, caplog):
    monkeypatch.setenv("PICKMOTION_TEST_VALUE", "fast")
    with caplog.at_level(logging.WARNING, logger="pickmotion.config"):
        assert config._env_float("PICKMOTION_TEST_VALUE", 1.0) == 1.0
    assert "PICKMOTION_TEST_VALUE" in caplog.text


def test_trace_level_registered():
    assert logging.getLevelName(config.TRACE) == "TRACE"
    assert hasattr(logging.getLogger("pickmotion"), "trace")
