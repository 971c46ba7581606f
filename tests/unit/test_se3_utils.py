"""Unit tests for pickmotion.utils.se3_utils."""

import math

import numpy as np
import pytest

from pickmotion.protocol.types import Pose
from pickmotion.utils.se3_utils import pose_from_se3, se3_from_pose, se3_interp, se3_translate

pytestmark = pytest.mark.unit


@pytest.fixture
def pose() -> Pose:
    return Pose.from_euler((0.6, -0.3, 0.09), (math.pi, 0.0, 0.3))


def test_pose_roundtrip(pose):
    again = pose_from_se3(se3_from_pose(pose))
    assert again.position_distance(pose) < 1e-12
    assert again.angular_distance(pose) < 1e-9


def test_translate_keeps_orientation(pose):
    moved = pose_from_se3(se3_translate(se3_from_pose(pose), (0.0, 0.0, -0.05)))
    assert np.allclose(moved.position, (0.6, -0.3, 0.04))
    assert moved.angular_distance(pose) < 1e-9


def test_interp_of_pure_translation_is_linear(pose):
    start = se3_from_pose(pose)
    end = se3_translate(start, (0.0, 0.0, -0.05))
    for s in (0.0, 0.25, 0.5, 1.0):
        mid = pose_from_se3(se3_interp(start, end, s))
        assert np.allclose(mid.position, (0.6, -0.3, 0.09 - 0.05 * s), atol=1e-12)
        assert mid.angular_distance(pose) < 1e-9
