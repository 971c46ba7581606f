"""
Integration tests for the vertical approach runner.

Runs the full pick sequence through the command-line entry point against
the simulated gantry, playing trajectories back faster than real time.
"""

import struct

import pytest

from pickmotion.cli.vertical_approach import main
from pickmotion.protocol import display

FAST = ["--time-scale", "20", "-q"]


@pytest.mark.integration
class TestVerticalApproach:
    """End-to-end pick runs."""

    def test_default_pick_succeeds(self):
        assert main(FAST) == 0

    def test_rotated_block_succeeds(self):
        assert main([*FAST, "--block", "0.7", "-0.25", "0.0", "--block-yaw", "20"]) == 0

    def test_jump_threshold_on_smooth_path(self):
        assert main([*FAST, "--jump-threshold", "5.0"]) == 0

    def test_unreachable_block_fails(self):
        assert main([*FAST, "--block", "3.0", "-0.3", "0.0"]) == 1

    def test_invalid_configuration(self):
        assert main([*FAST, "--min-path-fraction", "0"]) == 2

    def test_display_file_records_messages(self, tmp_path):
        path = tmp_path / "display.bin"
        assert main([*FAST, "--display-file", str(path)]) == 0

        data = path.read_bytes()
        messages = []
        offset = 0
        while offset < len(data):
            (size,) = struct.unpack_from(">I", data, offset)
            offset += 4
            messages.append(display.decode(data[offset : offset + size]))
            offset += size

        markers = [m for m in messages if isinstance(m, display.PoseMarker)]
        trajectories = [m for m in messages if isinstance(m, display.DisplayTrajectory)]
        assert len(markers) == 1
        assert len(trajectories) == 3
        assert all(t.model_id == "gantry" for t in trajectories)
