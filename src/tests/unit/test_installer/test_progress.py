"""Tests for SteamCMD progress parsing."""

import pytest

from steam_server_manager.installer.progress import parse_progress_line


class TestParseProgressLine:
    """Test the parse_progress_line function."""

    def test_downloading_line(self):
        line = " Update state (0x61) downloading, progress: 42.13 (1234 / 2345)"
        assert parse_progress_line(line) == ("downloading", 42.13)

    @pytest.mark.parametrize(
        "line,expected",
        [
            (" Update state (0x3) reconfiguring, progress: 0.00 (0 / 0)", ("reconfiguring", 0.0)),
            (" Update state (0x11) preallocating, progress: 97.50 (95 / 97)", ("preallocating", 97.5)),
            (" Update state (0x81) verifying update, progress: 5.01 (10 / 200)", ("verifying update", 5.01)),
            (" Update state (0x101) committing, progress: 100 (1 / 1)", ("committing", 100.0)),
        ],
    )
    def test_phases(self, line, expected):
        assert parse_progress_line(line) == expected

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "Loading Steam API...OK",
            "Success! App '740' fully installed.",
            "Update state (0x61) downloading",
        ],
    )
    def test_non_progress_lines(self, line):
        assert parse_progress_line(line) is None
