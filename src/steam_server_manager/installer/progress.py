"""Parsing of SteamCMD progress output."""

import re
from typing import Optional, Tuple

# e.g. " Update state (0x61) downloading, progress: 42.13 (1234 / 2345)"
PROGRESS_PATTERN = re.compile(
    r"Update state \(0x[0-9a-fA-F]+\)\s+(?P<phase>[a-z][a-z ]*?),\s*"
    r"progress:\s*(?P<percent>\d+(?:\.\d+)?)"
)


def parse_progress_line(line: str) -> Optional[Tuple[str, float]]:
    """Extract ``(phase, percent)`` from a SteamCMD progress line.

    Args:
        line: One line of SteamCMD output

    Returns:
        The phase name (e.g. ``"downloading"``) and percentage, or None if the
        line does not report progress
    """
    match = PROGRESS_PATTERN.search(line)
    if not match:
        return None
    return match.group("phase"), float(match.group("percent"))
