"""Installer contract and the SteamCMD implementation."""

from .base import Installer, InstallerError, InstallerFailure, InstallerListener
from .progress import parse_progress_line
from .steamcmd import SteamCMD

__all__ = [
    "Installer",
    "InstallerError",
    "InstallerFailure",
    "InstallerListener",
    "SteamCMD",
    "parse_progress_line",
]
