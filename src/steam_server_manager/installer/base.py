"""Installer contract consumed by the update worker."""

from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class InstallerFailure(Enum):
    """Classified reasons an installer run failed."""

    AUTH = "auth"
    NETWORK = "network"
    UNKNOWN_APP = "unknown_app"
    OTHER = "other"


class InstallerError(Exception):
    """An installer run did not complete successfully."""

    def __init__(
        self,
        kind: InstallerFailure,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.kind = kind
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}
        super().__init__(message)


class InstallerListener(ABC):
    """Callbacks an installer uses to report output and request input."""

    @abstractmethod
    def on_stdout(self, line: str) -> None:
        """Receive one line of installer output."""

    @abstractmethod
    async def on_auth_code(self) -> str:
        """Provide a two-factor code; an empty string aborts the login."""


class NullInstallerListener(InstallerListener):
    """Discards output and declines authentication prompts."""

    def on_stdout(self, line: str) -> None:
        pass

    async def on_auth_code(self) -> str:
        return ""


class Installer(ABC):
    """Downloads and updates server binaries.

    Implementations are driven by exactly one caller at a time.
    """

    def __init__(self):
        self.listener: InstallerListener = NullInstallerListener()

    def bind_listener(self, listener: Optional[InstallerListener]) -> None:
        """Route output and prompts to ``listener``."""
        self.listener = listener or NullInstallerListener()

    @abstractmethod
    async def start(self) -> None:
        """Prepare the installer session; returns once it is ready."""

    @abstractmethod
    async def app_update(self, app_id: int, install_dir: Path) -> None:
        """Install or update ``app_id`` into ``install_dir``.

        Raises:
            InstallerError: If the update failed
        """

    async def close(self) -> None:
        """Release installer resources."""
