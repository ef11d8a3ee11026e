"""Pytest configuration and shared fixtures."""

import asyncio
import sys
import textwrap
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import pytest

from steam_server_manager.installer.base import (
    Installer,
    InstallerError,
    InstallerFailure,
)
from steam_server_manager.management.events import ManagerListener


class FakeInstaller(Installer):
    """Installer double that records calls and replays scripted output."""

    def __init__(self):
        super().__init__()
        self.output: List[str] = []
        self.fail_app_ids = set()
        self.start_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[int, Path]] = []
        self.started = False
        self.closed = False

    async def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def app_update(self, app_id: int, install_dir: Path) -> None:
        self.calls.append((app_id, Path(install_dir)))
        for line in self.output:
            self.listener.on_stdout(line)

        if self.gate is not None:
            await self.gate.wait()

        if app_id in self.fail_app_ids:
            raise InstallerError(InstallerFailure.UNKNOWN_APP, f"Invalid app {app_id}")
        Path(install_dir).mkdir(parents=True, exist_ok=True)

    async def close(self) -> None:
        self.closed = True


class RecordingListener(ManagerListener):
    """Listener that records every event it receives."""

    def __init__(self):
        self.events: List[tuple] = []

    def on_ready(self):
        self.events.append(("on_ready",))

    def on_update_server_status(self):
        self.events.append(("on_update_server_status",))

    def on_update_server(self, server_game):
        self.events.append(("on_update_server", server_game))

    def on_complete_update_server(self):
        self.events.append(("on_complete_update_server",))

    def on_steamcmd_stdout(self, line):
        self.events.append(("on_steamcmd_stdout", line))

    def on_status_steamcmd(self, phase, percent):
        self.events.append(("on_status_steamcmd", phase, percent))

    def on_server_start(self, server_game):
        self.events.append(("on_server_start", server_game))

    def on_server_stopped(self, server_game):
        self.events.append(("on_server_stopped", server_game))

    def on_server_exception(self, server_game):
        self.events.append(("on_server_exception", server_game))

    def names(self) -> List[str]:
        return [event[0] for event in self.events]

    def of(self, name: str) -> List[tuple]:
        return [event for event in self.events if event[0] == name]


def write_script(directory: Path, name: str, body: str) -> Path:
    """Write an executable Python script running under this interpreter."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return path


@pytest.fixture
def fake_installer() -> FakeInstaller:
    """Provide a scriptable installer double."""
    return FakeInstaller()


@pytest.fixture
def recording_listener() -> RecordingListener:
    """Provide a listener that records events."""
    return RecordingListener()


@pytest.fixture
def script_writer() -> Callable[[Path, str, str], Path]:
    """Provide a helper that writes executable test scripts."""
    return write_script
