"""Listener contract and event dispatch for the server manager."""

import asyncio
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Optional

import structlog

from .models import ServerGame

logger = structlog.get_logger(__name__)


class ManagerListener:
    """Receives manager events. Every method is a no-op by default.

    Callbacks run on the manager's event thread, never on the event loop, so
    they may block without stalling server supervision or updates.
    """

    def on_ready(self) -> None:
        """Initialization finished."""

    def on_update_server_status(self) -> None:
        """A server status or the library changed."""

    def on_update_server(self, server_game: ServerGame) -> None:
        """An update job became current."""

    def on_complete_update_server(self) -> None:
        """An update job finished, successfully or not."""

    def on_steamcmd_stdout(self, line: str) -> None:
        """One line of SteamCMD output."""

    def on_status_steamcmd(self, phase: str, percent: float) -> None:
        """Parsed SteamCMD progress."""

    def on_server_start(self, server_game: ServerGame) -> None:
        """A server process passed its readiness window."""

    def on_server_stopped(self, server_game: ServerGame) -> None:
        """A server process exited normally or after a stop request."""

    def on_server_exception(self, server_game: ServerGame) -> None:
        """A server process failed to spawn or exited abnormally."""


class EventDispatcher:
    """Delivers listener callbacks on a dedicated thread, in emission order."""

    def __init__(self, listener: Optional[ManagerListener] = None):
        self.listener = listener or ManagerListener()
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="ssm-events"
        )
        self._last: Optional[Future] = None
        self._closed = False

    def set_listener(self, listener: Optional[ManagerListener]) -> None:
        """Replace the event sink; ``None`` installs the no-op sink."""
        self.listener = listener or ManagerListener()

    def emit(self, event: str, *args: Any) -> None:
        """Queue ``listener.<event>(*args)`` for the event thread."""
        if self._closed:
            logger.debug("Dropping event after close", event=event)
            return

        callback = getattr(self.listener, event)
        self._last = self._executor.submit(self._invoke, event, callback, args)

    async def drain(self) -> None:
        """Wait until every event emitted so far has been delivered."""
        if self._last is not None:
            await asyncio.wrap_future(self._last)

    def close(self) -> None:
        """Deliver pending events and stop the event thread."""
        self._closed = True
        self._executor.shutdown(wait=True)

    @staticmethod
    def _invoke(event: str, callback, args) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error("Listener callback failed", event=event, error=str(e))
