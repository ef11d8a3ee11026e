"""Errors raised by the server library, runners and update queue."""

from typing import Any, Dict, Optional


class ServerError(Exception):
    """Server management error with user-friendly messages."""

    def __init__(
        self,
        message: str,
        suggestion: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}
        super().__init__(message)


class DuplicateNameError(ServerError):
    """A server with the requested name already exists in the library."""

    def __init__(self, name: str):
        super().__init__(
            f"Server name '{name}' is already in use",
            "Choose a different name; names are case-sensitive",
            {"name": name},
        )


class ServerNotFoundError(ServerError):
    """No server in the library matches the given id."""

    def __init__(self, server_id: str):
        super().__init__(
            f"Server '{server_id}' not found",
            details={"server_id": server_id},
        )


class StartServerError(ServerError):
    """A server could not be started."""


class SpawnError(StartServerError):
    """The server process could not be spawned or died during readiness."""


class ServerNotRunningError(ServerError):
    """The server has no live process."""

    def __init__(self, name: str):
        super().__init__(
            f"Server '{name}' is not running",
            "Start the server first",
            {"name": name},
        )


class PersistError(ServerError):
    """The library manifest could not be written."""


class UpdateQueueFullError(ServerError):
    """The bounded update queue cannot accept another job."""
