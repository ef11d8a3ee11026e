"""Server management package: library, updates and server process lifecycle."""

from .events import EventDispatcher, ManagerListener
from .exceptions import (
    DuplicateNameError,
    PersistError,
    ServerError,
    ServerNotFoundError,
    ServerNotRunningError,
    SpawnError,
    StartServerError,
    UpdateQueueFullError,
)
from .library_store import LibraryStore
from .models import RunnerState, ServerGame, ServerProperties, ServerStatus, UpdateJob
from .server_manager import SteamServerManager
from .server_runner import RunnerHooks, ServerRunner
from .update_queue import UpdateQueue
from .update_worker import UpdateHooks, UpdateWorker

__all__ = [
    "SteamServerManager",
    "ManagerListener",
    "EventDispatcher",
    "LibraryStore",
    "ServerRunner",
    "RunnerHooks",
    "UpdateQueue",
    "UpdateWorker",
    "UpdateHooks",
    "ServerGame",
    "ServerProperties",
    "ServerStatus",
    "RunnerState",
    "UpdateJob",
    "ServerError",
    "DuplicateNameError",
    "ServerNotFoundError",
    "ServerNotRunningError",
    "StartServerError",
    "SpawnError",
    "PersistError",
    "UpdateQueueFullError",
]
