"""Main server manager coordinating the library, updates and server processes."""

import asyncio
import dataclasses
import time
from typing import Callable, Dict, List, Optional, Union

import structlog

from ..config.settings import Settings
from ..installer.base import Installer, InstallerError, InstallerListener
from ..installer.progress import parse_progress_line
from ..installer.steamcmd import SteamCMD
from .events import EventDispatcher, ManagerListener
from .exceptions import (
    DuplicateNameError,
    PersistError,
    ServerError,
    ServerNotFoundError,
    ServerNotRunningError,
    StartServerError,
)
from .library_store import LibraryStore
from .models import ServerGame, ServerProperties, ServerStatus, UpdateJob
from .server_runner import RunnerHooks, ServerRunner
from .update_queue import UpdateQueue
from .update_worker import UpdateHooks, UpdateWorker

logger = structlog.get_logger(__name__)

ServerRef = Union[ServerGame, str]
AuthCodeProvider = Callable[[], Optional[str]]

# Statuses in which a server has binaries that may be launched
STARTABLE_STATUSES = (ServerStatus.STOPPED, ServerStatus.RUNNING, ServerStatus.ERROR)


class _InstallerBridge(InstallerListener):
    """Forwards installer output and auth prompts to plain callables."""

    def __init__(
        self,
        stdout_callback: Callable[[str], None],
        auth_code_provider: Optional[AuthCodeProvider],
    ):
        self.stdout_callback = stdout_callback
        self.auth_code_provider = auth_code_provider

    def on_stdout(self, line: str) -> None:
        self.stdout_callback(line)

    async def on_auth_code(self) -> str:
        if self.auth_code_provider is None:
            logger.warning("Installer asked for a two-factor code but no provider is set")
            return ""
        code = await asyncio.to_thread(self.auth_code_provider)
        return code or ""


class SteamServerManager:
    """Owns the library, the update queue and worker, and the server runners.

    All library mutations happen under one lock and are persisted before the
    matching event is published. Runners and the worker only see narrow hook
    bundles, never the manager itself.

    Usage::

        async with SteamServerManager(settings) as manager:
            await manager.wait_ready()
            game = await manager.new_server_game(740, "csgo-1", "./srcds_run")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        installer: Optional[Installer] = None,
        listener: Optional[ManagerListener] = None,
        auth_code_provider: Optional[AuthCodeProvider] = None,
    ):
        """Initialize server manager.

        Args:
            settings: Application settings (default: from environment)
            installer: Installer to drive (default: SteamCMD)
            listener: Event sink (default: no-op)
            auth_code_provider: Blocking callable returning a two-factor code;
                returning an empty value aborts the login
        """
        self.settings = settings or Settings()
        self.library_root = self.settings.get_library_root()
        self.store = LibraryStore(self.library_root)
        self.installer = installer or SteamCMD(self.settings.steamcmd)
        self.installer.bind_listener(
            _InstallerBridge(self._on_installer_stdout, auth_code_provider)
        )
        self.events = EventDispatcher(listener)

        self.queue: Optional[UpdateQueue] = None
        self.worker: Optional[UpdateWorker] = None

        self._library: List[ServerGame] = []
        self._runners: Dict[str, ServerRunner] = {}
        self._lock: Optional[asyncio.Lock] = None
        self._server_locks: Dict[str, asyncio.Lock] = {}
        self._init_task: Optional[asyncio.Task] = None
        self._opened = False
        self._closed = False

    async def __aenter__(self) -> "SteamServerManager":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    @property
    def ready(self) -> bool:
        """Check if initialization has completed successfully."""
        task = self._init_task
        return (
            task is not None
            and task.done()
            and not task.cancelled()
            and task.exception() is None
        )

    async def open(self) -> None:
        """Load the library and start initialization in the background.

        Returns as soon as the library is loaded; installer start-up, the
        worker and crash recovery continue in a task that ends with
        ``on_ready``.
        """
        if self._opened:
            return

        self._lock = asyncio.Lock()
        self.queue = UpdateQueue(self.settings.queue_maxsize)
        self.worker = UpdateWorker(
            self.queue,
            self.installer,
            UpdateHooks(self._on_job_started, self._on_job_completed),
        )

        self._library = await self.store.load()
        for server_game in self._library:
            self._runners[server_game.id] = self._new_runner(server_game)

        self._opened = True
        logger.info(
            "Server library opened",
            library_root=str(self.library_root),
            servers=len(self._library),
        )
        self._init_task = asyncio.create_task(self._initialize())

    async def wait_ready(self) -> None:
        """Wait for initialization to finish.

        Raises:
            ServerError: If the manager has not been opened
        """
        if self._init_task is None:
            raise ServerError(
                "Server manager is not open", "Call open() or use 'async with'"
            )
        await asyncio.shield(self._init_task)

    async def wait_until_idle(self) -> None:
        """Wait until no update is queued or running and events are delivered."""
        await self.wait_ready()
        await self.worker.wait_idle()
        await self.events.drain()

    async def flush_events(self) -> None:
        """Wait until every event emitted so far reached the listener."""
        await self.events.drain()

    async def new_server_game(
        self, app_id: int, name: str, start_script: str
    ) -> ServerGame:
        """Create a library entry and queue its installation.

        Args:
            app_id: Steam app id of the dedicated server
            name: Unique server name, also the install directory name
            start_script: Launch command, relative to the install directory

        Returns:
            ServerGame: Snapshot of the new entry

        Raises:
            DuplicateNameError: If the name is already in use
            UpdateQueueFullError: If the update queue is bounded and full
            ServerError: If the name cannot be used as a directory name
        """
        await self.wait_ready()
        self._validate_name(name)

        async with self._lock:
            if any(existing.name == name for existing in self._library):
                raise DuplicateNameError(name)

            server_game = ServerGame(
                app_id=int(app_id), name=name, start_script=start_script
            )
            # Rejects before the entry exists when the queue is full
            self.queue.offer(self._job_for(server_game))

            server_game.status = ServerStatus.WAITING
            self._library.append(server_game)
            self._runners[server_game.id] = self._new_runner(server_game)
            await self._persist()
            self.events.emit("on_update_server_status")

        logger.info(
            "Server created",
            server_id=server_game.id,
            name=name,
            app_id=server_game.app_id,
        )
        return server_game.snapshot()

    async def update_server_game(self, server: ServerRef) -> ServerGame:
        """Queue an update, stopping the server first if it is running.

        Raises:
            ServerNotFoundError: If the server is not in the library
        """
        await self.wait_ready()
        server_game = self._resolve(server)

        async with self._server_lock(server_game.id):
            runner = self._runners.get(server_game.id)
            if runner is not None and runner.is_alive():
                logger.info(
                    "Stopping server before update", server_id=server_game.id
                )
                await runner.force_stop()
            await self._enqueue(server_game)

        return server_game.snapshot()

    async def start_server(self, server: ServerRef) -> ServerProperties:
        """Start a server, or return its properties if it is already running.

        Raises:
            ServerNotFoundError: If the server is not in the library
            StartServerError: If the server is new, queued or updating, or
                its process could not be started
        """
        await self.wait_ready()
        server_game = self._resolve(server)

        async with self._server_lock(server_game.id):
            runner = self._runners.get(server_game.id)
            if (
                runner is not None
                and runner.is_running()
                and server_game.status == ServerStatus.RUNNING
            ):
                return dataclasses.replace(runner.get_server_properties())

            if server_game.status not in STARTABLE_STATUSES:
                raise StartServerError(
                    f"Server '{server_game.name}' is {server_game.status.value}",
                    "Wait for the pending update to finish",
                    {"server_id": server_game.id, "status": server_game.status.value},
                )

            if runner is not None and runner.is_alive():
                await runner.force_stop()

            runner = self._new_runner(server_game)
            self._runners[server_game.id] = runner
            properties = await runner.start()

        return dataclasses.replace(properties)

    async def stop_server(self, server: ServerRef) -> ServerGame:
        """Stop a running server and wait for its process to exit.

        Raises:
            ServerNotFoundError: If the server is not in the library
        """
        await self.wait_ready()
        server_game = self._resolve(server)

        async with self._server_lock(server_game.id):
            runner = self._runners.get(server_game.id)
            if runner is not None and runner.is_alive():
                await runner.force_stop()

        return server_game.snapshot()

    def get_server_properties(self, server: ServerRef) -> ServerProperties:
        """Get the live properties of a running server.

        Raises:
            ServerNotFoundError: If the server is not in the library
            ServerNotRunningError: If the server has no live process
        """
        server_game = self._resolve(server)
        runner = self._runners.get(server_game.id)
        if runner is None or not runner.is_alive():
            raise ServerNotRunningError(server_game.name)

        properties = runner.get_server_properties()
        if properties is None:
            raise ServerNotRunningError(server_game.name)
        return dataclasses.replace(properties)

    def get_library(self) -> List[ServerGame]:
        """Get a snapshot of the library in order."""
        return [server_game.snapshot() for server_game in self._library]

    def get_server(self, server: ServerRef) -> ServerGame:
        """Get a snapshot of one entry.

        Raises:
            ServerNotFoundError: If the server is not in the library
        """
        return self._resolve(server).snapshot()

    def set_listener(self, listener: Optional[ManagerListener]) -> None:
        """Replace the event sink."""
        self.events.set_listener(listener)

    async def shutdown(self) -> None:
        """Stop servers and the worker, persist, and release the installer."""
        if not self._opened or self._closed:
            return
        self._closed = True
        logger.info("Shutting down server manager")

        if self._init_task is not None and not self._init_task.done():
            try:
                await self._init_task
            except Exception as e:
                logger.error("Initialization failed", error=str(e))

        alive = [runner for runner in self._runners.values() if runner.is_alive()]
        if alive:
            await asyncio.gather(*(runner.force_stop() for runner in alive))

        await self.worker.stop()

        async with self._lock:
            await self._persist()

        await self.installer.close()
        await self.events.drain()
        self.events.close()
        logger.info("Server manager stopped")

    async def _initialize(self) -> None:
        try:
            await self.installer.start()
        except (InstallerError, OSError) as e:
            logger.error(
                "Installer failed to start; updates will fail until it is fixed",
                error=str(e),
            )

        self.worker.start()

        async with self._lock:
            for server_game in self._library:
                if server_game.status in (ServerStatus.WAITING, ServerStatus.UPDATING):
                    server_game.status = ServerStatus.WAITING
                    self.queue.restore(self._job_for(server_game))
                    logger.info(
                        "Resuming interrupted update", server_id=server_game.id
                    )
                else:
                    server_game.status = ServerStatus.STOPPED
            await self._persist()
            self.events.emit("on_update_server_status")
            self.events.emit("on_ready")

        logger.info("Server manager ready", pending_updates=len(self.queue))

    async def _enqueue(self, server_game: ServerGame) -> bool:
        async with self._lock:
            current = self.worker.current_job
            if current is not None and current.server_id == server_game.id:
                logger.info(
                    "Update already in progress, ignoring request",
                    server_id=server_game.id,
                )
                return False

            if not self.queue.offer(self._job_for(server_game)):
                return False

            server_game.status = ServerStatus.WAITING
            await self._persist()
            self.events.emit("on_update_server_status")

        logger.info("Update queued", server_id=server_game.id, name=server_game.name)
        return True

    async def _on_job_started(self, job: UpdateJob) -> None:
        async with self._lock:
            server_game = self._find(job.server_id)
            if server_game is None:
                return
            server_game.status = ServerStatus.UPDATING
            await self._persist()
            self.events.emit("on_update_server_status")
            self.events.emit("on_update_server", server_game.snapshot())

    async def _on_job_completed(
        self, job: UpdateJob, error: Optional[BaseException]
    ) -> None:
        async with self._lock:
            server_game = self._find(job.server_id)
            if server_game is None:
                return
            if error is None:
                server_game.status = ServerStatus.STOPPED
                server_game.last_updated_at = time.time()
            else:
                server_game.status = ServerStatus.ERROR
            await self._persist()
            self.events.emit("on_update_server_status")
            self.events.emit("on_complete_update_server")

    async def _on_server_start(self, server_game: ServerGame) -> None:
        async with self._lock:
            server_game.status = ServerStatus.RUNNING
            await self._persist()
            self.events.emit("on_update_server_status")
            self.events.emit("on_server_start", server_game.snapshot())

    async def _on_server_stopped(self, server_game: ServerGame) -> None:
        await self._on_server_exit(server_game, ServerStatus.STOPPED, "on_server_stopped")

    async def _on_server_exception(self, server_game: ServerGame) -> None:
        await self._on_server_exit(server_game, ServerStatus.ERROR, "on_server_exception")

    async def _on_server_exit(
        self, server_game: ServerGame, status: ServerStatus, event: str
    ) -> None:
        async with self._lock:
            if server_game.status not in (ServerStatus.WAITING, ServerStatus.UPDATING):
                server_game.status = status
            await self._persist()
            self.events.emit("on_update_server_status")
            self.events.emit(event, server_game.snapshot())

    def _on_installer_stdout(self, line: str) -> None:
        logger.debug("SteamCMD output", line=line)
        self.events.emit("on_steamcmd_stdout", line)

        progress = parse_progress_line(line)
        if progress is not None:
            self.events.emit("on_status_steamcmd", *progress)

    async def _persist(self) -> None:
        try:
            await self.store.save(self._library)
        except PersistError as e:
            logger.error(
                "Library not persisted, keeping in-memory state", error=e.message
            )

    def _new_runner(self, server_game: ServerGame) -> ServerRunner:
        return ServerRunner(
            server_game,
            self.library_root,
            RunnerHooks(
                on_server_start=self._on_server_start,
                on_server_stopped=self._on_server_stopped,
                on_server_exception=self._on_server_exception,
            ),
            grace_period=self.settings.runner.grace_period,
            readiness_window=self.settings.runner.readiness_window,
            logs_dir=self.settings.get_logs_dir(),
        )

    def _job_for(self, server_game: ServerGame) -> UpdateJob:
        return UpdateJob(
            server_id=server_game.id,
            app_id=server_game.app_id,
            install_dir=server_game.install_dir(self.library_root),
        )

    def _server_lock(self, server_id: str) -> asyncio.Lock:
        if server_id not in self._server_locks:
            self._server_locks[server_id] = asyncio.Lock()
        return self._server_locks[server_id]

    def _find(self, server_id: str) -> Optional[ServerGame]:
        for server_game in self._library:
            if server_game.id == server_id:
                return server_game
        return None

    def _resolve(self, server: ServerRef) -> ServerGame:
        server_id = server.id if isinstance(server, ServerGame) else str(server)
        server_game = self._find(server_id)
        if server_game is None:
            raise ServerNotFoundError(server_id)
        return server_game

    @staticmethod
    def _validate_name(name: str) -> None:
        if not name or not name.strip():
            raise ServerError("Server name must not be empty")
        if name in (".", "..") or "/" in name or "\\" in name:
            raise ServerError(
                f"Invalid server name: {name}",
                "Names become directory names; avoid path separators",
            )
