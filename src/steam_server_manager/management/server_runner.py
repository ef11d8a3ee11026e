"""Supervision of one game server child process."""

import asyncio
import os
import re
import shlex
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

import psutil
import structlog

from ..config.logging import close_server_output_logger, get_server_output_logger
from .exceptions import SpawnError, StartServerError
from .models import RunnerState, ServerGame, ServerProperties

logger = structlog.get_logger(__name__)

ADDRESS_PATTERN = re.compile(
    r"(?<![\d.])(?P<host>\d{1,3}(?:\.\d{1,3}){3}):(?P<port>\d{1,5})(?!\d)"
)

# Seconds to keep reading output after the process exits
DRAIN_TIMEOUT = 2.0

ServerHook = Callable[[ServerGame], Awaitable[None]]


@dataclass
class RunnerHooks:
    """Lifecycle callbacks a runner reports to its owner."""

    on_server_start: ServerHook
    on_server_stopped: ServerHook
    on_server_exception: ServerHook


class ServerRunner:
    """Runs and supervises a single server process.

    States only move forward: ``IDLE -> STARTING -> RUNNING -> STOPPING ->
    STOPPED|FAILED``. A finished runner is discarded and replaced by a new one
    on the next start.
    """

    def __init__(
        self,
        server_game: ServerGame,
        library_root: Path,
        hooks: RunnerHooks,
        grace_period: float = 10.0,
        readiness_window: float = 2.0,
        logs_dir: Optional[Path] = None,
        drain_timeout: float = DRAIN_TIMEOUT,
    ):
        """Initialize server runner.

        Args:
            server_game: Library entry to run
            library_root: Library directory, parent of the install directory
            hooks: Lifecycle callbacks
            grace_period: Seconds between terminate and kill on stop
            readiness_window: Seconds a new process must survive to be running
            logs_dir: Directory for the server output log (None discards it)
            drain_timeout: Seconds to finish reading output after exit
        """
        self.server_game = server_game
        self.library_root = Path(library_root)
        self.hooks = hooks
        self.grace_period = grace_period
        self.readiness_window = readiness_window
        self.logs_dir = logs_dir
        self.drain_timeout = drain_timeout

        self.state = RunnerState.IDLE
        self.properties: Optional[ServerProperties] = None
        self.exit_code: Optional[int] = None

        self._process: Optional[asyncio.subprocess.Process] = None
        self._supervisor: Optional[asyncio.Task] = None
        self._drains: List[asyncio.Task] = []
        self._finished = asyncio.Event()
        self._stop_requested = False
        self._sink = None
        self._log = logger.bind(server_id=server_game.id, name=server_game.name)

    @property
    def install_dir(self) -> Path:
        return self.server_game.install_dir(self.library_root)

    def is_running(self) -> bool:
        """Check if the server passed readiness and has not been stopped."""
        return self.state == RunnerState.RUNNING

    def is_alive(self) -> bool:
        """Check if the runner has a live (or exiting) process."""
        return self.state in (
            RunnerState.STARTING,
            RunnerState.RUNNING,
            RunnerState.STOPPING,
        )

    def get_server_properties(self) -> Optional[ServerProperties]:
        """Get the last known properties; None before the process exists."""
        return self.properties

    async def start(self) -> ServerProperties:
        """Spawn the server and wait out the readiness window.

        Returns:
            ServerProperties: Properties of the running server

        Raises:
            StartServerError: If the runner is not idle or was stopped while
                starting
            SpawnError: If the process could not be spawned or exited during
                the readiness window
        """
        if self.state != RunnerState.IDLE:
            raise StartServerError(
                f"Runner for '{self.server_game.name}' is {self.state.value}",
                "Discard the runner and create a new one",
            )

        self.state = RunnerState.STARTING
        self._sink = get_server_output_logger(self.server_game.name, self.logs_dir)

        try:
            argv = self._build_command()
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(self.install_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=(os.name == "posix"),
            )
        except (OSError, ValueError) as e:
            self._log.error("Failed to spawn server", error=str(e))
            self.state = RunnerState.FAILED
            self._close_sink()
            self._finished.set()
            await self._notify(self.hooks.on_server_exception)
            raise SpawnError(
                f"Failed to start server '{self.server_game.name}': {e}",
                "Check the start script path and that it is executable",
                {"start_script": self.server_game.start_script},
            ) from e

        self.properties = ServerProperties(
            pid=self._process.pid, started_at=time.time()
        )
        self._log.info("Server process spawned", pid=self._process.pid)

        self._drains = [
            asyncio.create_task(self._drain(self._process.stdout, "stdout")),
            asyncio.create_task(self._drain(self._process.stderr, "stderr")),
        ]
        self._supervisor = asyncio.create_task(self._supervise())

        done, _ = await asyncio.wait(
            {self._supervisor}, timeout=self.readiness_window
        )

        if self._supervisor in done:
            if self._stop_requested:
                raise StartServerError(
                    f"Server '{self.server_game.name}' was stopped while starting"
                )
            raise SpawnError(
                f"Server '{self.server_game.name}' exited during startup "
                f"(exit code {self.exit_code})",
                "Check the server log for startup errors",
                {"exit_code": self.exit_code},
            )

        if self.state != RunnerState.STARTING:
            raise StartServerError(
                f"Server '{self.server_game.name}' was stopped while starting"
            )

        self.state = RunnerState.RUNNING
        self._log.info("Server running", pid=self.properties.pid)
        await self._notify(self.hooks.on_server_start)
        return self.properties

    async def force_stop(self) -> None:
        """Stop the server, escalating to kill after the grace period.

        Returns once the process has exited and the final state is published.
        """
        if self.state == RunnerState.STOPPING:
            await self._finished.wait()
            return

        if self.state not in (RunnerState.STARTING, RunnerState.RUNNING):
            return

        self._stop_requested = True
        self.state = RunnerState.STOPPING
        process = self._process
        self._log.info("Stopping server", pid=process.pid, grace=self.grace_period)

        tree = self._collect_descendants(process.pid)
        self._signal(process, tree, kill=False)

        try:
            await asyncio.wait_for(process.wait(), timeout=self.grace_period)
        except asyncio.TimeoutError:
            self._log.warning("Server ignored terminate, killing", pid=process.pid)
            self._signal(process, tree, kill=True)
            await process.wait()

        # Descendants that outlived the main process
        for child in tree:
            try:
                if child.is_running():
                    child.kill()
            except psutil.NoSuchProcess:
                pass

        await self._finished.wait()

    def _build_command(self) -> List[str]:
        tokens = shlex.split(self.server_game.start_script)
        if not tokens:
            raise ValueError("start script is empty")

        script = Path(tokens[0])
        if not script.is_absolute():
            script = self.install_dir / script
        return [str(script)] + tokens[1:]

    async def _supervise(self) -> None:
        process = self._process
        returncode = await process.wait()
        await self._finish_drains()
        self.exit_code = returncode

        if self._stop_requested:
            self.state = RunnerState.STOPPED
            hook = self.hooks.on_server_stopped
            self._log.info("Server stopped", exit_code=returncode)
        elif self.state == RunnerState.STARTING or returncode != 0:
            self.state = RunnerState.FAILED
            hook = self.hooks.on_server_exception
            self._log.error("Server exited abnormally", exit_code=returncode)
        else:
            self.state = RunnerState.STOPPED
            hook = self.hooks.on_server_stopped
            self._log.info("Server exited", exit_code=returncode)

        self._close_sink()
        await self._notify(hook)
        self._finished.set()

    async def _finish_drains(self) -> None:
        if not self._drains:
            return

        _, pending = await asyncio.wait(self._drains, timeout=self.drain_timeout)
        if pending:
            self._log.warning(
                "Output still open after exit, detaching", streams=len(pending)
            )
            for drain in pending:
                drain.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def _drain(self, stream: Optional[asyncio.StreamReader], name: str) -> None:
        if stream is None:
            return

        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                self._log.warning("Dropped oversized output line", stream=name)
                continue
            if not raw:
                break

            line = raw.decode("utf-8", errors="replace").rstrip()
            if self._sink is not None:
                self._sink.info("[%s] %s", name, line)
            self._scan_address(line)

    def _scan_address(self, line: str) -> None:
        if self.properties is None or self.properties.port is not None:
            return

        match = ADDRESS_PATTERN.search(line)
        if not match:
            return

        port = int(match.group("port"))
        if not 0 < port < 65536:
            return

        self.properties.host = match.group("host")
        self.properties.port = port
        self._log.info("Server reported address", address=self.properties.address)

    @staticmethod
    def _collect_descendants(pid: int) -> List[psutil.Process]:
        try:
            return psutil.Process(pid).children(recursive=True)
        except psutil.NoSuchProcess:
            return []

    @staticmethod
    def _signal(
        process: asyncio.subprocess.Process,
        tree: List[psutil.Process],
        kill: bool,
    ) -> None:
        try:
            if kill:
                process.kill()
            else:
                process.terminate()
        except ProcessLookupError:
            pass

        for child in tree:
            try:
                if kill:
                    child.kill()
                else:
                    child.terminate()
            except psutil.NoSuchProcess:
                pass

    def _close_sink(self) -> None:
        if self._sink is not None:
            close_server_output_logger(self._sink)
            self._sink = None

    async def _notify(self, hook: ServerHook) -> None:
        try:
            await hook(self.server_game)
        except Exception as e:
            self._log.error("Runner hook failed", error=str(e))
