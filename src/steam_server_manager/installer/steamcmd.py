"""SteamCMD-backed installer."""

import asyncio
import re
import shutil
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..config.logging import get_logger, sanitize_log_data
from ..config.settings import SteamCMDConfig
from .base import Installer, InstallerError, InstallerFailure

logger = get_logger(__name__, component="steamcmd")

# SteamCMD exits with 7 on the very first run while it installs itself
BOOTSTRAP_RETRY_CODE = 7

AUTH_PROMPTS = ("Two-factor code:", "Steam Guard code:")
LINE_SPLIT = re.compile(r"\r\n|\r|\n")

FAILURE_MARKERS = (
    (InstallerFailure.AUTH, ("Invalid Password", "Two-factor code mismatch",
                             "Login Failure", "Invalid Login Auth Code",
                             "Rate Limit Exceeded")),
    (InstallerFailure.UNKNOWN_APP, ("No subscription", "Invalid app",
                                    "Invalid AppID", "Invalid platform")),
    (InstallerFailure.NETWORK, ("No Connection", "timed out", "Connection",
                                "Service Unavailable")),
)
SUCCESS_MARKER = "Success! App"


def classify_output(lines: List[str], returncode: int) -> Optional[InstallerError]:
    """Map the output of an ``app_update`` run to an error, if it failed.

    Args:
        lines: Output lines of the run
        returncode: Process exit code

    Returns:
        Optional[InstallerError]: None on success
    """
    text = "\n".join(lines)

    if SUCCESS_MARKER in text and returncode == 0:
        return None

    for kind, markers in FAILURE_MARKERS:
        for marker in markers:
            if marker in text:
                return InstallerError(
                    kind,
                    f"SteamCMD failed: {marker}",
                    details={"returncode": returncode},
                )

    return InstallerError(
        InstallerFailure.OTHER,
        f"SteamCMD exited with code {returncode} without installing the app",
        "Check the SteamCMD output for details",
        {"returncode": returncode, "tail": lines[-5:]},
    )


class SteamCMD(Installer):
    """Drives the ``steamcmd`` command line tool.

    Each ``app_update`` is one SteamCMD invocation. Output is streamed line by
    line to the bound listener, and two-factor prompts are answered through
    ``listener.on_auth_code()``.
    """

    def __init__(self, config: Optional[SteamCMDConfig] = None):
        super().__init__()
        self.config = config or SteamCMDConfig()
        self.executable: Optional[str] = None
        self._process: Optional[asyncio.subprocess.Process] = None

    async def start(self) -> None:
        """Locate SteamCMD and let it self-update.

        Raises:
            InstallerError: If the executable cannot be found or fails to run
        """
        self.executable = self._resolve_executable()
        logger.info("Starting SteamCMD", executable=self.executable)

        returncode, lines = await self._run(["+quit"])
        if returncode == BOOTSTRAP_RETRY_CODE:
            logger.info("SteamCMD finished first-run bootstrap, retrying once")
            returncode, lines = await self._run(["+quit"])

        if returncode != 0:
            raise InstallerError(
                InstallerFailure.OTHER,
                f"SteamCMD failed to start (exit code {returncode})",
                details={"tail": lines[-5:]},
            )
        logger.info("SteamCMD ready")

    async def app_update(self, app_id: int, install_dir: Path) -> None:
        """Install or update ``app_id`` into ``install_dir``.

        Raises:
            InstallerError: If the update failed
        """
        if self.executable is None:
            self.executable = self._resolve_executable()

        install_dir = Path(install_dir)
        install_dir.mkdir(parents=True, exist_ok=True)

        start_time = time.time()
        returncode, lines = await self._run(self._build_update_args(app_id, install_dir))
        error = classify_output(lines, returncode)

        if error is not None:
            logger.warning(
                "App update failed",
                app_id=app_id,
                kind=error.kind.value,
                error=error.message,
            )
            raise error

        logger.info(
            "App update complete",
            app_id=app_id,
            install_dir=str(install_dir),
            duration_ms=(time.time() - start_time) * 1000,
        )

    async def close(self) -> None:
        """Kill an in-flight SteamCMD process, if any."""
        process = self._process
        if process is not None and process.returncode is None:
            logger.warning("Killing running SteamCMD process", pid=process.pid)
            process.kill()
            await process.wait()

    def _resolve_executable(self) -> str:
        candidate = self.config.path or shutil.which("steamcmd") or shutil.which("steamcmd.sh")
        if not candidate or not Path(candidate).exists():
            raise InstallerError(
                InstallerFailure.OTHER,
                "SteamCMD executable not found",
                "Install SteamCMD or set SSM_STEAMCMD_PATH",
                {"path": self.config.path},
            )
        return str(candidate)

    def _build_update_args(self, app_id: int, install_dir: Path) -> List[str]:
        args = [
            "+@ShutdownOnFailedCommand", "1",
            "+force_install_dir", str(install_dir),
            "+login", self.config.username,
        ]
        if self.config.password is not None and self.config.username != "anonymous":
            args.append(self.config.password.get_secret_value())
        args.extend(["+app_update", str(app_id)])
        if self.config.validate_files:
            args.append("validate")
        args.append("+quit")
        return args

    def _log_context(self, args: List[str]) -> Dict[str, Any]:
        args = list(args)
        context: Dict[str, Any] = {"username": self.config.username, "args": args}
        # The password, when present, directly follows "+login <username>"
        if self.config.password is not None and "+login" in args:
            position = args.index("+login") + 2
            secret = self.config.password.get_secret_value()
            if position < len(args) and args[position] == secret:
                context["password"] = args.pop(position)
        return sanitize_log_data(context)

    async def _run(self, args: List[str]) -> Tuple[int, List[str]]:
        """Run one SteamCMD invocation, streaming its output."""
        if self._process is not None and self._process.returncode is None:
            raise RuntimeError("SteamCMD is already running; it cannot be driven in parallel")

        logger.debug("Running SteamCMD", **self._log_context(args))
        process = await asyncio.create_subprocess_exec(
            self.executable,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(Path(self.executable).parent),
        )
        self._process = process

        lines: List[str] = []
        pending = ""
        assert process.stdout is not None

        while True:
            chunk = await process.stdout.read(4096)
            if not chunk:
                break

            pending += chunk.decode("utf-8", errors="replace")
            parts = LINE_SPLIT.split(pending)
            pending = parts.pop()
            for part in parts:
                self._emit_line(part, lines)

            if any(prompt in pending for prompt in AUTH_PROMPTS):
                self._emit_line(pending, lines)
                pending = ""
                await self._answer_auth_prompt(process)

        if pending:
            self._emit_line(pending, lines)

        returncode = await process.wait()
        self._process = None
        logger.debug("SteamCMD exited", returncode=returncode)
        return returncode, lines

    def _emit_line(self, raw: str, lines: List[str]) -> None:
        line = raw.rstrip()
        if not line:
            return
        lines.append(line)
        self.listener.on_stdout(line)

    async def _answer_auth_prompt(self, process: asyncio.subprocess.Process) -> None:
        logger.info("SteamCMD requested a two-factor code")
        code = (await self.listener.on_auth_code() or "").strip()

        if not code:
            logger.warning("No two-factor code provided, aborting login")
            process.terminate()
            await process.wait()
            self._process = None
            raise InstallerError(
                InstallerFailure.AUTH,
                "Two-factor authentication aborted",
                "Provide the Steam Guard code when prompted",
            )

        assert process.stdin is not None
        process.stdin.write(f"{code}\n".encode())
        await process.stdin.drain()
