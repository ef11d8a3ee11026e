"""Tests for the SteamCMD installer."""

import os
import shutil
import tempfile
from pathlib import Path
from typing import List

import pytest
from pydantic import SecretStr

from steam_server_manager.config.settings import SteamCMDConfig
from steam_server_manager.installer.base import (
    InstallerError,
    InstallerFailure,
    InstallerListener,
)
from steam_server_manager.installer.steamcmd import SteamCMD, classify_output

FAKE_STEAMCMD = """\
import os, sys

here = os.path.dirname(os.path.abspath(__file__))
args = sys.argv[1:]
print("Redirecting stderr to '%s/logs/stderr.txt'" % here, flush=True)

marker = os.path.join(here, "bootstrapped")
if not os.path.exists(marker):
    open(marker, "w").close()
    print("[----] Update complete, launching Steamcmd...", flush=True)
    sys.exit(7)

if args == ["+quit"]:
    print("Loading Steam API...OK", flush=True)
    sys.exit(0)

user = args[args.index("+login") + 1]
app_id = args[args.index("+app_update") + 1]
install_dir = args[args.index("+force_install_dir") + 1]

if user == "guarded":
    sys.stdout.write("Two-factor code:")
    sys.stdout.flush()
    code = sys.stdin.readline().strip()
    if code != "12345":
        print("FAILED (Two-factor code mismatch)", flush=True)
        sys.exit(5)
    print("Logged in OK", flush=True)

if app_id == "999":
    print("ERROR! Failed to install app '999' (No subscription)", flush=True)
    sys.exit(8)

print(" Update state (0x61) downloading, progress: 42.13 (1234 / 2345)", flush=True)
with open(os.path.join(install_dir, "installed.txt"), "w") as f:
    f.write(app_id)
print("Success! App '%s' fully installed." % app_id, flush=True)
"""


class CollectingListener(InstallerListener):
    """Records output and answers prompts with a fixed code."""

    def __init__(self, code: str = ""):
        self.code = code
        self.lines: List[str] = []
        self.prompts = 0

    def on_stdout(self, line: str) -> None:
        self.lines.append(line)

    async def on_auth_code(self) -> str:
        self.prompts += 1
        return self.code


class TestClassifyOutput:
    """Test mapping SteamCMD output to failures."""

    def test_success(self):
        assert classify_output(["Success! App '740' fully installed."], 0) is None

    def test_auth_failure(self):
        error = classify_output(["FAILED login with result code Invalid Password"], 5)
        assert error.kind == InstallerFailure.AUTH

    def test_unknown_app(self):
        error = classify_output(["ERROR! Failed to install app '999' (No subscription)"], 8)
        assert error.kind == InstallerFailure.UNKNOWN_APP

    def test_network_failure(self):
        error = classify_output(["FAILED login with result code No Connection"], 5)
        assert error.kind == InstallerFailure.NETWORK

    def test_unclassified_failure(self):
        error = classify_output(["Error! App '740' state is 0x202 after update job."], 0)
        assert error.kind == InstallerFailure.OTHER
        assert error.details["returncode"] == 0

    def test_success_marker_with_nonzero_exit_is_failure(self):
        error = classify_output(["Success! App '740' fully installed."], 6)
        assert error is not None


class TestSteamCMDArguments:
    """Test command line construction."""

    def test_anonymous_update_args(self):
        steamcmd = SteamCMD(SteamCMDConfig())
        args = steamcmd._build_update_args(740, Path("/srv/csgo-1"))

        assert args == [
            "+@ShutdownOnFailedCommand", "1",
            "+force_install_dir", "/srv/csgo-1",
            "+login", "anonymous",
            "+app_update", "740",
            "+quit",
        ]

    def test_login_with_password_and_validate(self):
        steamcmd = SteamCMD(SteamCMDConfig(
            username="admin", password=SecretStr("hunter2"), validate_files=True
        ))
        args = steamcmd._build_update_args(740, Path("/srv/csgo-1"))

        assert args[args.index("+login") + 1:args.index("+login") + 3] == ["admin", "hunter2"]
        assert "validate" in args

        context = steamcmd._log_context(args)
        assert context["username"] == "admin"
        assert context["password"] == "[REDACTED]"
        assert "hunter2" not in context["args"]
        assert "+app_update" in context["args"]

    def test_missing_executable(self):
        steamcmd = SteamCMD(SteamCMDConfig(path="/nonexistent/steamcmd"))

        with pytest.raises(InstallerError) as exc_info:
            steamcmd._resolve_executable()

        assert exc_info.value.kind == InstallerFailure.OTHER


@pytest.mark.skipif(os.name != "posix", reason="fake steamcmd is a POSIX script")
class TestSteamCMDProcess:
    """Test driving a fake steamcmd executable."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = Path(tempfile.mkdtemp())
        self.install_dir = self.temp_dir / "servers" / "csgo-1"

    def teardown_method(self):
        """Clean up test fixtures."""
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def make_steamcmd(self, script_writer, listener, **config) -> SteamCMD:
        script = script_writer(self.temp_dir / "steamcmd", "steamcmd.sh", FAKE_STEAMCMD)
        steamcmd = SteamCMD(SteamCMDConfig(path=str(script), **config))
        steamcmd.bind_listener(listener)
        return steamcmd

    @pytest.mark.asyncio
    async def test_start_retries_after_bootstrap(self, script_writer):
        """Test that the first-run exit code is retried once."""
        listener = CollectingListener()
        steamcmd = self.make_steamcmd(script_writer, listener)

        await steamcmd.start()

        assert "Loading Steam API...OK" in listener.lines
        assert (self.temp_dir / "steamcmd" / "bootstrapped").exists()

    @pytest.mark.asyncio
    async def test_app_update_success(self, script_writer):
        """Test a successful install streams output and fills the directory."""
        listener = CollectingListener()
        steamcmd = self.make_steamcmd(script_writer, listener)
        await steamcmd.start()

        await steamcmd.app_update(740, self.install_dir)

        assert (self.install_dir / "installed.txt").read_text() == "740"
        assert " Update state (0x61) downloading, progress: 42.13 (1234 / 2345)" in listener.lines
        assert "Success! App '740' fully installed." in listener.lines

    @pytest.mark.asyncio
    async def test_app_update_unknown_app(self, script_writer):
        """Test that a failed install raises a classified error."""
        steamcmd = self.make_steamcmd(script_writer, CollectingListener())
        await steamcmd.start()

        with pytest.raises(InstallerError) as exc_info:
            await steamcmd.app_update(999, self.install_dir)

        assert exc_info.value.kind == InstallerFailure.UNKNOWN_APP

    @pytest.mark.asyncio
    async def test_two_factor_code_is_requested(self, script_writer):
        """Test answering the Steam Guard prompt."""
        listener = CollectingListener(code="12345")
        steamcmd = self.make_steamcmd(
            script_writer, listener, username="guarded", password=SecretStr("pw")
        )
        await steamcmd.start()

        await steamcmd.app_update(740, self.install_dir)

        assert listener.prompts == 1
        assert "Logged in OK" in listener.lines

    @pytest.mark.asyncio
    async def test_empty_two_factor_code_aborts(self, script_writer):
        """Test that declining the prompt fails with an auth error."""
        listener = CollectingListener(code="")
        steamcmd = self.make_steamcmd(
            script_writer, listener, username="guarded", password=SecretStr("pw")
        )
        await steamcmd.start()

        with pytest.raises(InstallerError) as exc_info:
            await steamcmd.app_update(740, self.install_dir)

        assert exc_info.value.kind == InstallerFailure.AUTH
        assert not (self.install_dir / "installed.txt").exists()
