"""Tests for the main CLI module."""

import json
import shutil
import tempfile
from pathlib import Path
from unittest.mock import patch

import yaml
from click.testing import CliRunner

from steam_server_manager.main import (
    CLIContext,
    CLIError,
    ConsoleListener,
    SteamServerManager,
    cli,
)


class TestCLI:
    """Test the main CLI functionality."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()
        self.temp_dir = Path(tempfile.mkdtemp())
        self.manifest = self.temp_dir / "library.json"

    def teardown_method(self):
        """Clean up test fixtures."""
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def seed_library(self):
        self.manifest.write_text(json.dumps({
            "version": 1,
            "servers": [
                {"id": "a1", "app_id": 740, "name": "csgo-1",
                 "start_script": "./srcds_run", "status": "STOPPED",
                 "last_updated_at": 1700000000.0},
                {"id": "b2", "app_id": 896660, "name": "valheim",
                 "start_script": "./start_server.sh", "status": "ERROR",
                 "last_updated_at": None},
            ],
        }))

    def invoke(self, *args):
        return self.runner.invoke(cli, ["--library", str(self.temp_dir), *args])

    def patch_installer(self, installer):
        def create_manager(cli_context):
            return SteamServerManager(
                cli_context.settings,
                installer=installer,
                listener=ConsoleListener(cli_context.verbose, cli_context.quiet),
            )

        return patch("steam_server_manager.main._create_manager", side_effect=create_manager)

    def test_cli_help(self):
        """Test CLI help output."""
        result = self.runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Steam Server Manager" in result.output
        for command in ("list", "create", "update", "start", "run"):
            assert command in result.output

    def test_cli_version(self):
        """Test CLI version display."""
        result = self.runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "steam-server-manager" in result.output
        assert "0.1.0" in result.output

    def test_cli_verbose_quiet_conflict(self):
        """Test that verbose and quiet options conflict."""
        result = self.runner.invoke(cli, ["--verbose", "--quiet", "list"])
        assert result.exit_code != 0
        assert "Cannot use both --verbose and --quiet" in result.output

    def test_create_command_help(self):
        """Test create command help."""
        result = self.runner.invoke(cli, ["create", "--help"])
        assert result.exit_code == 0
        assert "APP_ID" in result.output
        assert "START_SCRIPT" in result.output
        assert "--no-wait" in result.output

    def test_list_empty_library(self):
        """Test listing a library that does not exist yet."""
        result = self.invoke("list")
        assert result.exit_code == 0
        assert "No servers in the library" in result.output

    def test_list_table(self):
        """Test the table output of the library."""
        self.seed_library()

        result = self.invoke("list")

        assert result.exit_code == 0
        assert "2 server(s)" in result.output
        assert "csgo-1 (ID: a1)" in result.output
        assert "STOPPED" in result.output
        assert "Last updated: never" in result.output

    def test_list_json(self):
        """Test the JSON output of the library."""
        self.seed_library()

        result = self.invoke("list", "--format", "json")

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [s["name"] for s in data["servers"]] == ["csgo-1", "valheim"]
        assert data["servers"][1]["status"] == "ERROR"

    def test_list_yaml(self):
        """Test the YAML output of the library."""
        self.seed_library()

        result = self.invoke("list", "--format", "yaml")

        assert result.exit_code == 0
        data = yaml.safe_load(result.output)
        assert data["servers"][0]["app_id"] == 740

    def test_invalid_config_file(self):
        """Test that a broken config file is reported."""
        config_file = self.temp_dir / "config.yaml"
        config_file.write_text("library_root: [unclosed")

        result = self.runner.invoke(cli, ["--config", str(config_file), "list"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_create_installs_server(self, fake_installer):
        """Test creating a server and waiting for its install."""
        with self.patch_installer(fake_installer):
            result = self.invoke("create", "740", "csgo-1", "./srcds_run")

        assert result.exit_code == 0, result.output
        assert "Server created: csgo-1" in result.output
        assert "Server up to date: csgo-1" in result.output
        document = json.loads(self.manifest.read_text())
        assert document["servers"][0]["status"] == "STOPPED"
        assert fake_installer.calls == [(740, self.temp_dir / "csgo-1")]

    def test_create_reports_failed_install(self, fake_installer):
        """Test that an installer failure is shown to the user."""
        fake_installer.fail_app_ids = {999}
        with self.patch_installer(fake_installer):
            result = self.invoke("create", "999", "broken", "./run")

        assert result.exit_code == 0
        assert "Update failed: broken" in result.output

    def test_create_duplicate_name(self, fake_installer):
        """Test that a duplicate name is reported as an error."""
        self.seed_library()
        with self.patch_installer(fake_installer):
            result = self.invoke("create", "740", "csgo-1", "./srcds_run")

        assert result.exit_code == 1
        assert "already in use" in result.output

    def test_update_unknown_server(self, fake_installer):
        """Test updating a name that is not in the library."""
        with self.patch_installer(fake_installer):
            result = self.invoke("update", "missing")

        assert result.exit_code == 1
        assert "No server named 'missing'" in result.output

    def test_update_server(self, fake_installer):
        """Test updating an installed server."""
        self.seed_library()
        with self.patch_installer(fake_installer):
            result = self.invoke("update", "valheim")

        assert result.exit_code == 0, result.output
        assert "Update queued: valheim" in result.output
        assert fake_installer.calls == [(896660, self.temp_dir / "valheim")]


class TestCLIContext:
    """Test CLI context management."""

    def test_library_override(self, tmp_path):
        context = CLIContext(library=str(tmp_path))
        assert context.settings.get_library_root() == tmp_path

    def test_missing_config_file(self, tmp_path):
        try:
            CLIContext(config_file=str(tmp_path / "missing.yaml"))
        except CLIError as e:
            assert "not found" in e.message
        else:
            raise AssertionError("CLIError not raised")
