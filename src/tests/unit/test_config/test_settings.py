"""Tests for application settings."""

import tempfile
from pathlib import Path

import pytest
import yaml

from steam_server_manager.config import ConfigurationError, Settings


class TestSettings:
    """Test cases for Settings."""

    @pytest.fixture
    def temp_config_dir(self):
        """Create temporary configuration directory."""
        with tempfile.TemporaryDirectory() as temp_dir:
            yield Path(temp_dir)

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("SSM_LIBRARY_ROOT", raising=False)
        settings = Settings()

        assert settings.queue_maxsize == 0
        assert settings.steamcmd.username == "anonymous"
        assert settings.steamcmd.password is None
        assert settings.runner.grace_period == 10.0
        assert settings.runner.readiness_window == 2.0
        assert settings.get_library_root() == Path.home() / "steam-servers"

    def test_paths_follow_library_root(self, temp_config_dir):
        settings = Settings(library_root=str(temp_config_dir))

        assert settings.get_manifest_path() == temp_config_dir / "library.json"
        assert settings.get_logs_dir() == temp_config_dir / "logs"

    def test_logs_dir_disabled(self, temp_config_dir):
        settings = Settings(
            library_root=str(temp_config_dir), runner={"capture_logs": False}
        )

        assert settings.get_logs_dir() is None

    def test_environment_overrides(self, monkeypatch, temp_config_dir):
        monkeypatch.setenv("SSM_LIBRARY_ROOT", str(temp_config_dir))
        monkeypatch.setenv("SSM_STEAMCMD_USERNAME", "steamuser")
        monkeypatch.setenv("SSM_RUNNER_GRACE_PERIOD", "3.5")

        settings = Settings()

        assert settings.get_library_root() == temp_config_dir
        assert settings.steamcmd.username == "steamuser"
        assert settings.runner.grace_period == 3.5

    def test_from_yaml(self, temp_config_dir):
        config_file = temp_config_dir / "config.yaml"
        config_file.write_text(yaml.dump({
            "library_root": str(temp_config_dir / "servers"),
            "steamcmd": {"username": "admin", "password": "hunter2"},
            "runner": {"readiness_window": 5},
        }))

        settings = Settings.from_yaml(config_file)

        assert settings.get_library_root() == temp_config_dir / "servers"
        assert settings.steamcmd.password.get_secret_value() == "hunter2"
        assert "hunter2" not in repr(settings)
        assert settings.runner.readiness_window == 5.0

    def test_from_yaml_overrides_win(self, temp_config_dir):
        config_file = temp_config_dir / "config.yaml"
        config_file.write_text(yaml.dump({"library_root": "/srv/a"}))

        settings = Settings.from_yaml(config_file, library_root="/srv/b", queue_maxsize=None)

        assert settings.library_root == "/srv/b"
        assert settings.queue_maxsize == 0

    def test_from_yaml_missing_file(self, temp_config_dir):
        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_yaml(temp_config_dir / "missing.yaml")

        assert "not found" in str(exc_info.value)

    def test_from_yaml_invalid_yaml(self, temp_config_dir):
        config_file = temp_config_dir / "config.yaml"
        config_file.write_text("library_root: [unclosed")

        with pytest.raises(ConfigurationError):
            Settings.from_yaml(config_file)

    def test_from_yaml_not_a_mapping(self, temp_config_dir):
        config_file = temp_config_dir / "config.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            Settings.from_yaml(config_file)

    def test_from_yaml_invalid_values(self, temp_config_dir):
        config_file = temp_config_dir / "config.yaml"
        config_file.write_text(yaml.dump({"queue_maxsize": "lots"}))

        with pytest.raises(ConfigurationError) as exc_info:
            Settings.from_yaml(config_file)

        assert exc_info.value.details["validation_errors"]
        assert exc_info.value.config_path == config_file
        assert str(config_file) in str(exc_info.value)
