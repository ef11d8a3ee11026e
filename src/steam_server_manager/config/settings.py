"""Application configuration settings."""

from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings

from .exceptions import ConfigurationError


class LoggingConfig(BaseSettings):
    """Logging configuration settings."""

    level: str = Field(default="INFO", description="Log level")
    file_path: Optional[str] = Field(default=None, description="Log file path")
    json_format: bool = Field(default=False, description="Use JSON log format")

    class Config:
        env_prefix = "SSM_LOG_"


class SteamCMDConfig(BaseSettings):
    """SteamCMD installer settings."""

    path: Optional[str] = Field(
        default=None, description="steamcmd executable (default: look up PATH)"
    )
    username: str = Field(default="anonymous", description="Steam login")
    password: Optional[SecretStr] = Field(
        default=None, description="Steam password for non-anonymous logins"
    )
    validate_files: bool = Field(
        default=False, description="Pass 'validate' to app_update"
    )

    class Config:
        env_prefix = "SSM_STEAMCMD_"


class RunnerConfig(BaseSettings):
    """Game server process supervision settings."""

    grace_period: float = Field(
        default=10.0, description="Seconds between terminate and kill"
    )
    readiness_window: float = Field(
        default=2.0, description="Seconds a new process must survive to count as started"
    )
    capture_logs: bool = Field(
        default=True, description="Write server stdout/stderr to the logs directory"
    )

    class Config:
        env_prefix = "SSM_RUNNER_"


class Settings(BaseSettings):
    """Main application settings."""

    library_root: str = Field(
        default=str(Path.home() / "steam-servers"),
        description="Directory holding the library manifest and server installs",
    )
    queue_maxsize: int = Field(
        default=0, description="Maximum pending update jobs (0 = unbounded)"
    )

    # Sub-configurations
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    steamcmd: SteamCMDConfig = Field(default_factory=SteamCMDConfig)
    runner: RunnerConfig = Field(default_factory=RunnerConfig)

    class Config:
        env_prefix = "SSM_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @classmethod
    def from_yaml(cls, config_path: Union[str, Path], **overrides) -> "Settings":
        """Load settings from a YAML file, environment filling the gaps.

        Args:
            config_path: Path to the YAML configuration file
            **overrides: Values that take precedence over the file

        Raises:
            ConfigurationError: If the file cannot be read or is invalid
        """
        path = Path(config_path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise ConfigurationError(
                f"Configuration file not found: {path}", config_path=path
            )
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid configuration file format: {path}",
                {"parse_error": str(e)},
                path,
            )

        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration file must contain a mapping: {path}",
                config_path=path,
            )

        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**data)
        except ValidationError as e:
            raise ConfigurationError(
                "Configuration validation failed",
                {"validation_errors": [err["msg"] for err in e.errors()]},
                path,
            )

    def get_library_root(self) -> Path:
        """Get the library root directory."""
        return Path(self.library_root).expanduser()

    def get_manifest_path(self) -> Path:
        """Get the library manifest path."""
        return self.get_library_root() / "library.json"

    def get_logs_dir(self) -> Optional[Path]:
        """Get the directory for server output logs, if capture is enabled."""
        if not self.runner.capture_logs:
            return None
        return self.get_library_root() / "logs"
