"""Configuration package for the server manager."""

from .exceptions import ConfigurationError
from .logging import configure_logging, get_logger
from .settings import LoggingConfig, RunnerConfig, Settings, SteamCMDConfig

__all__ = [
    "ConfigurationError",
    "LoggingConfig",
    "RunnerConfig",
    "Settings",
    "SteamCMDConfig",
    "configure_logging",
    "get_logger",
]
