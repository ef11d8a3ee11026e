"""Errors raised while loading manager settings."""

from pathlib import Path
from typing import Any, Dict, Optional


class ConfigurationError(Exception):
    """Settings could not be loaded from the YAML file or environment."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        config_path: Optional[Path] = None,
    ):
        self.message = message
        self.details = details or {}
        self.config_path = config_path
        super().__init__(message)

    def __str__(self) -> str:
        text = self.message
        if self.config_path is not None and str(self.config_path) not in text:
            text = f"{text} [{self.config_path}]"
        if self.details:
            text = f"{text} (Details: {self.details})"
        return text
