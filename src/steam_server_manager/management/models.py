"""Data model for the server library."""

import copy
import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

MANIFEST_FIELDS = (
    "id",
    "app_id",
    "name",
    "start_script",
    "status",
    "last_updated_at",
)


class ServerStatus(str, Enum):
    """Lifecycle status of a library entry."""

    NEW = "NEW"
    WAITING = "WAITING"
    UPDATING = "UPDATING"
    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    ERROR = "ERROR"


class RunnerState(Enum):
    """States of a server process supervisor."""

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class ServerGame:
    """A managed dedicated server entry."""

    app_id: int
    name: str
    start_script: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: ServerStatus = ServerStatus.NEW
    last_updated_at: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def install_dir(self, library_root: Path) -> Path:
        """Get the install directory of this server."""
        return Path(library_root) / self.name

    def snapshot(self) -> "ServerGame":
        """Return a detached copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        data = dict(self.extra)
        data.update(
            {
                "id": self.id,
                "app_id": self.app_id,
                "name": self.name,
                "start_script": self.start_script,
                "status": self.status.value,
                "last_updated_at": self.last_updated_at,
            }
        )
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServerGame":
        """Create instance from dictionary.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a field has an invalid value
        """
        last_updated_at = data.get("last_updated_at")
        return cls(
            id=str(data["id"]),
            app_id=int(data["app_id"]),
            name=str(data["name"]),
            start_script=str(data["start_script"]),
            status=ServerStatus(data.get("status", ServerStatus.NEW.value)),
            last_updated_at=(
                float(last_updated_at) if last_updated_at is not None else None
            ),
            extra={k: v for k, v in data.items() if k not in MANIFEST_FIELDS},
        )


@dataclass
class ServerProperties:
    """Network and process properties reported by a running server."""

    pid: Optional[int] = None
    host: Optional[str] = None
    port: Optional[int] = None
    started_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @property
    def address(self) -> Optional[str]:
        """Get ``host:port`` once the server has reported it."""
        if self.host is None or self.port is None:
            return None
        return f"{self.host}:{self.port}"

    @property
    def uptime(self) -> float:
        """Get server uptime in seconds."""
        if self.started_at is None:
            return 0.0
        return time.time() - self.started_at


@dataclass(frozen=True)
class UpdateJob:
    """A request for the installer to bring one server up to date."""

    server_id: str
    app_id: int
    install_dir: Path
    enqueued_at: float = field(default_factory=time.time)
