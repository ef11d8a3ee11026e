"""Library manifest persistence."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List

import structlog

from .exceptions import PersistError
from .models import ServerGame

logger = structlog.get_logger(__name__)

MANIFEST_VERSION = 1


class LibraryStore:
    """Loads and saves the library manifest.

    The manifest is a single JSON document at ``<library_root>/library.json``.
    Saves go through a temporary file that is fsynced and then moved over the
    manifest, so a crash mid-write leaves the previous manifest intact.

    The store is not reentrant; callers serialize ``save``.
    """

    def __init__(self, library_root: Path, filename: str = "library.json"):
        """Initialize library store.

        Args:
            library_root: Directory holding the manifest and server installs
            filename: Manifest file name
        """
        self.library_root = Path(library_root)
        self.manifest_file = self.library_root / filename
        self.temp_file = self.manifest_file.with_name(
            self.manifest_file.name + ".tmp"
        )

    async def load(self) -> List[ServerGame]:
        """Load the library from disk.

        Returns:
            List[ServerGame]: Library entries in manifest order, or an empty
            list if the manifest is missing or unreadable
        """
        if not self.manifest_file.exists():
            logger.warning(
                "Library manifest not found, starting empty",
                path=str(self.manifest_file),
            )
            return []

        try:
            with open(self.manifest_file, "r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(
                "Failed to load library manifest",
                path=str(self.manifest_file),
                error=str(e),
            )
            return []

        if isinstance(document, dict):
            records = document.get("servers", [])
        else:
            records = document

        if not isinstance(records, list):
            logger.warning(
                "Library manifest has no server list",
                path=str(self.manifest_file),
            )
            return []

        servers: List[ServerGame] = []
        seen_names = set()
        for record in records:
            if not isinstance(record, dict):
                logger.warning("Skipping non-object library entry", record=record)
                continue

            try:
                server = ServerGame.from_dict(record)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping malformed library entry", record=record, error=str(e)
                )
                continue

            if server.name in seen_names:
                logger.warning(
                    "Skipping library entry with duplicate name",
                    server_id=server.id,
                    name=server.name,
                )
                continue

            seen_names.add(server.name)
            servers.append(server)

        logger.debug("Library loaded", servers=len(servers))
        return servers

    async def save(self, servers: List[ServerGame]) -> None:
        """Serialize the full library and atomically replace the manifest.

        Args:
            servers: Library entries in order

        Raises:
            PersistError: If the manifest could not be written
        """
        document: Dict[str, Any] = {
            "version": MANIFEST_VERSION,
            "servers": [server.to_dict() for server in servers],
        }

        try:
            self.library_root.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(document, indent=2)
            with open(self.temp_file, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(self.temp_file, self.manifest_file)
        except (OSError, TypeError, ValueError) as e:
            logger.error(
                "Failed to save library manifest",
                path=str(self.manifest_file),
                error=str(e),
            )
            raise PersistError(
                f"Failed to save library manifest: {e}",
                "Check permissions and free space in the library directory",
                {"path": str(self.manifest_file)},
            ) from e

        logger.debug("Library saved", servers=len(servers))
