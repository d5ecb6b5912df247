"""File-backed record storage.

One JSON file per logical record name under a root directory. Writes go
to a temporary file first and are moved into place, so a reader never
sees a half-written record.
"""

import os
import tempfile
from pathlib import Path

from closedloop.logging_config import get_logger

logger = get_logger(__name__)


class FileStorage:
    """Stores records as files under ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if not path.is_relative_to(self.root.resolve()):
            raise ValueError(f"Record key escapes storage root: {key}")
        return path

    def save_raw(self, key: str, raw: str) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                tmp.write(raw)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Record saved", key=key, bytes=len(raw))

    def retrieve_raw(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None


class MemoryStorage:
    """In-process record storage, for tests and drivers without a disk."""

    def __init__(self) -> None:
        self._records: dict[str, str] = {}

    def save_raw(self, key: str, raw: str) -> None:
        self._records[key] = raw

    def retrieve_raw(self, key: str) -> str | None:
        return self._records.get(key)

    def keys(self) -> list[str]:
        return sorted(self._records)
