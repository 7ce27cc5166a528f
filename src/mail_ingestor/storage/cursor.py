"""Plain-file persistence for a source's resumable cursor."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class CursorFile:
    """Stores a single scalar cursor value; a missing file means "from the beginning"."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> str | None:
        """Return the stored cursor, or None if nothing has been saved yet."""
        if not self._path.exists():
            return None
        value = self._path.read_text(encoding="utf-8").strip()
        return value or None

    def save(self, value: str) -> None:
        """Write the cursor, replacing the previous value atomically."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        tmp_path.write_text(f"{value}\n", encoding="utf-8")
        os.replace(tmp_path, self._path)
        logger.debug("Saved cursor %s to %s", value, self._path)
