"""Content-addressed archive for raw message bytes."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class BlobArchive:
    """Store raw messages on disk; the returned location is the key to read them back.

    Layout: ``{root}/{sha[:2]}/{sha}.eml``; location is ``{sha[:2]}/{sha}.eml``.
    """

    def __init__(self, root: Path) -> None:
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def add(self, raw: bytes) -> str:
        """Archive raw message bytes and return their location token."""
        digest = hashlib.sha256(raw).hexdigest()
        location = f"{digest[:2]}/{digest}.eml"
        path = self._root / location
        if not path.exists():
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(raw)
            logger.debug("Archived %d bytes at %s", len(raw), path)
        return location

    def get(self, location: str) -> bytes:
        """Read back the bytes stored at ``location``.

        Raises:
            FileNotFoundError: If nothing is stored there.
        """
        return (self._root / location).read_bytes()
