"""Maildir source: one file per message across one or more directories."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from mail_ingestor.core.exceptions import SourceUnavailable
from mail_ingestor.core.models import RawMessage
from mail_ingestor.sources.base import MailSource

logger = logging.getLogger(__name__)


class MaildirSource(MailSource):
    """Reads every message file under the given maildirs in a stable order.

    Files come from ``cur/`` then ``new/`` of each maildir (or the directory
    itself when it has neither), sorted by name. The cursor is the number of
    files consumed so far.
    """

    kind = "maildir"

    def __init__(self, directories: Sequence[Path], position: int = 0) -> None:
        self._directories = list(directories)
        self._position = position
        self._files: list[Path] = []
        self._index = 0

    def load(self) -> None:
        files: list[Path] = []
        for directory in self._directories:
            if not directory.is_dir():
                raise SourceUnavailable(f"Not a maildir directory: {directory}")
            subdirs = [d for d in (directory / "cur", directory / "new") if d.is_dir()]
            for subdir in subdirs or [directory]:
                try:
                    entries = sorted(
                        p for p in subdir.iterdir() if p.is_file() and not p.name.startswith(".")
                    )
                except OSError as e:
                    raise SourceUnavailable(f"Cannot list {subdir}: {e}") from e
                files.extend(entries)

        self._files = files
        self._index = 0
        logger.info("Found %d messages in %d maildir(s)", len(files), len(self._directories))
        if self._position:
            self.skip(self._position)

    def done(self) -> bool:
        return self._index >= len(self._files)

    def next_message(self) -> RawMessage:
        if self.done():
            raise RuntimeError("No more messages in maildir")
        path = self._files[self._index]
        try:
            data = path.read_bytes()
        except OSError as e:
            raise SourceUnavailable(f"Cannot read {path}: {e}") from e
        self._index += 1
        return RawMessage(data=data, description=f"maildir file {path}")

    def cursor(self) -> str:
        return str(self._index)

    def finish(self) -> None:
        self._files = []

    def _advance(self) -> None:
        self._index += 1
