"""Flat mbox file source, resumable by byte offset."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import BinaryIO

from mail_ingestor.core.exceptions import SourceUnavailable
from mail_ingestor.core.models import RawMessage
from mail_ingestor.sources.base import MailSource

logger = logging.getLogger(__name__)

# "From sender@example.com Mon Jan  1 00:00:00 2024"
_FROM_LINE = re.compile(rb"^From \S+ .*\d{1,2}:\d{2}")
# mboxrd quoting: ">From " and ">>From " lose one ">"
_QUOTED_FROM = re.compile(rb"^>(>*From )")


class MboxSource(MailSource):
    """Reads messages from a single mbox file.

    The cursor is the byte offset of the next unread ``From_`` line (or the
    end of the file once everything has been read), so a later run can start
    exactly where this one stopped.
    """

    kind = "mbox"

    def __init__(self, path: Path, start_offset: int = 0) -> None:
        self._path = path
        self._start_offset = start_offset
        self._file: BinaryIO | None = None
        self._next_offset: int | None = None
        self._end_offset = start_offset

    def load(self) -> None:
        try:
            self._file = self._path.open("rb")
        except OSError as e:
            raise SourceUnavailable(f"Cannot open mbox {self._path}: {e}") from e

        self._file.seek(0, 2)
        self._end_offset = self._file.tell()
        if self._start_offset > self._end_offset:
            self._file.close()
            self._file = None
            raise SourceUnavailable(
                f"Start offset {self._start_offset} is beyond the end of {self._path} "
                f"({self._end_offset} bytes)"
            )

        self._next_offset = self._find_boundary(self._start_offset)
        logger.debug("Opened mbox %s at offset %d", self._path, self._start_offset)

    def done(self) -> bool:
        return self._next_offset is None

    def next_message(self) -> RawMessage:
        f = self._handle
        if self._next_offset is None:
            raise RuntimeError(f"No more messages in {self._path}")

        start = self._next_offset
        f.seek(start)
        f.readline()  # the From_ line itself is not part of the message

        lines: list[bytes] = []
        following: int | None = None
        previous_blank = False
        while True:
            position = f.tell()
            line = f.readline()
            if not line:
                break
            if previous_blank and _FROM_LINE.match(line):
                following = position
                break
            lines.append(_QUOTED_FROM.sub(rb"\1", line))
            previous_blank = not line.strip()

        # The blank separator line belongs to the mbox, not the message
        if lines and not lines[-1].strip():
            lines.pop()

        self._next_offset = following
        return RawMessage(
            data=b"".join(lines),
            description=f"mbox {self._path} offset {start}",
        )

    def cursor(self) -> str:
        if self._next_offset is None:
            return str(self._end_offset)
        return str(self._next_offset)

    def finish(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    @property
    def _handle(self) -> BinaryIO:
        if self._file is None:
            raise RuntimeError("Mbox not opened. Call load() first.")
        return self._file

    def _find_boundary(self, offset: int) -> int | None:
        """Return the offset of the first From_ line at or after ``offset``."""
        f = self._handle
        f.seek(offset)
        previous_blank = True
        while True:
            position = f.tell()
            line = f.readline()
            if not line:
                return None
            if previous_blank and _FROM_LINE.match(line):
                return position
            previous_blank = not line.strip()
