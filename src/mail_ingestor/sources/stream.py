"""Single-message source reading from a binary stream (stdin by default)."""

from __future__ import annotations

import sys
from typing import BinaryIO

from mail_ingestor.core.exceptions import SourceUnavailable
from mail_ingestor.core.models import RawMessage
from mail_ingestor.sources.base import MailSource


class StreamSource(MailSource):
    """Reads exactly one message; there is nothing to resume."""

    kind = "stream"

    def __init__(self, stream: BinaryIO | None = None, name: str = "<stdin>") -> None:
        self._stream = stream
        self._name = name
        self._consumed = False

    def load(self) -> None:
        if self._stream is None:
            self._stream = sys.stdin.buffer
        if self._stream.closed:
            raise SourceUnavailable(f"Input stream {self._name} is closed")

    def done(self) -> bool:
        return self._consumed

    def next_message(self) -> RawMessage:
        if self._consumed or self._stream is None:
            raise RuntimeError(f"No more messages in {self._name}")
        data = self._stream.read()
        self._consumed = True
        return RawMessage(data=data, description=f"stream {self._name}")

    def cursor(self) -> None:
        return None

    def finish(self) -> None:
        self._consumed = True

    def _advance(self) -> None:
        self._consumed = True
