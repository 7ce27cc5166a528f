"""Common contract for mail sources."""

from __future__ import annotations

import abc
from typing import ClassVar

from mail_ingestor.core.models import RawMessage


class MailSource(abc.ABC):
    """A lazy, resumable producer of raw messages.

    Lifecycle: ``load()`` once, optionally ``skip(n)``, then ``next_message()``
    until ``done()``; ``finish()`` exactly once on every exit path. Each
    variant owns its own cursor and declares a fixed ``provides_labels``.
    """

    kind: ClassVar[str]
    PROVIDES_LABELS: ClassVar[bool] = False

    def provides_labels(self) -> bool:
        """Whether state/labels on produced messages are meaningful."""
        return self.PROVIDES_LABELS

    @abc.abstractmethod
    def load(self) -> None:
        """Open the underlying resource.

        Raises:
            SourceUnavailable: If the resource cannot be reached.
        """

    def skip(self, n: int) -> int:
        """Advance past the next ``n`` messages without returning them.

        Returns the number actually skipped.
        """
        skipped = 0
        while skipped < n and not self.done():
            self._advance()
            skipped += 1
        return skipped

    @abc.abstractmethod
    def done(self) -> bool:
        """True once no further messages remain."""

    @abc.abstractmethod
    def next_message(self) -> RawMessage:
        """Return the next message and advance by exactly one."""

    @abc.abstractmethod
    def cursor(self) -> str | None:
        """Current resumable position as a persistable scalar, or None."""

    @abc.abstractmethod
    def finish(self) -> None:
        """Release underlying resources."""

    def _advance(self) -> None:
        """Move past one message; variants override when skipping is cheaper than reading."""
        self.next_message()

    def __enter__(self) -> MailSource:
        self.load()
        return self

    def __exit__(self, *args: object) -> None:
        self.finish()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} cursor={self.cursor()!r}>"
