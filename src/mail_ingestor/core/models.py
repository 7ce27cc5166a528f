"""Frozen dataclasses for the Mail Ingestor domain model."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime

UNREAD = "unread"
READ = "read"
INBOX = "inbox"

DEFAULT_STATE: frozenset[str] = frozenset({UNREAD})
DEFAULT_LABELS: frozenset[str] = frozenset({INBOX})


@dataclass(frozen=True)
class RawMessage:
    """One message as produced by a source: raw bytes plus provenance metadata."""

    data: bytes
    description: str
    state: frozenset[str] = frozenset()
    labels: frozenset[str] = frozenset()


@dataclass(frozen=True)
class EmailHeader:
    """Parsed email headers."""

    subject: str
    sender: str
    to: str
    date: datetime
    cc: str = ""
    message_id_header: str = ""
    in_reply_to: str = ""
    references: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ParsedMessage:
    """A structured message ready for deduplication and indexing.

    ``safe_msgid`` is the store-level identity; ``native_msgid`` is only used
    to look the message up in an external label dump.
    """

    safe_msgid: str
    native_msgid: str
    header: EmailHeader
    body_text: str = ""


class IngestState(enum.Enum):
    """Lifecycle of a single ingestion run."""

    IDLE = "idle"
    LOADING = "loading"
    SKIPPING = "skipping"
    IMPORTING = "importing"
    FINALIZING = "finalizing"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class RunCounters:
    """Mutable per-run counters; ``scanned == indexed + bad + seen`` between messages."""

    scanned: int = 0
    indexed: int = 0
    bad: int = 0
    seen: int = 0
    elapsed_seconds: float = 0.0
    state: IngestState = IngestState.IDLE

    @property
    def rate(self) -> float:
        """Messages scanned per second over the elapsed run time."""
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.scanned / self.elapsed_seconds
