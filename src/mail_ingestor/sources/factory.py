"""Construction of the five mail source variants from resolved settings."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO

from mail_ingestor.config.settings import MailIngestorSettings
from mail_ingestor.core.gmail_client import GmailClient
from mail_ingestor.sources.base import MailSource
from mail_ingestor.sources.gmail import GmailSource
from mail_ingestor.sources.imap import ImapSource
from mail_ingestor.sources.maildir import MaildirSource
from mail_ingestor.sources.mbox import MboxSource
from mail_ingestor.sources.stream import StreamSource

SOURCE_KINDS = ("mbox", "maildir", "imap", "gmail", "stream")


def _offset(cursor: str | None) -> int:
    if not cursor:
        return 0
    try:
        return int(cursor)
    except ValueError as e:
        raise ValueError(f"Cursor {cursor!r} is not a byte offset or position") from e


def open_source(
    kind: str,
    settings: MailIngestorSettings,
    *,
    cursor: str | None = None,
    paths: Sequence[Path] = (),
    stream: BinaryIO | None = None,
    gmail_client: GmailClient | None = None,
) -> MailSource:
    """Create an unloaded source of the given kind.

    Args:
        kind: One of ``SOURCE_KINDS``.
        settings: Resolved settings (IMAP and Gmail options).
        cursor: Previously persisted cursor for this source, if any.
        paths: The mbox file (exactly one) or maildir directories.
        stream: Input for the stream source; stdin when omitted.
        gmail_client: An authenticated client for the Gmail source.
    """
    if kind == "mbox":
        if len(paths) != 1:
            raise ValueError("The mbox source takes exactly one file")
        return MboxSource(paths[0], start_offset=_offset(cursor))
    if kind == "maildir":
        if not paths:
            raise ValueError("The maildir source needs at least one directory")
        return MaildirSource(paths, position=_offset(cursor))
    if kind == "imap":
        return ImapSource(
            settings.imap_host,
            settings.imap_username,
            settings.imap_password,
            port=settings.imap_port,
            use_ssl=settings.imap_ssl,
            folder=settings.imap_folder,
            cursor=cursor,
        )
    if kind == "gmail":
        if gmail_client is None:
            raise ValueError("The gmail source needs an authenticated GmailClient")
        return GmailSource(
            gmail_client,
            cursor=cursor,
            label_id=settings.gmail_label,
            query=settings.gmail_query,
            max_results_per_page=settings.gmail_max_results_per_page,
        )
    if kind == "stream":
        return StreamSource(stream)
    raise ValueError(f"Unknown source kind {kind!r}; expected one of {', '.join(SOURCE_KINDS)}")
