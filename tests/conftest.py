"""Shared fixtures for Mail Ingestor tests."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from mail_ingestor.storage.archive import BlobArchive
from mail_ingestor.storage.index import MessageIndex

FROM_LINE = "From sender@example.com Mon Jan  1 10:00:00 2024\n"


def make_message(
    msgid: str | None = "msg1@example.com",
    subject: str = "Hello",
    body: str = "Hello, this is plain text.",
    sender: str = "Alice <alice@example.com>",
) -> bytes:
    """Build a minimal RFC 822 message."""
    lines = [
        f"From: {sender}",
        "To: bob@example.com",
        f"Subject: {subject}",
        "Date: Mon, 15 Jan 2024 10:30:00 +0000",
    ]
    if msgid is not None:
        lines.append(f"Message-Id: <{msgid}>")
    lines += ["Content-Type: text/plain; charset=utf-8", "", body, ""]
    return "\n".join(lines).encode("utf-8")


def write_mbox(path: Path, messages: list[bytes]) -> Path:
    """Write messages into an mbox file, each preceded by a From_ line."""
    with path.open("wb") as f:
        for message in messages:
            f.write(FROM_LINE.encode("ascii"))
            f.write(message)
            if not message.endswith(b"\n"):
                f.write(b"\n")
            f.write(b"\n")
    return path


@pytest.fixture
def message_factory() -> Callable[..., bytes]:
    return make_message


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "data" / "index.db"


@pytest.fixture
def index(tmp_db_path: Path):
    """A connected MessageIndex in a temporary directory."""
    idx = MessageIndex(tmp_db_path)
    idx.connect()
    yield idx
    idx.close()


@pytest.fixture
def archive(tmp_path: Path) -> BlobArchive:
    return BlobArchive(tmp_path / "archive")
