"""Tests for MessageIndex, the SQLite-backed message index."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

import pytest

from mail_ingestor.core.models import EmailHeader, ParsedMessage
from mail_ingestor.storage.index import MessageIndex


def _message(safe: str = "a@x", native: str = "a@x") -> ParsedMessage:
    return ParsedMessage(
        safe_msgid=safe,
        native_msgid=native,
        header=EmailHeader(
            subject="Hello",
            sender="alice@example.com",
            to="bob@example.com",
            cc="carol@example.com",
            date=datetime(2024, 1, 15, 10, 30),
        ),
        body_text="body",
    )


class TestConnect:
    """connect() initialises the database schema."""

    @pytest.mark.parametrize(
        "table", ["messages", "message_labels", "message_state", "import_runs"]
    )
    def test_creates_tables(self, index: MessageIndex, table: str) -> None:
        rows = index.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        ).fetchall()
        assert len(rows) == 1

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        nested = tmp_path / "a" / "b" / "index.db"
        with MessageIndex(nested):
            pass
        assert nested.exists()

    def test_conn_requires_connect(self, tmp_db_path: Path) -> None:
        with pytest.raises(RuntimeError, match="not connected"):
            MessageIndex(tmp_db_path).conn


class TestAddMessage:
    """add_message() stores the row plus state and label tags."""

    def test_contains_after_add(self, index: MessageIndex) -> None:
        assert index.contains_safe_msgid("a@x") is False
        index.add_message(_message(), {"unread"}, {"inbox"}, "ab/abc.eml")
        assert index.contains_safe_msgid("a@x") is True

    def test_row_fields(self, index: MessageIndex) -> None:
        index.add_message(_message(), {"unread"}, {"inbox"}, "ab/abc.eml")
        row = index.get_message("a@x")
        assert row is not None
        assert row["subject"] == "Hello"
        assert row["recipients"] == "bob@example.com, carol@example.com"
        assert row["location"] == "ab/abc.eml"
        assert row["body_text"] == "body"
        assert row["date"].startswith("2024-01-15")

    def test_labels_and_state(self, index: MessageIndex) -> None:
        index.add_message(_message(), {"unread", "starred"}, {"inbox", "work"}, "loc")
        assert index.get_message_labels("a@x") == ["inbox", "work"]
        assert index.get_message_state("a@x") == ["starred", "unread"]

    def test_duplicate_insert_rejected(self, index: MessageIndex) -> None:
        index.add_message(_message(), {"unread"}, {"inbox"}, "loc")
        with pytest.raises(Exception):
            index.add_message(_message(), {"unread"}, {"inbox"}, "loc")
        assert index.count_messages() == 1

    def test_persists_across_connections(self, tmp_db_path: Path) -> None:
        with MessageIndex(tmp_db_path) as idx:
            idx.add_message(_message(), {"unread"}, {"inbox"}, "loc")
        with MessageIndex(tmp_db_path) as idx:
            assert idx.contains_safe_msgid("a@x")

    def test_get_missing_message(self, index: MessageIndex) -> None:
        assert index.get_message("nope") is None


class TestRuns:
    """start_run()/complete_run() keep an audit log."""

    def test_run_lifecycle(self, index: MessageIndex) -> None:
        run_id = index.start_run("mbox")
        index.complete_run(
            run_id, outcome="complete", cursor="1024", scanned=3, indexed=2, bad=0, seen=1
        )
        run = index.get_run(run_id)
        assert run is not None
        assert run["source"] == "mbox"
        assert run["outcome"] == "complete"
        assert run["cursor"] == "1024"
        assert (run["scanned"], run["indexed"], run["bad"], run["seen"]) == (3, 2, 0, 1)
        assert run["completed_at"]

    def test_run_ids_increment(self, index: MessageIndex) -> None:
        assert index.start_run("mbox") < index.start_run("maildir")
