"""SQLite-backed message index used by the direct-store sink."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from mail_ingestor.core.models import ParsedMessage

logger = logging.getLogger(__name__)


class MessageIndex:
    """Stores indexed messages keyed by safe message-id.

    Tables:
    - messages: one row per message with headers, body text and archive location
    - message_labels / message_state: tag junction tables
    - import_runs: audit log of ingestion runs

    Only one process may write to a given database at a time.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Open database connection and ensure schema exists."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_tables()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> MessageIndex:
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def _create_tables(self) -> None:
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS messages (
                safe_msgid TEXT PRIMARY KEY,
                native_msgid TEXT NOT NULL,
                subject TEXT DEFAULT '',
                sender TEXT DEFAULT '',
                recipients TEXT DEFAULT '',
                date TEXT DEFAULT '',
                in_reply_to TEXT DEFAULT '',
                body_text TEXT DEFAULT '',
                location TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_messages_native ON messages(native_msgid);

            CREATE TABLE IF NOT EXISTS message_labels (
                safe_msgid TEXT NOT NULL,
                label TEXT NOT NULL,
                PRIMARY KEY (safe_msgid, label),
                FOREIGN KEY (safe_msgid) REFERENCES messages(safe_msgid)
            );

            CREATE TABLE IF NOT EXISTS message_state (
                safe_msgid TEXT NOT NULL,
                state TEXT NOT NULL,
                PRIMARY KEY (safe_msgid, state),
                FOREIGN KEY (safe_msgid) REFERENCES messages(safe_msgid)
            );

            CREATE TABLE IF NOT EXISTS import_runs (
                run_id INTEGER PRIMARY KEY AUTOINCREMENT,
                source TEXT NOT NULL,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                outcome TEXT DEFAULT '',
                cursor TEXT DEFAULT '',
                scanned INTEGER DEFAULT 0,
                indexed INTEGER DEFAULT 0,
                bad INTEGER DEFAULT 0,
                seen INTEGER DEFAULT 0
            );
        """)

    def contains_safe_msgid(self, safe_msgid: str) -> bool:
        """Check whether a message with this safe message-id is already indexed."""
        row = self.conn.execute(
            "SELECT 1 FROM messages WHERE safe_msgid = ?", (safe_msgid,)
        ).fetchone()
        return row is not None

    def add_message(
        self,
        message: ParsedMessage,
        state: Iterable[str],
        labels: Iterable[str],
        location: str,
    ) -> None:
        """Index a parsed message together with its state, labels and archive location."""
        now = datetime.now(UTC).isoformat()
        header = message.header
        recipients = ", ".join(r for r in (header.to, header.cc) if r)
        with self.conn:
            self.conn.execute(
                """INSERT INTO messages
                   (safe_msgid, native_msgid, subject, sender, recipients, date,
                    in_reply_to, body_text, location, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    message.safe_msgid,
                    message.native_msgid,
                    header.subject,
                    header.sender,
                    recipients,
                    header.date.isoformat(),
                    header.in_reply_to,
                    message.body_text,
                    location,
                    now,
                ),
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO message_labels (safe_msgid, label) VALUES (?, ?)",
                [(message.safe_msgid, label) for label in sorted(labels)],
            )
            self.conn.executemany(
                "INSERT OR IGNORE INTO message_state (safe_msgid, state) VALUES (?, ?)",
                [(message.safe_msgid, tag) for tag in sorted(state)],
            )

    def get_message(self, safe_msgid: str) -> dict | None:
        """Get the full message record by safe message-id."""
        row = self.conn.execute(
            "SELECT * FROM messages WHERE safe_msgid = ?", (safe_msgid,)
        ).fetchone()
        return dict(row) if row else None

    def get_message_labels(self, safe_msgid: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT label FROM message_labels WHERE safe_msgid = ? ORDER BY label",
            (safe_msgid,),
        ).fetchall()
        return [row["label"] for row in rows]

    def get_message_state(self, safe_msgid: str) -> list[str]:
        rows = self.conn.execute(
            "SELECT state FROM message_state WHERE safe_msgid = ? ORDER BY state",
            (safe_msgid,),
        ).fetchall()
        return [row["state"] for row in rows]

    def count_messages(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS cnt FROM messages").fetchone()
        return row["cnt"]

    def start_run(self, source: str) -> int:
        """Record the start of an import run. Returns the run_id."""
        now = datetime.now(UTC).isoformat()
        cursor = self.conn.execute(
            "INSERT INTO import_runs (source, started_at) VALUES (?, ?)",
            (source, now),
        )
        self.conn.commit()
        return cursor.lastrowid or 0

    def complete_run(
        self,
        run_id: int,
        *,
        outcome: str,
        cursor: str | None = None,
        scanned: int = 0,
        indexed: int = 0,
        bad: int = 0,
        seen: int = 0,
    ) -> None:
        """Record the completion of an import run."""
        now = datetime.now(UTC).isoformat()
        self.conn.execute(
            """UPDATE import_runs SET
               completed_at = ?, outcome = ?, cursor = ?,
               scanned = ?, indexed = ?, bad = ?, seen = ?
               WHERE run_id = ?""",
            (now, outcome, cursor or "", scanned, indexed, bad, seen, run_id),
        )
        self.conn.commit()

    def get_run(self, run_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM import_runs WHERE run_id = ?", (run_id,)
        ).fetchone()
        return dict(row) if row else None
