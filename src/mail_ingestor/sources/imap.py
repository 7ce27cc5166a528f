"""IMAP folder source, resumable by a UIDVALIDITY/UID session marker."""

from __future__ import annotations

import imaplib
import logging
import re
from collections.abc import Callable

from mail_ingestor.core.exceptions import SourceUnavailable
from mail_ingestor.core.models import INBOX, READ, UNREAD, RawMessage
from mail_ingestor.sources.base import MailSource

logger = logging.getLogger(__name__)

_UIDVALIDITY = re.compile(rb"UIDVALIDITY (\d+)")

# IMAP system flag → state tag
_FLAG_STATES = {
    b"\\Flagged": "starred",
    b"\\Draft": "draft",
    b"\\Deleted": "deleted",
}


def parse_marker(marker: str | None) -> tuple[int | None, int]:
    """Split a ``"<uidvalidity>:<last uid>"`` marker; a missing marker means start over."""
    if not marker:
        return None, 0
    try:
        validity, last_uid = marker.split(":", 1)
        return int(validity), int(last_uid)
    except ValueError:
        logger.warning("Ignoring malformed IMAP marker %r", marker)
        return None, 0


def flags_to_state(flags: tuple[bytes, ...]) -> frozenset[str]:
    """Map IMAP message flags onto state tags; read/unread is always present."""
    state = {READ if b"\\Seen" in flags else UNREAD}
    state.update(tag for flag, tag in _FLAG_STATES.items() if flag in flags)
    return frozenset(state)


def folder_label(folder: str) -> str:
    return INBOX if folder.upper() == "INBOX" else folder.lower()


class ImapSource(MailSource):
    """Reads messages newer than the persisted marker from one IMAP folder.

    The folder is selected read-only and bodies are fetched with
    ``BODY.PEEK[]`` so importing never changes the server's read state.
    """

    kind = "imap"
    PROVIDES_LABELS = True

    def __init__(
        self,
        host: str | None,
        username: str | None,
        password: str | None,
        *,
        port: int = 993,
        use_ssl: bool = True,
        folder: str = "INBOX",
        cursor: str | None = None,
        connect: Callable[[str, int], imaplib.IMAP4] | None = None,
    ) -> None:
        self._host = host
        self._username = username
        self._password = password
        self._port = port
        self._folder = folder
        self._marker = cursor
        self._connect = connect or (imaplib.IMAP4_SSL if use_ssl else imaplib.IMAP4)
        self._conn: imaplib.IMAP4 | None = None
        self._uidvalidity: int | None = None
        self._last_uid = 0
        self._uids: list[int] = []
        self._index = 0

    def load(self) -> None:
        if not self._host or not self._username or self._password is None:
            raise SourceUnavailable("IMAP host, username and password must all be configured")

        stored_validity, last_uid = parse_marker(self._marker)
        try:
            self._conn = self._connect(self._host, self._port)
            self._conn.login(self._username, self._password)
            status, _ = self._conn.select(self._mailbox, readonly=True)
            if status != "OK":
                raise SourceUnavailable(f"Cannot select IMAP folder {self._folder}")

            self._uidvalidity = self._read_uidvalidity()
            if stored_validity is not None and stored_validity != self._uidvalidity:
                logger.warning(
                    "UIDVALIDITY of %s changed (%s -> %s), importing from the beginning",
                    self._folder, stored_validity, self._uidvalidity,
                )
                last_uid = 0

            status, data = self._conn.uid("SEARCH", None, f"UID {last_uid + 1}:*")
            if status != "OK":
                raise SourceUnavailable(f"UID SEARCH failed in {self._folder}")
        except (imaplib.IMAP4.error, OSError) as e:
            self.finish()
            raise SourceUnavailable(
                f"Cannot open IMAP folder {self._folder} on {self._host}: {e}"
            ) from e
        except SourceUnavailable:
            self.finish()
            raise

        # "n:*" always matches the highest UID, even when it is below n
        uids = (int(uid) for uid in (data[0] or b"").split())
        self._uids = sorted(uid for uid in uids if uid > last_uid)
        self._last_uid = last_uid
        self._index = 0
        logger.info(
            "%d new messages in %s on %s since UID %d",
            len(self._uids), self._folder, self._host, last_uid,
        )

    def done(self) -> bool:
        return self._index >= len(self._uids)

    def next_message(self) -> RawMessage:
        if self.done():
            raise RuntimeError(f"No more messages in {self._folder}")
        uid = self._uids[self._index]
        try:
            status, data = self._session.uid("FETCH", str(uid), "(FLAGS BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as e:
            raise SourceUnavailable(f"Failed to fetch UID {uid} from {self._folder}: {e}") from e
        if status != "OK" or not data or not isinstance(data[0], tuple):
            raise SourceUnavailable(f"Server returned no data for UID {uid} in {self._folder}")

        envelope, body = data[0]
        # FLAGS may follow the literal, arriving as trailing bytes items
        trailer = b"".join(item for item in data[1:] if isinstance(item, bytes))
        self._index += 1
        self._last_uid = uid
        return RawMessage(
            data=body,
            description=f"imap {self._host}/{self._folder} uid {uid}",
            state=flags_to_state(imaplib.ParseFlags(envelope + trailer)),
            labels=frozenset({folder_label(self._folder)}),
        )

    def cursor(self) -> str | None:
        if self._uidvalidity is None:
            return self._marker
        return f"{self._uidvalidity}:{self._last_uid}"

    def finish(self) -> None:
        if self._conn is None:
            return
        try:
            if self._conn.state == "SELECTED":
                self._conn.close()
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError) as e:
            logger.warning("Error during IMAP logout: %s", e)
        finally:
            self._conn = None

    def _advance(self) -> None:
        self._last_uid = self._uids[self._index]
        self._index += 1

    @property
    def _session(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise RuntimeError("IMAP session not open. Call load() first.")
        return self._conn

    @property
    def _mailbox(self) -> str:
        if " " in self._folder and not self._folder.startswith('"'):
            return f'"{self._folder}"'
        return self._folder

    def _read_uidvalidity(self) -> int:
        status, data = self._session.status(self._mailbox, "(UIDVALIDITY)")
        match = _UIDVALIDITY.search(data[0] or b"") if status == "OK" and data else None
        if not match:
            raise SourceUnavailable(f"Server did not report UIDVALIDITY for {self._folder}")
        return int(match.group(1))
