"""Gmail API source, resumable by Gmail history id."""

from __future__ import annotations

import base64
import logging
from collections.abc import Mapping

from mail_ingestor.core.exceptions import MailIngestorError, SourceUnavailable
from mail_ingestor.core.gmail_client import GmailClient, HistoryExpiredError
from mail_ingestor.core.models import READ, UNREAD, RawMessage
from mail_ingestor.sources.base import MailSource

logger = logging.getLogger(__name__)

# Gmail system labels that describe message state rather than location
_STATE_LABELS = {
    "STARRED": "starred",
    "DRAFT": "draft",
    "TRASH": "deleted",
    "SPAM": "spam",
}


def gmail_metadata(
    label_ids: list[str], label_names: Mapping[str, str]
) -> tuple[frozenset[str], frozenset[str]]:
    """Translate Gmail labelIds into (state, labels)."""
    state = {UNREAD if "UNREAD" in label_ids else READ}
    labels: set[str] = set()
    for label_id in label_ids:
        if label_id == "UNREAD" or label_id.startswith("CATEGORY_"):
            continue
        if label_id in _STATE_LABELS:
            state.add(_STATE_LABELS[label_id])
        else:
            labels.add(label_names.get(label_id, label_id).lower())
    return frozenset(state), frozenset(labels)


def decode_raw(data: str) -> bytes:
    """Decode Gmail's base64url ``raw`` field."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded)


class GmailSource(MailSource):
    """Reads messages through the Gmail API.

    With a stored history id only messages added since then are listed;
    otherwise every message (optionally restricted by label or query) is
    imported, oldest first. The cursor moves to the history id captured at
    load time only after all listed messages have been consumed.
    """

    kind = "gmail"
    PROVIDES_LABELS = True

    def __init__(
        self,
        client: GmailClient,
        *,
        cursor: str | None = None,
        label_id: str | None = None,
        query: str | None = None,
        max_results_per_page: int = 100,
    ) -> None:
        self._client = client
        self._start_marker = cursor
        self._label_id = label_id
        self._query = query
        self._max_results_per_page = max_results_per_page
        self._load_marker: str | None = None
        self._label_names: dict[str, str] = {}
        self._ids: list[str] = []
        self._index = 0

    def load(self) -> None:
        try:
            profile = self._client.get_profile()
            self._load_marker = str(profile["historyId"])
            self._label_names = {lbl["id"]: lbl["name"] for lbl in self._client.list_labels()}
            self._ids = self._list_ids()
        except (MailIngestorError, KeyError) as e:
            raise SourceUnavailable(f"Cannot open Gmail mailbox: {e}") from e
        self._index = 0
        logger.info("%d Gmail messages to import", len(self._ids))

    def done(self) -> bool:
        return self._index >= len(self._ids)

    def next_message(self) -> RawMessage:
        if self.done():
            raise RuntimeError("No more Gmail messages")
        message_id = self._ids[self._index]
        try:
            response = self._client.fetch_raw_message(message_id)
            data = decode_raw(response["raw"])
        except (MailIngestorError, KeyError, ValueError) as e:
            raise SourceUnavailable(f"Failed to fetch Gmail message {message_id}: {e}") from e

        state, labels = gmail_metadata(response.get("labelIds", []), self._label_names)
        self._index += 1
        return RawMessage(
            data=data,
            description=f"gmail message {message_id}",
            state=state,
            labels=labels,
        )

    def cursor(self) -> str | None:
        if self._load_marker is not None and self.done():
            return self._load_marker
        return self._start_marker

    def finish(self) -> None:
        self._client.close()

    def _advance(self) -> None:
        self._index += 1

    def _list_ids(self) -> list[str]:
        if self._start_marker:
            try:
                return self._client.list_added_message_ids(self._start_marker, self._label_id)
            except HistoryExpiredError:
                logger.warning(
                    "Gmail history %s expired, falling back to a full listing",
                    self._start_marker,
                )

        ids = [
            message_id
            for page in self._client.discover_message_ids(
                self._label_id, self._max_results_per_page, query=self._query
            )
            for message_id in page
        ]
        ids.reverse()
        return ids
