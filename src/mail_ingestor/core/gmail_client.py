"""Gmail API client for profile, label listing, message discovery, history and raw fetch."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Generator
from typing import Any

from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from mail_ingestor.core.exceptions import MailIngestorError, RateLimitError

logger = logging.getLogger(__name__)


class HistoryExpiredError(MailIngestorError):
    """The requested startHistoryId is older than Gmail keeps history for."""


def _is_rate_limit_error(exc: Exception) -> bool:
    """Check whether an exception represents a Gmail API 429 rate limit."""
    if isinstance(exc, HttpError) and exc.status_code == 429:
        return True
    error_str = str(exc)
    return "429" in error_str or "rateLimitExceeded" in error_str


def _is_not_found(exc: BaseException | None) -> bool:
    return isinstance(exc, HttpError) and exc.status_code == 404


class GmailClient:
    """Thin wrapper around the Gmail API with exponential backoff on 429s."""

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        max_retries: int = 5,
        initial_backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 60.0,
        inter_page_delay_seconds: float = 0.2,
        num_retries: int = 3,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._max_retries = max_retries
        self._initial_backoff = initial_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._inter_page_delay = inter_page_delay_seconds
        self._num_retries = num_retries

    def _execute_with_retry(self, request: Any, context: str) -> Any:
        """Execute a single API request with exponential backoff on 429 errors.

        Raises:
            RateLimitError: When retries are exhausted on 429 errors.
            MailIngestorError: On non-rate-limit API errors.
        """
        backoff = self._initial_backoff

        for attempt in range(self._max_retries + 1):
            try:
                return request.execute(num_retries=self._num_retries)
            except Exception as e:
                if _is_rate_limit_error(e):
                    if attempt >= self._max_retries:
                        raise RateLimitError(
                            f"Rate limited during {context} after "
                            f"{self._max_retries} retries: {e}"
                        ) from e
                    sleep_time = min(backoff, self._max_backoff)
                    jitter = random.uniform(0, sleep_time)
                    logger.warning(
                        "Rate limited during %s (attempt %d/%d), sleeping %.2fs",
                        context, attempt + 1, self._max_retries, jitter,
                    )
                    time.sleep(jitter)
                    backoff = min(backoff * 2, self._max_backoff)
                else:
                    raise MailIngestorError(f"Failed to {context}: {e}") from e

        raise RateLimitError(f"Rate limited during {context} after {self._max_retries} retries")

    def get_profile(self) -> dict[str, Any]:
        """Return the mailbox profile, including the current ``historyId``."""
        request = self._service.users().getProfile(userId=self._user_id)
        return self._execute_with_retry(request, "get profile")

    def list_labels(self) -> list[dict[str, str]]:
        """List all Gmail labels as dicts with 'id' and 'name' keys."""
        request = self._service.users().labels().list(userId=self._user_id)
        results = self._execute_with_retry(request, "list labels")
        labels = results.get("labels", [])
        return [{"id": lbl["id"], "name": lbl["name"]} for lbl in labels]

    def discover_message_ids(
        self,
        label_id: str | None = None,
        max_results_per_page: int = 100,
        query: str | None = None,
    ) -> Generator[list[str], None, None]:
        """Paginate through message IDs, newest first, yielding one list per page."""
        page_token: str | None = None
        first_page = True

        while True:
            if not first_page and self._inter_page_delay > 0:
                time.sleep(self._inter_page_delay)
            first_page = False

            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "maxResults": max_results_per_page,
            }
            if label_id:
                kwargs["labelIds"] = [label_id]
            if page_token:
                kwargs["pageToken"] = page_token
            if query:
                kwargs["q"] = query

            request = self._service.users().messages().list(**kwargs)
            response = self._execute_with_retry(request, "discover messages")

            messages = response.get("messages", [])
            if not messages:
                return

            ids = [msg["id"] for msg in messages]
            logger.debug("Discovered %d message IDs (page)", len(ids))
            yield ids

            page_token = response.get("nextPageToken")
            if not page_token:
                return

    def list_added_message_ids(
        self, start_history_id: str, label_id: str | None = None
    ) -> list[str]:
        """Return IDs of messages added since ``start_history_id``, oldest first.

        Raises:
            HistoryExpiredError: If Gmail no longer has history that far back.
        """
        page_token: str | None = None
        seen: set[str] = set()
        ids: list[str] = []

        while True:
            kwargs: dict[str, Any] = {
                "userId": self._user_id,
                "startHistoryId": start_history_id,
                "historyTypes": ["messageAdded"],
            }
            if label_id:
                kwargs["labelId"] = label_id
            if page_token:
                kwargs["pageToken"] = page_token

            request = self._service.users().history().list(**kwargs)
            try:
                response = self._execute_with_retry(request, "list history")
            except MailIngestorError as e:
                if _is_not_found(e.__cause__):
                    raise HistoryExpiredError(
                        f"History {start_history_id} is no longer available"
                    ) from e
                raise

            for record in response.get("history", []):
                for added in record.get("messagesAdded", []):
                    message_id = added.get("message", {}).get("id")
                    if message_id and message_id not in seen:
                        seen.add(message_id)
                        ids.append(message_id)

            page_token = response.get("nextPageToken")
            if not page_token:
                return ids

    def fetch_raw_message(self, message_id: str) -> dict[str, Any]:
        """Fetch one message in ``raw`` format (base64url RFC 822 plus labelIds)."""
        request = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="raw")
        )
        return self._execute_with_retry(request, f"fetch message {message_id}")

    def close(self) -> None:
        """Close the underlying HTTP connection of the service."""
        self._service.close()
