"""Tests for GmailClient with a mocked Gmail API service."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from googleapiclient.errors import HttpError

from mail_ingestor.core.exceptions import MailIngestorError, RateLimitError
from mail_ingestor.core.gmail_client import (
    GmailClient,
    HistoryExpiredError,
    _is_rate_limit_error,
)


@pytest.fixture
def mock_service() -> MagicMock:
    """Create a fully-mocked Gmail API Resource."""
    return MagicMock()


@pytest.fixture
def client(mock_service: MagicMock) -> GmailClient:
    """Create a GmailClient wrapping the mocked service with fast retry settings."""
    return GmailClient(
        mock_service,
        user_id="me",
        max_retries=3,
        initial_backoff_seconds=0.01,
        max_backoff_seconds=0.05,
        inter_page_delay_seconds=0.0,
        num_retries=0,
    )


class TestIsRateLimitError:
    """Tests for the module-level rate limit detection helper."""

    def test_detects_http_error_429(self) -> None:
        exc = HttpError(resp=MagicMock(status=429), content=b"rate limit")
        assert _is_rate_limit_error(exc) is True

    def test_detects_rate_limit_exceeded_in_string(self) -> None:
        assert _is_rate_limit_error(Exception("rateLimitExceeded")) is True

    def test_non_rate_limit_error(self) -> None:
        assert _is_rate_limit_error(Exception("Server error 500")) is False


class TestGetProfile:
    """get_profile() returns the profile dict."""

    def test_returns_history_id(self, client: GmailClient, mock_service: MagicMock) -> None:
        mock_service.users().getProfile().execute.return_value = {"historyId": "1234"}
        assert client.get_profile()["historyId"] == "1234"


class TestListLabels:
    """Tests for GmailClient.list_labels()."""

    def test_returns_formatted_label_list(
        self, client: GmailClient, mock_service: MagicMock
    ) -> None:
        mock_service.users().labels().list().execute.return_value = {
            "labels": [
                {"id": "INBOX", "name": "INBOX", "type": "system"},
                {"id": "Label_1", "name": "Work", "type": "user"},
            ]
        }
        assert client.list_labels() == [
            {"id": "INBOX", "name": "INBOX"},
            {"id": "Label_1", "name": "Work"},
        ]

    def test_raises_on_api_failure(self, client: GmailClient, mock_service: MagicMock) -> None:
        mock_service.users().labels().list().execute.side_effect = Exception("API unavailable")
        with pytest.raises(MailIngestorError, match="Failed to list labels"):
            client.list_labels()

    @patch("mail_ingestor.core.gmail_client.time.sleep")
    def test_retries_on_429_then_succeeds(
        self, mock_sleep: MagicMock, client: GmailClient, mock_service: MagicMock
    ) -> None:
        mock_service.users().labels().list().execute.side_effect = [
            Exception("HttpError 429: rateLimitExceeded"),
            {"labels": [{"id": "INBOX", "name": "INBOX"}]},
        ]
        assert client.list_labels() == [{"id": "INBOX", "name": "INBOX"}]
        assert mock_sleep.call_count == 1

    @patch("mail_ingestor.core.gmail_client.time.sleep")
    def test_raises_rate_limit_after_exhausting_retries(
        self, mock_sleep: MagicMock, client: GmailClient, mock_service: MagicMock
    ) -> None:
        mock_service.users().labels().list().execute.side_effect = Exception(
            "HttpError 429: rateLimitExceeded"
        )
        with pytest.raises(RateLimitError):
            client.list_labels()
        assert mock_sleep.call_count == 3


class TestDiscoverMessageIds:
    """discover_message_ids() paginates and yields id lists."""

    def test_follows_page_tokens(self, client: GmailClient, mock_service: MagicMock) -> None:
        mock_service.users().messages().list().execute.side_effect = [
            {"messages": [{"id": "m3"}, {"id": "m2"}], "nextPageToken": "tok"},
            {"messages": [{"id": "m1"}]},
        ]
        assert list(client.discover_message_ids()) == [["m3", "m2"], ["m1"]]

    def test_passes_label_and_query(self, client: GmailClient, mock_service: MagicMock) -> None:
        list_method = mock_service.users().messages().list
        list_method.return_value.execute.return_value = {"messages": []}
        list(client.discover_message_ids("Label_1", 50, query="from:bob"))
        list_method.assert_called_with(
            userId="me", maxResults=50, labelIds=["Label_1"], q="from:bob"
        )

    def test_no_messages(self, client: GmailClient, mock_service: MagicMock) -> None:
        mock_service.users().messages().list().execute.return_value = {}
        assert list(client.discover_message_ids()) == []


class TestListAddedMessageIds:
    """list_added_message_ids() reads messageAdded history."""

    def test_collects_unique_ids_in_order(
        self, client: GmailClient, mock_service: MagicMock
    ) -> None:
        mock_service.users().history().list().execute.side_effect = [
            {
                "history": [
                    {"id": "11", "messagesAdded": [{"message": {"id": "a"}}]},
                    {"id": "12", "messagesAdded": [{"message": {"id": "b"}}]},
                ],
                "nextPageToken": "p2",
            },
            {"history": [{"id": "13", "messagesAdded": [{"message": {"id": "a"}}]}]},
        ]
        assert client.list_added_message_ids("10") == ["a", "b"]

    def test_expired_history(self, client: GmailClient, mock_service: MagicMock) -> None:
        mock_service.users().history().list().execute.side_effect = HttpError(
            resp=MagicMock(status=404), content=b"not found"
        )
        with pytest.raises(HistoryExpiredError):
            client.list_added_message_ids("1")

    def test_other_errors_propagate(self, client: GmailClient, mock_service: MagicMock) -> None:
        mock_service.users().history().list().execute.side_effect = HttpError(
            resp=MagicMock(status=500), content=b"boom"
        )
        with pytest.raises(MailIngestorError) as excinfo:
            client.list_added_message_ids("1")
        assert not isinstance(excinfo.value, HistoryExpiredError)


class TestFetchRawMessage:
    """fetch_raw_message() requests format=raw."""

    def test_requests_raw_format(self, client: GmailClient, mock_service: MagicMock) -> None:
        get_method = mock_service.users().messages().get
        get_method.return_value.execute.return_value = {"id": "m1", "raw": "abc"}
        assert client.fetch_raw_message("m1")["raw"] == "abc"
        get_method.assert_called_with(userId="me", id="m1", format="raw")
