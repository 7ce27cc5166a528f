"""Tests for Gmail credential loading and the consent flow."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from google.auth.exceptions import RefreshError

from mail_ingestor.core.auth import (
    SCOPES,
    authenticate,
    load_cached_credentials,
    run_consent_flow,
)
from mail_ingestor.core.exceptions import AuthenticationError


@pytest.fixture
def token(tmp_path: Path) -> Path:
    path = tmp_path / "token.json"
    path.write_text("{}")
    return path


class TestLoadCachedCredentials:
    """The token cache is used without ever opening a browser."""

    def test_no_cache(self, tmp_path: Path) -> None:
        assert load_cached_credentials(tmp_path / "token.json") is None

    def test_valid_token(self, token: Path) -> None:
        creds = MagicMock(valid=True)
        with patch("mail_ingestor.core.auth.Credentials") as mock_creds:
            mock_creds.from_authorized_user_file.return_value = creds
            assert load_cached_credentials(token) is creds
        mock_creds.from_authorized_user_file.assert_called_once_with(str(token), SCOPES)

    def test_expired_token_refreshed_and_saved(self, token: Path) -> None:
        creds = MagicMock(valid=False, expired=True, refresh_token="r")
        creds.to_json.return_value = '{"refreshed": true}'
        with patch("mail_ingestor.core.auth.Credentials") as mock_creds, patch(
            "mail_ingestor.core.auth.Request"
        ):
            mock_creds.from_authorized_user_file.return_value = creds
            assert load_cached_credentials(token) is creds
        creds.refresh.assert_called_once()
        assert token.read_text() == '{"refreshed": true}'

    def test_refresh_failure(self, token: Path) -> None:
        creds = MagicMock(valid=False, expired=True, refresh_token="r")
        creds.refresh.side_effect = RefreshError("revoked")
        with patch("mail_ingestor.core.auth.Credentials") as mock_creds, patch(
            "mail_ingestor.core.auth.Request"
        ):
            mock_creds.from_authorized_user_file.return_value = creds
            assert load_cached_credentials(token) is None

    def test_unreadable_token(self, token: Path) -> None:
        with patch("mail_ingestor.core.auth.Credentials") as mock_creds:
            mock_creds.from_authorized_user_file.side_effect = ValueError("bad json")
            assert load_cached_credentials(token) is None


class TestConsentFlow:
    """run_consent_flow() wraps the installed-app flow."""

    def test_missing_client_secrets(self, tmp_path: Path) -> None:
        with pytest.raises(AuthenticationError, match="Client secrets not found"):
            run_consent_flow(tmp_path / "client.json", tmp_path / "token.json")

    def test_token_cached_after_consent(self, tmp_path: Path) -> None:
        client = tmp_path / "client.json"
        client.write_text("{}")
        token = tmp_path / "creds" / "token.json"
        creds = MagicMock()
        creds.to_json.return_value = "{}"
        with patch("mail_ingestor.core.auth.InstalledAppFlow") as mock_flow:
            mock_flow.from_client_secrets_file.return_value.run_local_server.return_value = creds
            assert run_consent_flow(client, token) is creds
        assert token.exists()

    def test_flow_failure_wrapped(self, tmp_path: Path) -> None:
        client = tmp_path / "client.json"
        client.write_text("{}")
        with patch("mail_ingestor.core.auth.InstalledAppFlow") as mock_flow:
            mock_flow.from_client_secrets_file.side_effect = ValueError("bad secrets")
            with pytest.raises(AuthenticationError, match="bad secrets"):
                run_consent_flow(client, tmp_path / "token.json")


class TestAuthenticate:
    """authenticate() prefers the cache and only prompts when allowed."""

    def test_cache_wins(self, tmp_path: Path) -> None:
        creds = MagicMock()
        with patch(
            "mail_ingestor.core.auth.load_cached_credentials", return_value=creds
        ), patch("mail_ingestor.core.auth.run_consent_flow") as mock_flow:
            assert authenticate(tmp_path / "c.json", tmp_path / "t.json") is creds
        mock_flow.assert_not_called()

    def test_falls_back_to_consent(self, tmp_path: Path) -> None:
        creds = MagicMock()
        with patch(
            "mail_ingestor.core.auth.load_cached_credentials", return_value=None
        ), patch("mail_ingestor.core.auth.run_consent_flow", return_value=creds) as mock_flow:
            assert authenticate(tmp_path / "c.json", tmp_path / "t.json") is creds
        mock_flow.assert_called_once_with(tmp_path / "c.json", tmp_path / "t.json")

    def test_non_interactive_never_prompts(self, tmp_path: Path) -> None:
        with patch(
            "mail_ingestor.core.auth.load_cached_credentials", return_value=None
        ), patch("mail_ingestor.core.auth.run_consent_flow") as mock_flow:
            with pytest.raises(AuthenticationError, match="No valid Gmail token"):
                authenticate(tmp_path / "c.json", tmp_path / "t.json", interactive=False)
        mock_flow.assert_not_called()
