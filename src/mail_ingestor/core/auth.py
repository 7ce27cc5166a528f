"""Gmail API credentials: cached-token loading and the interactive consent flow."""

from __future__ import annotations

import logging
from pathlib import Path

from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import Resource, build

from mail_ingestor.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)

# Read-only is enough: the Gmail source never modifies the mailbox
SCOPES = ["https://www.googleapis.com/auth/gmail.readonly"]


def load_cached_credentials(token_path: Path) -> Credentials | None:
    """Return usable credentials from the token cache, refreshing them if expired.

    Never opens a browser. Returns None when there is no cached token or it
    cannot be loaded or refreshed.
    """
    if not token_path.exists():
        return None

    try:
        creds = Credentials.from_authorized_user_file(str(token_path), SCOPES)
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable token cache %s: %s", token_path, e)
        return None

    if creds.valid:
        return creds
    if not (creds.expired and creds.refresh_token):
        return None

    try:
        creds.refresh(Request())
    except GoogleAuthError as e:
        logger.warning("Token refresh failed: %s", e)
        return None
    save_credentials(creds, token_path)
    logger.debug("Refreshed Gmail token cached at %s", token_path)
    return creds


def run_consent_flow(credentials_path: Path, token_path: Path) -> Credentials:
    """Ask the user to authorize read-only Gmail access in a browser.

    Raises:
        AuthenticationError: If the client secrets are missing or the flow fails.
    """
    if not credentials_path.exists():
        raise AuthenticationError(
            f"Client secrets not found at {credentials_path}; "
            "create an OAuth desktop client in Google Cloud Console and save it there."
        )

    try:
        flow = InstalledAppFlow.from_client_secrets_file(str(credentials_path), SCOPES)
        creds = flow.run_local_server(port=0)
    except Exception as e:
        raise AuthenticationError(f"Gmail consent flow failed: {e}") from e

    save_credentials(creds, token_path)
    logger.info("Gmail access granted, token cached at %s", token_path)
    return creds


def authenticate(credentials_path: Path, token_path: Path, *, interactive: bool = True) -> Credentials:
    """Get Gmail credentials, preferring the token cache.

    With ``interactive=False`` an unusable cache is an error instead of a
    browser prompt, which suits unattended imports.

    Raises:
        AuthenticationError: If no credentials can be obtained.
    """
    creds = load_cached_credentials(token_path)
    if creds is not None:
        return creds
    if not interactive:
        raise AuthenticationError(
            f"No valid Gmail token at {token_path}; run an interactive import once to create it"
        )
    return run_consent_flow(credentials_path, token_path)


def build_gmail_service(creds: Credentials) -> Resource:
    """Build a Gmail API service resource."""
    return build("gmail", "v1", credentials=creds)


def save_credentials(creds: Credentials, token_path: Path) -> None:
    token_path.parent.mkdir(parents=True, exist_ok=True)
    token_path.write_text(creds.to_json())
