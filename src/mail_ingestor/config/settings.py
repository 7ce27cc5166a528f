"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class MailIngestorSettings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="MAIL_INGESTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Direct store
    database_path: Path = Path("data/index.db")
    archive_dir: Path = Path("data/archive")

    # Network sink; when set, messages are posted here instead of the direct store
    server_url: str | None = None
    http_timeout_seconds: float = 30.0

    # Run control
    num_messages: int | None = None
    num_skip: int = 0
    cursor_path: Path | None = None
    label_dump_path: Path | None = None
    bad_message_path: Path = Path("data/bad-message.eml")
    progress_interval_seconds: float = 5.0

    # IMAP
    imap_host: str | None = None
    imap_port: int = 993
    imap_ssl: bool = True
    imap_username: str | None = None
    imap_password: str | None = None
    imap_folder: str = "INBOX"

    # Gmail API
    gmail_credentials_path: Path = Path("credentials/client_secret.json")
    gmail_token_path: Path = Path("credentials/token.json")
    gmail_label: str | None = None
    gmail_query: str | None = None
    gmail_max_results_per_page: int = 100

    # Rate limiting & retry
    max_retries: int = 5
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 60.0
    inter_page_delay_seconds: float = 0.2
    num_retries: int = 3

    # Logging
    log_level: str = "INFO"

    def ensure_directories(self) -> None:
        """Create store, archive and recovery directories if they don't exist."""
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        self.bad_message_path.parent.mkdir(parents=True, exist_ok=True)
        if self.cursor_path is not None:
            self.cursor_path.parent.mkdir(parents=True, exist_ok=True)
