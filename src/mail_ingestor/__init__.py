"""Mail Ingestor - Import mbox, maildir, IMAP, Gmail and single messages into a mail index."""

from mail_ingestor.core.models import (
    EmailHeader,
    IngestState,
    ParsedMessage,
    RawMessage,
    RunCounters,
)
from mail_ingestor.pipeline.ingestor import MailIngestor

__all__ = [
    "EmailHeader",
    "IngestState",
    "MailIngestor",
    "ParsedMessage",
    "RawMessage",
    "RunCounters",
]
