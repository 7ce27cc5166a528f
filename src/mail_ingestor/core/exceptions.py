"""Custom exceptions for the Mail Ingestor."""


class MailIngestorError(Exception):
    """Base exception for all Mail Ingestor errors."""


class SourceUnavailable(MailIngestorError):
    """A mail source could not be opened or reached."""


class InvalidMessage(MailIngestorError):
    """Raw bytes could not be parsed into a usable message."""


class UnexpectedFailure(MailIngestorError):
    """A message failed mid-processing; the run is aborted."""


class LabelDumpError(MailIngestorError):
    """The external label dump file is malformed."""


class SinkError(MailIngestorError):
    """The indexing sink rejected or failed to store a message."""


class AuthenticationError(MailIngestorError):
    """Failed to authenticate with a remote mail service."""


class RateLimitError(MailIngestorError):
    """Remote API rate limit exceeded."""
