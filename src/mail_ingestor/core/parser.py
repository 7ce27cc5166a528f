"""RFC 822 message parser: header extraction, body walking, message-id normalization."""

from __future__ import annotations

import hashlib
import logging
import re
from datetime import datetime
from email import policy
from email.header import decode_header, make_header
from email.message import Message
from email.parser import BytesParser
from email.utils import parsedate_to_datetime
from typing import Any

from mail_ingestor.core.converter import TextExtractor
from mail_ingestor.core.exceptions import InvalidMessage
from mail_ingestor.core.models import EmailHeader, ParsedMessage

logger = logging.getLogger(__name__)

SAFE_MSGID_MAX_LENGTH = 128

_BRACKETED_ID = re.compile(r"<([^<>]*)>")
_WHITESPACE = re.compile(r"\s+")


def ensure_binary(raw: Any) -> bytes:
    """Coerce source output to bytes without transcoding the payload."""
    if isinstance(raw, bytes):
        return raw
    if isinstance(raw, (bytearray, memoryview)):
        return bytes(raw)
    if isinstance(raw, str):
        return raw.encode("utf-8", errors="surrogateescape")
    raise TypeError(f"Cannot treat {type(raw).__name__} as message bytes")


def native_msgid(header_value: str) -> str:
    """Return the Message-Id as written, minus surrounding whitespace and brackets.

    This is the key used against external label dumps, so no further
    normalization is applied.
    """
    value = header_value.strip()
    match = _BRACKETED_ID.search(value)
    if match:
        return match.group(1).strip()
    return value


def safe_msgid(native: str) -> str:
    """Derive the store identity used for deduplication.

    Whitespace is removed. Ids that are too long or carry anything other
    than printable ASCII are replaced by a SHA-1 digest so they are safe to
    use as a database key.
    """
    cleaned = _WHITESPACE.sub("", native)
    printable = all(33 <= ord(c) < 127 for c in cleaned)
    if len(cleaned) > SAFE_MSGID_MAX_LENGTH or not printable:
        digest = hashlib.sha1(cleaned.encode("utf-8", errors="surrogateescape")).hexdigest()
        return f"sha1:{digest}"
    return cleaned


class MessageParser:
    """Parses raw RFC 822 bytes into ParsedMessage objects."""

    def __init__(self, extractor: TextExtractor | None = None) -> None:
        self._extractor = extractor or TextExtractor()
        self._parser = BytesParser(policy=policy.compat32)

    def parse(self, raw: bytes) -> ParsedMessage:
        """Parse raw message bytes.

        Args:
            raw: The full message, headers and body.

        Returns:
            Parsed message with both message-id forms computed.

        Raises:
            InvalidMessage: If the bytes are empty, unparseable, or lack a Message-Id.
        """
        if not raw or not raw.strip():
            raise InvalidMessage("Empty message")

        try:
            msg = self._parser.parsebytes(raw)
        except Exception as e:
            raise InvalidMessage(f"Failed to parse message: {e}") from e

        raw_id = msg.get("Message-Id")
        native = native_msgid(str(raw_id)) if raw_id is not None else ""
        if not native:
            raise InvalidMessage("Message has no Message-Id header")

        try:
            header = self._extract_headers(msg)
            plain_text, html = self._walk_parts(msg)
        except Exception as e:
            raise InvalidMessage(f"Failed to parse message {native}: {e}") from e

        return ParsedMessage(
            safe_msgid=safe_msgid(native),
            native_msgid=native,
            header=header,
            body_text=self._extractor.extract(plain_text, html),
        )

    def _extract_headers(self, msg: Message) -> EmailHeader:
        references = self._decode(msg.get("References"))
        return EmailHeader(
            subject=self._decode(msg.get("Subject")) or "(no subject)",
            sender=self._decode(msg.get("From")),
            to=self._decode(msg.get("To")),
            date=self._parse_date(self._decode(msg.get("Date"))),
            cc=self._decode(msg.get("Cc")),
            message_id_header=self._decode(msg.get("Message-Id")),
            in_reply_to=self._decode(msg.get("In-Reply-To")),
            references=tuple(_BRACKETED_ID.findall(references)),
        )

    def _walk_parts(self, msg: Message) -> tuple[str | None, str | None]:
        """Find the first inline text/plain and text/html parts."""
        plain_text: str | None = None
        html: str | None = None

        for part in msg.walk():
            if part.is_multipart():
                continue
            # Skip attachments
            if part.get_filename() or "attachment" in str(part.get("Content-Disposition", "")):
                continue

            content_type = part.get_content_type()
            if content_type == "text/plain" and plain_text is None:
                plain_text = self._decode_payload(part)
            elif content_type == "text/html" and html is None:
                html = self._decode_payload(part)

        return plain_text, html

    @staticmethod
    def _decode_payload(part: Message) -> str:
        payload = part.get_payload(decode=True)
        if not isinstance(payload, bytes):
            return ""
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            return payload.decode("utf-8", errors="replace")

    @staticmethod
    def _decode(value: object) -> str:
        """Decode an RFC 2047 header value to text."""
        if value is None:
            return ""
        try:
            return str(make_header(decode_header(str(value)))).strip()
        except Exception:
            return str(value).strip()

    @staticmethod
    def _parse_date(date_str: str) -> datetime:
        """Parse an RFC 2822 date string, or return the epoch if it cannot be parsed."""
        if not date_str:
            return datetime(1970, 1, 1)
        try:
            return parsedate_to_datetime(date_str)
        except Exception:
            logger.warning("Failed to parse date: %s", date_str)
            return datetime(1970, 1, 1)
