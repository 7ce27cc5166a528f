"""HTML to plain text extraction using trafilatura with plain text preference."""

from __future__ import annotations

import logging

import trafilatura

logger = logging.getLogger(__name__)


class TextExtractor:
    """Reduce an email body to the plain text stored alongside the index entry."""

    def extract(self, plain_text: str | None, html: str | None) -> str:
        """Return indexable text for a message body.

        Strategy:
        1. Use the text/plain part when it has content.
        2. Otherwise convert the text/html part via trafilatura
           (favor_recall=True for email layouts).
        3. Fall back to an empty string.
        """
        if plain_text and plain_text.strip():
            return plain_text.strip()

        if html:
            try:
                result = trafilatura.extract(
                    html,
                    output_format="txt",
                    favor_recall=True,
                    include_links=False,
                    include_tables=True,
                )
            except Exception as e:
                logger.warning("Trafilatura extraction failed: %s", e)
                result = None
            if result:
                return result.strip()

        return ""
