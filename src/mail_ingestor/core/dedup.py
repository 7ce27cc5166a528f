"""Duplicate detection against the target store."""

from __future__ import annotations

import logging
from typing import Protocol

from mail_ingestor.core.models import ParsedMessage

logger = logging.getLogger(__name__)


class SafeMsgidLookup(Protocol):
    def contains_safe_msgid(self, safe_msgid: str) -> bool: ...


class Deduplicator:
    """Classifies a parsed message as already stored or new, before any write."""

    def __init__(self, store: SafeMsgidLookup) -> None:
        self._store = store

    def is_duplicate(self, message: ParsedMessage) -> bool:
        if self._store.contains_safe_msgid(message.safe_msgid):
            logger.debug("Already indexed: %s", message.safe_msgid)
            return True
        return False
