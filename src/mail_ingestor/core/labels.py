"""External label dumps and state/label reconciliation."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path

from mail_ingestor.core.exceptions import LabelDumpError
from mail_ingestor.core.models import DEFAULT_LABELS, DEFAULT_STATE
from mail_ingestor.core.parser import native_msgid

logger = logging.getLogger(__name__)

ExternalLabelMap = Mapping[str, frozenset[str]]

# <message-id> (<space-separated labels>); the id may carry angle brackets
_DUMP_LINE = re.compile(r"^(\S+)\s+\(([^()]*)\)\s*$")


def parse_label_dump(lines: list[str], source: str = "<label dump>") -> dict[str, frozenset[str]]:
    """Parse label dump lines into a message-id to label-set mapping.

    Raises:
        LabelDumpError: On the first malformed line or empty label list.
    """
    label_map: dict[str, frozenset[str]] = {}
    for lineno, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped:
            continue
        match = _DUMP_LINE.match(stripped)
        if not match:
            raise LabelDumpError(f"{source}:{lineno}: cannot parse line {stripped!r}")
        tokens = frozenset(token.lower() for token in match.group(2).split())
        if not tokens:
            raise LabelDumpError(f"{source}:{lineno}: no labels for {match.group(1)}")
        label_map[native_msgid(match.group(1))] = tokens
    return label_map


def load_label_dump(path: Path) -> dict[str, frozenset[str]]:
    """Load an external label dump file.

    Args:
        path: Text file with one ``<message-id> (<labels>)`` entry per line.

    Returns:
        Mapping from native message-id to label set.

    Raises:
        LabelDumpError: If the file is unreadable or any line is malformed.
    """
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise LabelDumpError(f"Cannot read label dump {path}: {e}") from e

    label_map = parse_label_dump(text.splitlines(), source=str(path))
    logger.info("Loaded labels for %d messages from %s", len(label_map), path)
    return label_map


def reconcile(
    native_msgid: str,
    state: frozenset[str],
    labels: frozenset[str],
    provides_labels: bool,
    label_map: ExternalLabelMap,
) -> tuple[frozenset[str], frozenset[str]]:
    """Pick the authoritative (state, labels) pair for one message.

    Precedence: a label dump entry wins and supplies both sides; otherwise a
    label-capable source's own metadata is used; otherwise the message is
    treated as new inbox mail. Neither side is ever empty.
    """
    if native_msgid in label_map:
        dumped = frozenset(label_map[native_msgid])
        return dumped, dumped

    if provides_labels:
        return (state or DEFAULT_STATE), (labels or DEFAULT_LABELS)

    return DEFAULT_STATE, DEFAULT_LABELS
