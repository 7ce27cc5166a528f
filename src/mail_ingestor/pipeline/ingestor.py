"""Ingestion driver: load → (skip) → import loop → finalize."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from pathlib import Path
from typing import Literal

from mail_ingestor.config.settings import MailIngestorSettings
from mail_ingestor.core.exceptions import InvalidMessage, SourceUnavailable, UnexpectedFailure
from mail_ingestor.core.labels import ExternalLabelMap, load_label_dump, reconcile
from mail_ingestor.core.models import IngestState, RawMessage, RunCounters
from mail_ingestor.core.parser import MessageParser, ensure_binary
from mail_ingestor.sources.base import MailSource
from mail_ingestor.storage.cursor import CursorFile
from mail_ingestor.storage.sinks import MessageSink

logger = logging.getLogger(__name__)

Outcome = Literal["indexed", "seen", "bad"]


class MailIngestor:
    """Pulls messages from one source into one sink.

    Per message: parse (bad on failure) → deduplicate (seen) → reconcile
    state and labels → store (indexed). Any other failure dumps the raw
    bytes to ``bad_message_path`` and aborts the run. Whatever the exit
    path, the last safe cursor is persisted and the source is finished.
    """

    def __init__(
        self,
        sink: MessageSink,
        *,
        label_map: ExternalLabelMap | None = None,
        parser: MessageParser | None = None,
        bad_message_path: Path = Path("data/bad-message.eml"),
        progress_interval_seconds: float = 5.0,
        on_progress: Callable[[RunCounters], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._label_map: ExternalLabelMap = label_map or {}
        self._parser = parser or MessageParser()
        self._bad_message_path = bad_message_path
        self._progress_interval = progress_interval_seconds
        self._on_progress = on_progress
        self._clock = clock
        self._counters = RunCounters()
        self._started_at = 0.0
        self._last_report_at = 0.0

    @classmethod
    def from_settings(
        cls,
        settings: MailIngestorSettings,
        sink: MessageSink,
        on_progress: Callable[[RunCounters], None] | None = None,
    ) -> MailIngestor:
        """Build an ingestor, loading the label dump if one is configured."""
        label_map = load_label_dump(settings.label_dump_path) if settings.label_dump_path else {}
        return cls(
            sink,
            label_map=label_map,
            bad_message_path=settings.bad_message_path,
            progress_interval_seconds=settings.progress_interval_seconds,
            on_progress=on_progress,
        )

    @property
    def counters(self) -> RunCounters:
        return self._counters

    @property
    def on_progress(self) -> Callable[[RunCounters], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[RunCounters], None] | None) -> None:
        self._on_progress = callback

    def run(
        self,
        source: MailSource,
        *,
        limit: int | None = None,
        skip: int = 0,
        cursor_file: CursorFile | None = None,
    ) -> RunCounters:
        """Import messages from ``source`` until it is exhausted or ``limit`` are scanned.

        Args:
            source: An unloaded mail source.
            limit: Stop after this many messages. None means unlimited.
            skip: Skip this many messages before importing.
            cursor_file: Where to persist the source cursor on finalize.

        Returns:
            Final run counters.

        Raises:
            SourceUnavailable: If the source cannot be loaded.
            UnexpectedFailure: If a message fails for any reason other than being unparseable.
        """
        self._counters = RunCounters()
        self._started_at = self._last_report_at = self._clock()

        self._set_state(IngestState.LOADING)
        try:
            source.load()
        except SourceUnavailable as e:
            logger.error("Cannot load %s source: %s", source.kind, e)
            self._abort_load(source)
            raise
        except Exception as e:
            logger.error("Cannot load %s source: %s", source.kind, e)
            self._abort_load(source)
            raise SourceUnavailable(f"Cannot load {source.kind} source: {e}") from e
        except BaseException:
            self._abort_load(source)
            raise

        checkpoint = source.cursor()
        aborted = False
        try:
            self._sink.begin_run(source.kind)
            if skip:
                self._set_state(IngestState.SKIPPING)
                skipped = source.skip(skip)
                checkpoint = source.cursor()
                logger.info("Skipped %d messages", skipped)

            self._set_state(IngestState.IMPORTING)
            while not source.done():
                if limit is not None and self._counters.scanned >= limit:
                    logger.info("Reached limit of %d messages", limit)
                    break
                self._import_one(source)
                checkpoint = source.cursor()
                self._maybe_report()
        except BaseException:
            aborted = True
            raise
        finally:
            self._finalize(source, cursor_file, checkpoint, aborted)

        return self._counters

    def _import_one(self, source: MailSource) -> None:
        raw_message = source.next_message()
        raw = ensure_binary(raw_message.data)

        try:
            outcome = self._process(raw, raw_message, source.provides_labels())
        except InvalidMessage as e:
            logger.warning("Skipping bad message (%s): %s", raw_message.description, e)
            outcome = "bad"
        except Exception as e:
            self._dump_bad_message(raw, raw_message.description)
            raise UnexpectedFailure(f"Failed to import {raw_message.description}: {e}") from e

        self._count(outcome)

    def _process(self, raw: bytes, raw_message: RawMessage, provides_labels: bool) -> Outcome:
        message = self._parser.parse(raw)

        if self._sink.is_known(message):
            return "seen"

        state, labels = reconcile(
            message.native_msgid,
            raw_message.state,
            raw_message.labels,
            provides_labels,
            self._label_map,
        )
        if self._sink.store(raw, message, state, labels):
            logger.debug("Indexed %s with state=%s labels=%s", message.safe_msgid, state, labels)
            return "indexed"
        return "seen"

    def _count(self, outcome: Outcome) -> None:
        # scanned moves together with exactly one outcome counter
        self._counters.scanned += 1
        if outcome == "indexed":
            self._counters.indexed += 1
        elif outcome == "seen":
            self._counters.seen += 1
        else:
            self._counters.bad += 1

    def _dump_bad_message(self, raw: bytes, description: str) -> None:
        try:
            self._bad_message_path.parent.mkdir(parents=True, exist_ok=True)
            self._bad_message_path.write_bytes(raw)
        except OSError as e:
            logger.error("Could not write bad message to %s: %s", self._bad_message_path, e)
            return
        logger.error(
            "Unexpected failure on %s; raw message written to %s",
            description, self._bad_message_path,
        )

    def _finalize(
        self,
        source: MailSource,
        cursor_file: CursorFile | None,
        checkpoint: str | None,
        aborted: bool,
    ) -> None:
        self._set_state(IngestState.FINALIZING)
        try:
            try:
                if cursor_file is not None and checkpoint is not None:
                    cursor_file.save(checkpoint)
                    logger.info("Saved %s cursor %s", source.kind, checkpoint)
            finally:
                source.finish()
        except BaseException:
            aborted = True
            raise
        finally:
            self._set_state(IngestState.ABORTED if aborted else IngestState.DONE)
            self._close_run(checkpoint, aborted)

    def _close_run(self, checkpoint: str | None, aborted: bool) -> None:
        try:
            self._sink.end_run(self._counters, checkpoint)
        except Exception as e:
            # an aborted run is already propagating its own error
            if not aborted:
                raise
            logger.error("Could not record aborted run: %s", e)
        finally:
            self._report()

    def _abort_load(self, source: MailSource) -> None:
        self._set_state(IngestState.ABORTED)
        source.finish()

    def _maybe_report(self) -> None:
        if self._clock() - self._last_report_at >= self._progress_interval:
            self._report()

    def _report(self) -> None:
        now = self._clock()
        self._last_report_at = now
        self._counters.elapsed_seconds = now - self._started_at
        c = self._counters
        logger.info(
            "[%s] scanned=%d indexed=%d bad=%d seen=%d (%.1f/s)",
            c.state.value, c.scanned, c.indexed, c.bad, c.seen, c.rate,
        )
        if self._on_progress:
            self._on_progress(self._counters)

    def _set_state(self, state: IngestState) -> None:
        logger.debug("Ingest state: %s -> %s", self._counters.state.value, state.value)
        self._counters.state = state
