"""Indexing sinks: direct writes to a local store, or one HTTP request per message."""

from __future__ import annotations

import json
import logging
from typing import Any, Protocol

import httpx

from mail_ingestor.config.settings import MailIngestorSettings
from mail_ingestor.core.dedup import Deduplicator
from mail_ingestor.core.exceptions import SinkError
from mail_ingestor.core.models import IngestState, ParsedMessage, RunCounters
from mail_ingestor.storage.archive import BlobArchive
from mail_ingestor.storage.index import MessageIndex

logger = logging.getLogger(__name__)


class MessageSink(Protocol):
    """Where the ingestion driver sends new messages."""

    def is_known(self, message: ParsedMessage) -> bool:
        """True if the message is already stored and must not be written again."""
        ...

    def store(
        self,
        raw: bytes,
        message: ParsedMessage,
        state: frozenset[str],
        labels: frozenset[str],
    ) -> bool:
        """Store a message. Returns True if newly indexed, False if it was already present."""
        ...

    def begin_run(self, source: str) -> None: ...

    def end_run(self, counters: RunCounters, cursor: str | None) -> None: ...

    def close(self) -> None: ...


class HookRunner(Protocol):
    def run(self, name: str, **kwargs: Any) -> None: ...


class DirectStoreSink:
    """Writes blobs to the archive and entries to the index in-process.

    The caller must guarantee no other process writes the same store.
    """

    def __init__(
        self,
        index: MessageIndex,
        archive: BlobArchive,
        hooks: HookRunner | None = None,
    ) -> None:
        self._index = index
        self._archive = archive
        self._hooks = hooks
        self._dedup = Deduplicator(index)
        self._run_id: int | None = None

    def is_known(self, message: ParsedMessage) -> bool:
        return self._dedup.is_duplicate(message)

    def store(
        self,
        raw: bytes,
        message: ParsedMessage,
        state: frozenset[str],
        labels: frozenset[str],
    ) -> bool:
        location = self._archive.add(raw)
        self._index.add_message(message, state, labels, location)
        if self._hooks is not None:
            self._hooks.run(
                "after-add-message",
                message=message,
                state=state,
                labels=labels,
                location=location,
            )
        return True

    def begin_run(self, source: str) -> None:
        self._run_id = self._index.start_run(source)

    def end_run(self, counters: RunCounters, cursor: str | None) -> None:
        if self._run_id is None:
            return
        outcome = "aborted" if counters.state is IngestState.ABORTED else "complete"
        self._index.complete_run(
            self._run_id,
            outcome=outcome,
            cursor=cursor,
            scanned=counters.scanned,
            indexed=counters.indexed,
            bad=counters.bad,
            seen=counters.seen,
        )
        self._run_id = None

    def close(self) -> None:
        self._index.close()


class HttpSink:
    """Posts each message to an indexing server, which deduplicates on its side.

    Request: ``POST {server_url}/message.json`` with the raw message and
    JSON-encoded ``state`` and ``labels`` arrays.
    Response: ``{"response": "ok", "status": "seen" | "unseen"}`` or
    ``{"response": "error", "message": ...}``.
    """

    def __init__(
        self,
        server_url: str,
        *,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._url = server_url.rstrip("/") + "/message.json"
        self._client = client or httpx.Client(timeout=timeout)

    def is_known(self, message: ParsedMessage) -> bool:
        return False

    def store(
        self,
        raw: bytes,
        message: ParsedMessage,
        state: frozenset[str],
        labels: frozenset[str],
    ) -> bool:
        try:
            response = self._client.post(
                self._url,
                data={
                    "state": json.dumps(sorted(state)),
                    "labels": json.dumps(sorted(labels)),
                },
                files={"message": ("message.eml", raw, "message/rfc822")},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise SinkError(f"Request to {self._url} failed: {e}") from e
        except ValueError as e:
            raise SinkError(f"Invalid JSON from {self._url}: {e}") from e

        if payload.get("response") != "ok":
            raise SinkError(
                f"Server rejected {message.native_msgid}: "
                f"{payload.get('message') or payload.get('error') or payload}"
            )

        status = payload.get("status")
        if status == "seen":
            return False
        if status == "unseen":
            return True
        raise SinkError(f"Unexpected status {status!r} for {message.native_msgid}")

    def begin_run(self, source: str) -> None:
        logger.info("Posting %s messages to %s", source, self._url)

    def end_run(self, counters: RunCounters, cursor: str | None) -> None:
        pass

    def close(self) -> None:
        self._client.close()


def open_sink(settings: MailIngestorSettings) -> MessageSink:
    """Build the network sink when a server URL is configured, else the direct store."""
    if settings.server_url:
        return HttpSink(settings.server_url, timeout=settings.http_timeout_seconds)

    settings.ensure_directories()
    index = MessageIndex(settings.database_path)
    index.connect()
    return DirectStoreSink(index, BlobArchive(settings.archive_dir))
