"""Minimal CLI entry point for the Mail Ingestor."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any

from mail_ingestor.config.settings import MailIngestorSettings
from mail_ingestor.core.auth import authenticate, build_gmail_service
from mail_ingestor.core.gmail_client import GmailClient
from mail_ingestor.core.models import RunCounters
from mail_ingestor.pipeline.ingestor import MailIngestor
from mail_ingestor.sources.factory import open_source
from mail_ingestor.storage.cursor import CursorFile
from mail_ingestor.storage.index import MessageIndex
from mail_ingestor.storage.sinks import open_sink


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def on_progress(counters: RunCounters) -> None:
    """Print progress updates to stdout."""
    print(
        f"[{counters.state.value}] "
        f"scanned={counters.scanned} "
        f"indexed={counters.indexed} "
        f"bad={counters.bad} "
        f"seen={counters.seen} "
        f"({counters.rate:.1f}/s)",
        end="\r",
        flush=True,
    )


def _add_run_args(subparser: argparse.ArgumentParser) -> None:
    """Add the flags shared by every import subcommand."""
    subparser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Stop after scanning N messages",
    )
    subparser.add_argument(
        "--skip",
        type=int,
        default=None,
        help="Skip the first N messages before importing",
    )
    subparser.add_argument(
        "--cursor-file",
        type=Path,
        default=None,
        dest="cursor_file",
        help="Read the start position from, and save the end position to, this file",
    )
    subparser.add_argument(
        "--label-dump",
        type=Path,
        default=None,
        dest="label_dump",
        help="File of '<message-id> (<labels>)' lines that override labels",
    )
    subparser.add_argument(
        "--server-url",
        default=None,
        dest="server_url",
        help="Post messages to this indexing server instead of the local store",
    )


def _validate_run_args(args: argparse.Namespace) -> None:
    """Reject negative limit/skip values."""
    if getattr(args, "limit", None) is not None and args.limit < 0:
        print("Error: --limit must be non-negative", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "skip", None) is not None and args.skip < 0:
        print("Error: --skip must be non-negative", file=sys.stderr)
        sys.exit(1)
    if getattr(args, "start_offset", None) is not None and args.start_offset < 0:
        print("Error: --start-offset must be non-negative", file=sys.stderr)
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mail Ingestor - Import mail into the index without re-importing"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    mbox_parser = subparsers.add_parser("mbox", help="Import an mbox file")
    mbox_parser.add_argument("path", type=Path, help="Path to the mbox file")
    mbox_parser.add_argument(
        "--start-offset",
        type=int,
        default=None,
        dest="start_offset",
        help="Byte offset to start from (overrides --cursor-file)",
    )
    _add_run_args(mbox_parser)

    maildir_parser = subparsers.add_parser("maildir", help="Import one or more maildirs")
    maildir_parser.add_argument("paths", type=Path, nargs="+", help="Maildir directories")
    _add_run_args(maildir_parser)

    imap_parser = subparsers.add_parser("imap", help="Import new messages from an IMAP folder")
    imap_parser.add_argument("--host", help="IMAP server (default: from settings)")
    imap_parser.add_argument("--port", type=int, help="IMAP port")
    imap_parser.add_argument("--username", "-u", help="IMAP username")
    imap_parser.add_argument("--folder", "-f", help="Folder to import (default: INBOX)")
    imap_parser.add_argument(
        "--no-ssl", action="store_true", dest="no_ssl", help="Connect without SSL"
    )
    _add_run_args(imap_parser)

    gmail_parser = subparsers.add_parser("gmail", help="Import new messages from Gmail")
    gmail_parser.add_argument("--label", "-l", help="Gmail label ID to restrict to")
    gmail_parser.add_argument("--query", "-q", help="Gmail search query")
    gmail_parser.add_argument(
        "--no-browser",
        action="store_true",
        dest="no_browser",
        help="Fail instead of opening a browser when no cached token is usable",
    )
    _add_run_args(gmail_parser)

    stream_parser = subparsers.add_parser("stream", help="Import a single message from stdin")
    _add_run_args(stream_parser)

    subparsers.add_parser("status", help="Show the number of messages in the local store")

    return parser


def _apply_overrides(settings: MailIngestorSettings, args: argparse.Namespace) -> MailIngestorSettings:
    """Fold command-line values over the environment-derived settings."""
    mapping = {
        "server_url": "server_url",
        "cursor_file": "cursor_path",
        "label_dump": "label_dump_path",
        "limit": "num_messages",
        "skip": "num_skip",
        "host": "imap_host",
        "port": "imap_port",
        "username": "imap_username",
        "folder": "imap_folder",
        "label": "gmail_label",
        "query": "gmail_query",
    }
    update: dict[str, Any] = {}
    for arg_name, field in mapping.items():
        value = getattr(args, arg_name, None)
        if value is not None:
            update[field] = value
    if getattr(args, "no_ssl", False):
        update["imap_ssl"] = False
    return settings.model_copy(update=update)


def _gmail_client(settings: MailIngestorSettings, *, interactive: bool = True) -> GmailClient:
    creds = authenticate(
        settings.gmail_credentials_path, settings.gmail_token_path, interactive=interactive
    )
    return GmailClient(
        build_gmail_service(creds),
        max_retries=settings.max_retries,
        initial_backoff_seconds=settings.initial_backoff_seconds,
        max_backoff_seconds=settings.max_backoff_seconds,
        inter_page_delay_seconds=settings.inter_page_delay_seconds,
        num_retries=settings.num_retries,
    )


def run_import(args: argparse.Namespace, settings: MailIngestorSettings) -> RunCounters:
    """Build the source, sink and ingestor for ``args.command`` and run them."""
    cursor_file = CursorFile(settings.cursor_path) if settings.cursor_path else None
    cursor = cursor_file.load() if cursor_file else None
    if getattr(args, "start_offset", None) is not None:
        cursor = str(args.start_offset)

    paths: list[Path] = []
    if args.command == "mbox":
        paths = [args.path]
    elif args.command == "maildir":
        paths = list(args.paths)

    gmail_client = None
    if args.command == "gmail":
        gmail_client = _gmail_client(settings, interactive=not args.no_browser)
    source = open_source(
        args.command, settings, cursor=cursor, paths=paths, gmail_client=gmail_client
    )

    sink = open_sink(settings)
    try:
        ingestor = MailIngestor.from_settings(settings, sink, on_progress=on_progress)
        return ingestor.run(
            source,
            limit=settings.num_messages,
            skip=settings.num_skip,
            cursor_file=cursor_file,
        )
    finally:
        sink.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    _validate_run_args(args)

    settings = _apply_overrides(MailIngestorSettings(), args)
    setup_logging(settings.log_level)

    try:
        if args.command == "status":
            with MessageIndex(settings.database_path) as index:
                print(f"\n{index.count_messages()} messages indexed in {settings.database_path}")
        else:
            counters = run_import(args, settings)
            print(
                f"\n\nComplete: scanned={counters.scanned} indexed={counters.indexed} "
                f"bad={counters.bad} seen={counters.seen}"
            )

    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
