#!/usr/bin/env python3
"""Command-line entry point for the song data pipeline.

Subcommands:
  batch    Run one full batch ingestion over the saved source pages.
  fetch    Export one song through the external tool.
  search   Search songs through the external tool.
  queue    Print the retry queue and the dead-letter archive.

Run from the repository root:
    python -m scripts.songdata_cli batch --source-dir ug_html_pages
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from services.tool_invoker.run import ExternalToolInvoker, ToolConfig
from songdata.config import (
    DEAD_LETTER_PATH,
    PENDING_QUEUE_PATH,
    RAW_OUTPUT_DIR,
    TOOL_EXECUTABLE_PATH,
    TOOL_MAX_RETRIES,
    TOOL_TIMEOUT_SECONDS,
)
from songdata.errors import ConnectivityError, QueueStoreError, ToolInvocationError
from songdata.orchestrator import run_batch
from songdata.retry_queue import DeadLetterDocument, PendingQueueDocument

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Song data ingestion pipeline")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    batch = sub.add_parser("batch", help="Run one batch ingestion")
    batch.add_argument("--source-dir", type=Path, default=None, help="Saved pages directory")
    batch.add_argument("--db-path", type=Path, default=None, help="SQLite database path")
    batch.add_argument(
        "--no-delay",
        action="store_true",
        help="Disable rate-limiting delays (local databases only)",
    )
    batch.add_argument("--json", action="store_true", help="Print the summary as JSON")

    for name, target_help in (("fetch", "Tab id to export"), ("search", "Search query")):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} via the external tool")
        cmd.add_argument("target", help=target_help)
        cmd.add_argument(
            "--timeout",
            type=float,
            default=TOOL_TIMEOUT_SECONDS,
            help=f"Per-attempt timeout in seconds (default: {TOOL_TIMEOUT_SECONDS})",
        )
        cmd.add_argument(
            "--retries",
            type=int,
            default=TOOL_MAX_RETRIES,
            help=f"Total attempts (default: {TOOL_MAX_RETRIES})",
        )
        cmd.add_argument(
            "--tool",
            type=Path,
            default=TOOL_EXECUTABLE_PATH,
            help="Path to the scraper executable",
        )
        cmd.add_argument(
            "--save-raw",
            action="store_true",
            help=f"Persist raw tool output under {RAW_OUTPUT_DIR}",
        )

    sub.add_parser("queue", help="Show retry queue and dead-letter archive")
    return parser


def _cmd_batch(args: argparse.Namespace) -> int:
    kwargs = {}
    if args.no_delay:
        kwargs.update(candidate_delay=0.0, document_delay=0.0, drain_delay=0.0)
    try:
        summary = run_batch(source_dir=args.source_dir, db_path=args.db_path, **kwargs)
    except ConnectivityError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILED

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        print(summary.render())
    return EXIT_OK


def _cmd_tool(args: argparse.Namespace) -> int:
    if args.timeout <= 0 or args.retries < 1:
        print("Error: --timeout must be > 0 and --retries >= 1", file=sys.stderr)
        return EXIT_USAGE

    config = ToolConfig(
        executable_path=args.tool,
        timeout_seconds=args.timeout,
        retries=args.retries,
        raw_output_dir=RAW_OUTPUT_DIR if args.save_raw else None,
    )
    invoker = ExternalToolInvoker(config)
    try:
        if args.command == "fetch":
            result = invoker.fetch(args.target)
        else:
            result = invoker.search(args.target)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except ToolInvocationError as e:
        print(f"Error: {e.error_code} - {e.message}", file=sys.stderr)
        return EXIT_FAILED

    if result.degraded:
        print(f"Warning: output could not be parsed ({result.parse_error})", file=sys.stderr)
        print(result.raw_output)
    else:
        print(json.dumps(result.data, indent=2))
    return EXIT_OK


def _cmd_queue(args: argparse.Namespace) -> int:
    try:
        pending = PendingQueueDocument(PENDING_QUEUE_PATH).load()
        archived = DeadLetterDocument(DEAD_LETTER_PATH).load()
    except QueueStoreError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return EXIT_FAILED

    print(f"Pending retry ({len(pending)}):")
    for entry in pending:
        print(f"  - {entry.key.describe()} - retry_count: {entry.retry_count}")
    print(f"Dead-lettered ({len(archived)}):")
    for entry in archived:
        print(
            f"  - {entry.key.describe()} - final_retry_count: {entry.final_retry_count},"
            f" last_attempt: {entry.last_attempt}"
        )
    return EXIT_OK


_COMMANDS = {
    "batch": _cmd_batch,
    "fetch": _cmd_tool,
    "search": _cmd_tool,
    "queue": _cmd_queue,
}


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else EXIT_USAGE

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return _COMMANDS[args.command](args)


if __name__ == "__main__":
    raise SystemExit(main())
