"""
librarian.__main__ -- CLI entry point.

Usage:
    librarian init [--repo PATH]
    librarian watch [--repo PATH]
    librarian sync [--repo PATH] [--deep] [--limit N]
    librarian status [--repo PATH]
    librarian serve [--repo PATH] [--transport stdio|sse]

Global flags: ``-v/--verbose`` (debug logging), ``--json-logs``
(one JSON object per log line).
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
import threading
from pathlib import Path

from librarian.core.errors import LibrarianError

log = logging.getLogger("librarian.cli")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="librarian",
        description="Librarian -- keeps PROJECT_MEMORY.md in sync with git history",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--repo", default=".", help="Repository to operate on (default: current directory)"
    )
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON log lines"
    )

    sub = parser.add_subparsers(dest="command")

    # -- init --------------------------------------------------------------
    sub.add_parser("init", help="Create the memory document from history and layout")

    # -- watch -------------------------------------------------------------
    sub.add_parser("watch", help="Watch git activity and keep the memory in sync")

    # -- sync --------------------------------------------------------------
    sync_p = sub.add_parser("sync", help="Fold new commits into the memory once")
    sync_p.add_argument(
        "--deep",
        action="store_true",
        help="Replay history oldest-first in batches instead of watermark..HEAD",
    )
    sync_p.add_argument(
        "--limit", type=int, default=1000, help="Commits replayed by --deep (default: 1000)"
    )
    sync_p.add_argument(
        "--batch-size", type=int, default=10, help="Commits per batch for --deep (default: 10)"
    )

    # -- status ------------------------------------------------------------
    sub.add_parser("status", help="Show watermark, memory and token usage")

    # -- serve -------------------------------------------------------------
    serve_p = sub.add_parser("serve", help="Start the MCP server")
    serve_p.add_argument(
        "--transport",
        default="stdio",
        choices=["stdio", "sse"],
        help="MCP transport (default: stdio)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    from librarian.core.config import Config
    from librarian.core.logging import configure_logging

    config = Config.load(Path(args.repo))
    configure_logging(
        structured=args.json_logs or config.structured_logging,
        level="DEBUG" if args.verbose else config.log_level,
        log_file=config.log_path if args.command == "watch" else None,
    )

    # -- Dispatch ----------------------------------------------------------
    commands = {
        "init": _cmd_init,
        "watch": _cmd_watch,
        "sync": _cmd_sync,
        "status": _cmd_status,
        "serve": _cmd_serve,
    }
    try:
        commands[args.command](args, config)
    except LibrarianError as exc:
        log.debug("Command failed", exc_info=True)
        print(f"librarian: {exc}", file=sys.stderr)
        sys.exit(1)


# ---------------------------------------------------------------------------
# Command implementations
# ---------------------------------------------------------------------------


def _cmd_init(args: argparse.Namespace, config) -> None:
    """Three-tier initialization of PROJECT_MEMORY.md."""
    from librarian.initializer import Initializer

    result = Initializer.from_config(config).initialize()
    print(f"Initialized {config.memory_path}")
    print(f"  commits scanned: {result.timeline.total_commits}")
    print(f"  milestones:      {len(result.timeline.milestones)}")
    print(f"  deep context:    {'yes' if result.used_deep_context else 'no'}")
    print(f"  words:           {result.words}")
    print()
    print("Next steps:")
    print("  1. Review and commit", config.memory_filename)
    print("  2. Run: librarian watch --repo", str(config.repo_path))


def _cmd_watch(args: argparse.Namespace, config) -> None:
    """Run the watcher until SIGINT/SIGTERM."""
    from librarian.watcher.watcher import ChangeWatcher

    config.ensure_directories()
    watcher = ChangeWatcher.from_config(config)
    done = threading.Event()

    def _shutdown(signum, frame) -> None:
        log.info("Received signal %d, stopping", signum)
        done.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    watcher.start()
    watcher.kick()  # catch up on commits made while we weren't running
    try:
        while not done.wait(1.0):
            pass
    finally:
        watcher.stop()


def _cmd_sync(args: argparse.Namespace, config) -> None:
    """One synchronization pass; prints the cycle result as JSON."""
    from librarian.pipeline import Outcome, SyncPipeline

    config.ensure_directories()
    pipeline = SyncPipeline.from_config(config)
    if args.deep:
        result = pipeline.deep_sync(limit=args.limit, batch_size=args.batch_size)
    else:
        result = pipeline.sync_latest()
    print(json.dumps(result.to_dict(), indent=2))
    if result.outcome is Outcome.BUSY:
        sys.exit(1)


def _cmd_status(args: argparse.Namespace, config) -> None:
    """Print configuration, sync state, memory health and token usage."""
    from librarian.core.errors import NoCommitsError
    from librarian.generation.usage import UsageLedger
    from librarian.memory.document import MemoryDocument
    from librarian.vcs.source import ChangesetSource
    from librarian.watcher.state import SyncStateStore

    source = ChangesetSource(config.repo_path)
    try:
        head = source.head_revision()
    except NoCommitsError:
        head = None

    state = SyncStateStore(config.state_path).load()
    memory_text = config.memory_path.read_text(encoding="utf-8") if config.memory_path.exists() else ""
    doc = MemoryDocument.parse(memory_text)

    status = {
        "config": config.to_dict(),
        "head": head,
        "branch": source.current_branch(),
        "state": state.to_dict(),
        "up_to_date": head is not None and head == state.last_processed_revision,
        "memory": {
            "path": str(config.memory_path),
            "exists": bool(memory_text),
            "valid": doc.is_valid(),
            "missing_sections": doc.missing_sections() if memory_text else [],
            "words": doc.word_count(),
            "soft_cap": config.soft_word_cap,
        },
        "usage": UsageLedger(config.usage_path).summary(),
    }
    print(json.dumps(status, indent=2))


def _cmd_serve(args: argparse.Namespace, config) -> None:
    """Start the MCP server."""
    from librarian.server import run_server

    run_server(config.repo_path, config=config, transport=args.transport)


if __name__ == "__main__":
    main()
