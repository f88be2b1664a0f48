"""CLI driver: scan a tree, reencode pending files, clean the store."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from reencoder.config import Settings
from reencoder.database import create_engine, ensure_tables
from reencoder.exceptions import ReencoderError
from reencoder.services.clean_service import Cleaner
from reencoder.services.flac_service import FlacClassifier, FlacTransformer, check_tools
from reencoder.services.scan_service import Scanner
from reencoder.services.scheduler_service import Scheduler
from reencoder.services.state_store import StateStore

if TYPE_CHECKING:
    from reencoder.services.reports import ProgressEvent

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stderr,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="reencoder",
        description="Index FLAC files and reencode those written by an outdated encoder",
    )
    parser.add_argument("--db", type=Path, help="Path to database file")
    parser.add_argument(
        "--threads",
        "-t",
        type=int,
        help="Number of reencoding workers (default: 4)",
    )
    parser.add_argument("--debug", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command")

    scan = subparsers.add_parser("scan", help="Index files under a directory")
    scan.add_argument("root", type=Path, help="Directory to index")

    run = subparsers.add_parser("run", help="Reencode pending files")
    run.add_argument("root", type=Path, nargs="?", help="Only reencode files under this path")
    run.add_argument(
        "--flac-arg",
        "-a",
        action="append",
        dest="flac_args",
        help="Flac argument to use when reencoding, can be used multiple times",
    )

    subparsers.add_parser("clean", help="Dedupe the database and drop missing files")

    status = subparsers.add_parser("status", help="Show the number of files to reencode")
    status.add_argument("root", type=Path, nargs="?", help="Only count files under this path")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    """Settings from the environment, overridden by explicit flags."""
    overrides: dict[str, Any] = {}
    if args.db is not None:
        overrides["database_path"] = args.db
    if args.threads is not None:
        overrides["max_workers"] = args.threads
    if args.debug:
        overrides["debug"] = True
    if getattr(args, "flac_args", None):
        overrides["flac_args"] = args.flac_args
    return Settings(**overrides)


def install_interrupt_handler(cancel: asyncio.Event) -> None:
    """First SIGINT requests cooperative cancellation; a second one aborts."""
    loop = asyncio.get_running_loop()

    def _on_interrupt() -> None:
        logger.warning("Stopping after in-flight files finish (Ctrl-C again to abort)")
        cancel.set()
        loop.remove_signal_handler(signal.SIGINT)

    try:
        loop.add_signal_handler(signal.SIGINT, _on_interrupt)
    except NotImplementedError:
        signal.signal(signal.SIGINT, lambda _sig, _frame: loop.call_soon_threadsafe(cancel.set))


def _log_progress(event: ProgressEvent) -> None:
    logger.debug("%s %s: %s", event.stage, event.status, event.path)


async def execute(args: argparse.Namespace, settings: Settings) -> int:
    """Run one command against the configured store. Returns the exit code."""
    engine, session_factory = create_engine(settings)
    try:
        await ensure_tables(engine)
        store = StateStore(engine, session_factory)
        cancel = asyncio.Event()
        install_interrupt_handler(cancel)

        if args.command == "scan":
            check_tools(settings)
            scanner = Scanner(
                store,
                FlacClassifier(settings),
                extensions=settings.normalized_extensions(),
                max_workers=settings.scan_workers,
            )
            scan_report = await scanner.scan(args.root, cancel=cancel, progress=_log_progress)
            print(scan_report.summary())
            for error in scan_report.errors:
                print(f"  {error}", file=sys.stderr)
            print(f"Files to reencode:\t{await store.pending_count()}")

        elif args.command == "run":
            check_tools(settings)
            scheduler = Scheduler(store, FlacTransformer(settings), settings.max_workers)
            run_report = await scheduler.run(
                cancel=cancel, under=args.root, progress=_log_progress
            )
            print(run_report.summary())
            for error in [*run_report.errors, *run_report.store_errors]:
                print(f"  {error}", file=sys.stderr)

        elif args.command == "clean":
            cleaner = Cleaner(store, settings.scan_workers)
            clean_report = await cleaner.clean(cancel=cancel, progress=_log_progress)
            print(clean_report.summary())
            for error in clean_report.errors:
                print(f"  {error}", file=sys.stderr)

        else:
            root = getattr(args, "root", None)
            count = await store.pending_count(root)
            print(f"Files to reencode:\t{count}")
    finally:
        await engine.dispose()
    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(args)
    except ValidationError as exc:
        print(f"Error: invalid configuration: {exc}", file=sys.stderr)
        sys.exit(2)

    _configure_logging(settings.debug)
    try:
        code = asyncio.run(execute(args, settings))
    except ReencoderError as exc:
        logger.error("%s", exc)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
