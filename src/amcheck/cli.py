"""Command-line interface for amcheck.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

import structlog

from amcheck import __version__
from amcheck.config import SETTINGS_DIR_VARIABLE, Settings, get_settings
from amcheck.engine import check_storage, move_to_storage
from amcheck.exceptions import AmcheckError
from amcheck.imap import ImapStore
from amcheck.utils import configure_logging

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="amcheck", description="Mailbox triage and checks")
    parser.add_argument(
        "--settings-dir",
        type=Path,
        default=None,
        help="Directory holding <environment>.toml (default: ./settings)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    move_parser = subparsers.add_parser(
        "move",
        help="Move recent INBOX mail matched by any matcher set into storage",
    )
    move_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be moved without touching the mailbox",
    )

    check_parser = subparsers.add_parser(
        "check",
        help="Run every handler's decision tree against the storage mailbox",
    )
    check_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report alerts and deletions without performing them",
    )

    return parser


def _cmd_move(settings: Settings, store: ImapStore, args: argparse.Namespace) -> int:
    moved = move_to_storage(
        store,
        settings.matcher_sets,
        dry_run=args.dry_run,
        environment=settings.environment,
        days_back=settings.move_days_back,
        storage_mailbox=settings.storage_mailbox,
    )
    logger.info("move_completed", matched=moved, dry_run=args.dry_run)
    return 0


def _cmd_check(settings: Settings, store: ImapStore, args: argparse.Namespace) -> int:
    report = check_storage(
        store,
        settings.handlers,
        dry_run=args.dry_run,
        storage_mailbox=settings.storage_mailbox,
        fetch_limit=settings.check_fetch_limit,
        alert_detail_limit=settings.alert_detail_limit,
    )
    logger.info(
        "check_completed",
        completed=len(report.completed),
        errored=len(report.errored),
        dry_run=args.dry_run,
    )
    if not report.ok:
        print(f"Handlers errored: {', '.join(report.errored)}", file=sys.stderr)
        return 1
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the amcheck CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code: 0 for success, 1 for a fatal error. Usage errors exit
        with 2 through argparse.
    """
    if args is None:
        args = sys.argv[1:]

    parser = _build_parser()
    parsed = parser.parse_args(args)

    if parsed.settings_dir is not None:
        os.environ[SETTINGS_DIR_VARIABLE] = str(parsed.settings_dir)
        get_settings.cache_clear()

    try:
        settings = get_settings()
    except (AmcheckError, ValueError) as exc:
        print(f"Failed to read configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings.log_level, settings.log_format)
    logger.info(
        "amcheck_started",
        version=__version__,
        command=parsed.command,
        environment=settings.environment.value,
    )
    logger.debug("settings_loaded", settings=repr(settings))

    command = {"move": _cmd_move, "check": _cmd_check}[parsed.command]

    try:
        with ImapStore(settings) as store:
            return command(settings, store, parsed)
    except AmcheckError as exc:
        logger.exception("amcheck_failed", command=parsed.command)
        print(f"amcheck {parsed.command} failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
