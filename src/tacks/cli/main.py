# src/tacks/cli/main.py

"""
CLI entrypoint (`tk`).

Parses arguments, initializes logging, builds AppState, dispatches one
subcommand and maps tacks errors to exit codes:
- validation -> 2, not found -> 3, conflict -> 4, storage/unexpected -> 1
"""

from __future__ import annotations

import argparse
import dataclasses
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from .. import __version__
from ..cli.bootstrap import create_initial_state, database_exists, db_path_for
from ..cli.commands import registry
from ..cli.render import Renderer
from ..config import get_settings
from ..errors import TacksError
from ..logging_setup import parse_level, setup_logging

logger = logging.getLogger(__name__)

EXIT_CODES = {
    "validation": 2,
    "not_found": 3,
    "conflict": 4,
    "storage": 1,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tk",
        description="Lightweight task manager for AI coding agents",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--db",
        default=None,
        help="Path to the database file (default: $TACKS_DB or .tacks/tacks.db)",
    )
    parser.add_argument("--json", action="store_true", help="Output as JSON instead of table")
    subparsers = parser.add_subparsers(dest="command", metavar="<command>", required=True)
    registry.install(subparsers)
    return parser


def _resolve_settings(args: argparse.Namespace, settings=None):
    if settings is None:
        settings = get_settings()
    if args.db:
        settings = dataclasses.replace(settings, db_path=Path(args.db).expanduser())
    return settings


def main(argv: Sequence[str] | None = None, *, settings=None) -> int:
    args = build_parser().parse_args(argv)
    settings = _resolve_settings(args, settings)

    console_level = parse_level(getattr(settings, "log_level", "WARNING"))
    log_dir = db_path_for(settings).parent if getattr(settings, "log_to_file", False) else None

    # Hooks call `tk prime` in every project; without a database it must print nothing.
    if registry.optional_db(args.command) and not database_exists(settings):
        return 0

    setup_logging(log_dir=log_dir, console_level=console_level)
    logger.debug("Starting %s command=%s", getattr(settings, "app_name", "tacks"), args.command)

    out = Renderer(json_mode=bool(args.json))
    try:
        state = create_initial_state(settings=settings)
        return registry.handle(state, args, out)
    except TacksError as e:
        logger.debug("Command failed kind=%s context=%s", e.kind, e.context)
        print(f"error: {e}", file=sys.stderr)
        return EXIT_CODES.get(e.kind, 1)
    except Exception as e:
        logger.exception("Unexpected error in command %s", args.command)
        print(f"error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
