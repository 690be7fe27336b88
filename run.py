"""Launcher for the session archiver.

Finds the live session directory, builds this hour's archive and embeds
it in today's archive. Meant to be invoked periodically by a scheduler
(cron, Task Scheduler); only one instance should run at a time.

Usage:
    python run.py
    python run.py --config config/config.json
    python run.py --session-dir ~/fc2/Sessions --log-level DEBUG

Exit codes: 0 success, 1 backup failure, 2 no active session.
"""

import argparse
import logging
import os
import sys

from src.archiver.archive_config import DEFAULT_CONFIG, load_config
from src.archiver.errors import ArchiverError, NoActiveSession
from src.archiver.nesting_coordinator import NestingCoordinator
from src.session.session_locator import SessionLocator

logger = logging.getLogger("session_archiver")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_NO_SESSION = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Archive the live session directory into hourly and daily zips",
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help=f"Path to config.json (default: {DEFAULT_CONFIG} if present)",
    )
    parser.add_argument(
        "--session-dir",
        default=None,
        help="Back up this directory instead of discovering the running session",
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        config = load_config(args.config)
        locator = SessionLocator(
            process_names=config.session_process_names,
            session_directory=args.session_dir or config.session_directory,
        )
        session_dir = locator.require()
        result = NestingCoordinator(config).run(session_dir)
    except NoActiveSession as exc:
        print(str(exc), file=sys.stderr)
        return EXIT_NO_SESSION
    except ArchiverError as exc:
        print(f"{exc.stage} failed: {exc}", file=sys.stderr)
        return EXIT_FAILED
    except FileNotFoundError as exc:
        print(f"configuration failed: {exc}", file=sys.stderr)
        return EXIT_FAILED

    print(f"sessions directory: {result.paths.backup_root}")
    print(f"archives directory: {result.paths.archive_root}")
    print(f"today's archive: {result.paths.daily} ({len(result.daily_entries)} entries)")
    print(f"now's archive: {result.paths.hourly} ({result.hourly.entries} entries)")
    for path in result.pruned:
        print(f"removed old archive: {path}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
