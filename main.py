#!/usr/bin/env python3
"""Entity Sync Run Ledger CLI.

This module provides a command-line interface for inspecting the run ledger
that SyncStore writes. Each sync run records its command, arguments, exit
status and a summary of the errors and warnings it collected.

Environment Variables:
    - ENTSYNC_DB_PATH: Ledger database file (default: entsync.db)
    - ENTSYNC_LOG_LEVEL: Log level (default: INFO)

Example Usage:
    $ python main.py runs                  # List the 20 most recent runs
    $ python main.py runs --limit 5        # List the 5 most recent runs
    $ python main.py errors <run-uuid>     # Show one run's error summary
    $ python main.py --db other.db runs    # Use another ledger

Author: Entity Sync Team
"""
import argparse
import json
import sys

from src.entsync.api import ConfigurationError, EntSyncError, SyncConfig, configure_logging
from src.entsync.sync import SyncStore


def show_runs(store: SyncStore, limit: int) -> int:
    """Print the most recent runs, newest first."""
    runs = store.list_runs(limit)
    if not runs:
        print("No sync runs recorded")
        return 0

    print(f"{'Run UUID':<38} {'Command':<20} {'Started':<20} {'Exit':>4} {'Errors':>6} {'Warnings':>8}")
    print("-" * 100)
    for run in runs:
        exit_status = "-" if run["exit_status"] is None else str(run["exit_status"])
        print(
            f"{run['run_uuid']:<38} {(run['run_command'] or '')[:20]:<20} "
            f"{str(run['started_at'])[:19]:<20} {exit_status:>4} "
            f"{run['error_count'] or 0:>6} {run['warning_count'] or 0:>8}"
        )
    return 0


def show_errors(store: SyncStore, run_uuid: str, as_json: bool = False) -> int:
    """Print the error summary recorded for one run."""
    run = store.get_run(run_uuid)
    if run is None:
        print(f"Run not found: {run_uuid}", file=sys.stderr)
        return 1

    if as_json:
        print(json.dumps(run["errors"], indent=2, default=str))
        return 0

    print(f"Run {run['run_uuid']}: {run['run_command']} {' '.join(map(str, run['run_arguments']))}".rstrip())
    print(f"Started {run['started_at']}, finished {run['finished_at'] or '(not finished)'}")
    if not run["errors"]:
        print("No sync errors recorded")
        return 0

    for entry in run["errors"]:
        meta = entry["meta"]
        print(f"\n{{{meta['seen']}}} {entry['title']} [{meta['level']}] ('{entry['detail']}'):")
        for value in meta["values"]:
            print(f"  {value}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Inspect the entity sync run ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py runs                     # List recent runs
  python main.py errors <run-uuid>        # Show a run's error summary
  python main.py errors <run-uuid> --json # Same, as JSON
        """
    )
    parser.add_argument(
        "--db",
        type=str,
        metavar="FILE",
        help="Ledger database file (default: $ENTSYNC_DB_PATH or entsync.db)"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    runs = commands.add_parser("runs", help="List recent sync runs")
    runs.add_argument(
        "--limit",
        type=int,
        default=20,
        metavar="N",
        help="Number of runs to show (default: 20)"
    )

    errors = commands.add_parser("errors", help="Show the errors recorded for a run")
    errors.add_argument("run_uuid", metavar="RUN_UUID", help="UUID of the run")
    errors.add_argument(
        "--json",
        action="store_true",
        help="Print the raw error summary as JSON"
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = SyncConfig.from_env()
    except ConfigurationError as e:
        print(f"[Main] Configuration error: {e}", file=sys.stderr)
        return 1
    configure_logging(config.log_level)

    try:
        with SyncStore(args.db or config.db_path) as store:
            if args.command == "runs":
                return show_runs(store, args.limit)
            return show_errors(store, args.run_uuid, args.json)
    except EntSyncError as e:
        print(f"[Main] {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
