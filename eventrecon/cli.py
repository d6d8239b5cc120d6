"""
CLI (Command Line Interface).

    eventrecon backfill [--dry-run]
    eventrecon fix-duplicates [--dry-run]
    eventrecon validate [--sample-size N]
    eventrecon run [--dry-run]
    eventrecon dedupe-registrations [--dry-run]
    eventrecon rollback [--dry-run] [--yes]

Every command accepts --data-dir (defaults to $EVENTRECON_DATA_DIR or
./migration-data). Credentials come from the environment or a .env file,
see eventrecon/config.py.

Note:
- output is plain text; every line of a dry run starts with "[DRY RUN] "
- the process exits with the code returned by runner.run_phases()
- rollback asks for the word ROLLBACK on stdin unless --yes or --dry-run is given
"""

from __future__ import annotations

import argparse

from eventrecon.config import ConfigError, load_settings
from eventrecon.runner import PHASES, run_phases
from eventrecon.validate import DEFAULT_SAMPLE_SIZE


ROLLBACK_WORD = "ROLLBACK"


def _sample_size(value: str) -> int:
    try:
        n = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"not an integer: {value!r}") from None
    if n < 0:
        raise argparse.ArgumentTypeError("must be >= 0")
    return n


def confirm_rollback(ask=input) -> bool:
    print("rollback deletes every record in Events, Classes and Registrations.")
    print("The parent journey table is not touched.")
    return ask(f"Type {ROLLBACK_WORD} to confirm: ").strip() == ROLLBACK_WORD


def build_parser() -> argparse.ArgumentParser:
    """
    Build the argparse CLI parser with sub-commands.
    """
    parser = argparse.ArgumentParser(prog="eventrecon", description="Event identity and reconciliation")
    sub = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--data-dir", type=str, default=None, help="Directory for snapshot and reports")

    mutating = argparse.ArgumentParser(add_help=False)
    mutating.add_argument("--dry-run", action="store_true", help="Log every decision, change nothing")

    sub.add_parser("backfill", parents=[common, mutating], help="Create missing Events/Classes from journey rows")
    sub.add_parser("fix-duplicates", parents=[common, mutating], help="Merge Events sharing school and date")

    p_validate = sub.add_parser("validate", parents=[common], help="Check counts, orphans, duplicates, samples")
    p_validate.add_argument("--sample-size", type=_sample_size, default=DEFAULT_SAMPLE_SIZE)

    p_run = sub.add_parser("run", parents=[common, mutating], help="backfill, fix-duplicates and validate")
    p_run.add_argument("--sample-size", type=_sample_size, default=DEFAULT_SAMPLE_SIZE)

    sub.add_parser(
        "dedupe-registrations", parents=[common, mutating], help="Delete repeated Registrations of one child"
    )

    p_rollback = sub.add_parser(
        "rollback", parents=[common, mutating], help="Delete backfilled Events/Classes/Registrations"
    )
    p_rollback.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    return parser


def main(argv: list[str] | None = None) -> None:
    """
    CLI entry point. Parses args, dispatches to the runner,
    and exits via SystemExit with a return code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings(data_dir=args.data_dir)
    except ConfigError as exc:
        print(f"Error: {exc}")
        raise SystemExit(1)

    if args.command == "rollback" and not (args.dry_run or args.yes or confirm_rollback()):
        print("Rollback cancelled.")
        raise SystemExit(0)

    phases = list(PHASES) if args.command == "run" else [args.command]
    raise SystemExit(
        run_phases(
            phases,
            settings,
            dry_run=getattr(args, "dry_run", False),
            sample_size=getattr(args, "sample_size", DEFAULT_SAMPLE_SIZE),
        )
    )
