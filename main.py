"""CLI entrypoint for the scheduled transcript index sync job."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import UTC, datetime

from dotenv import load_dotenv

from errors import ConfigurationError
from job_config import load_config
from models import RunOutcome, TriggerEvent, TriggerKind
from report import build_status, format_status
from runner import SKIPPED_LOCKED, RunReport, execute_run
from trigger import TriggerController

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2
EXIT_LOCKED = 3


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line flags."""
    parser = argparse.ArgumentParser(description="Run the transcript fetch -> embed -> change-gated publish job")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to the YAML job configuration (default: $SYNC_JOB_CONFIG or sync_job.yaml)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Handle one trigger and run the job if it qualifies")
    run.add_argument(
        "--trigger",
        choices=[k.value for k in TriggerKind],
        default=TriggerKind.MANUAL.value,
        help="What caused this invocation (default: manual)",
    )
    run.add_argument("--ref", default=os.getenv("GITHUB_REF"), help="Git ref for push triggers")
    run.add_argument("--actor", default=os.getenv("GITHUB_ACTOR"), help="Who dispatched a manual trigger")
    run.add_argument(
        "--dry-run",
        action="store_true",
        help="Build the snapshot and report the publish decision without writing anything",
    )

    sub.add_parser("validate-config", help="Load and validate the job configuration, then exit")

    next_fire = sub.add_parser("next-fire", help="Print upcoming schedule ticks")
    next_fire.add_argument("--count", type=int, default=3, help="How many ticks to print")

    sub.add_parser("status", help="Show the published version and recent Runs")
    return parser.parse_args(argv)


def _write_github_output(report: RunReport) -> None:
    """Expose the outcome to later workflow steps when running in GitHub Actions."""
    output_path = os.getenv("GITHUB_OUTPUT")
    if not output_path:
        return
    if report.run is not None and report.run.outcome is not None:
        outcome = str(report.run.outcome)
    else:
        outcome = f"skipped-{report.skipped}"
    with open(output_path, "a", encoding="utf-8") as fh:
        fh.write(f"outcome={outcome}\n")
        fh.write(f"published={'true' if report.published else 'false'}\n")


def cmd_run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    event = TriggerEvent(
        kind=TriggerKind(args.trigger),
        occurred_at=datetime.now(UTC),
        ref=args.ref,
        actor=args.actor,
    )
    report = execute_run(config, event, dry_run=args.dry_run)
    _write_github_output(report)

    if report.skipped == SKIPPED_LOCKED:
        return EXIT_LOCKED
    if report.run is None:
        logging.info("Trigger %s did not start a Run for job=%s", event.kind, config.name)
        return EXIT_OK
    if report.run.outcome == RunOutcome.FAILURE:
        return EXIT_FAILURE
    return EXIT_OK


def cmd_validate_config(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    print(f"OK: job={config.name} videos={len(config.executor.videos)} entry_point={config.entry_point}")
    return EXIT_OK


def cmd_next_fire(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    fires = TriggerController(config).next_fire(datetime.now(UTC), count=max(1, args.count))
    if not fires:
        print("No enabled schedule.")
    for fire in fires:
        print(fire.isoformat())
    return EXIT_OK


def cmd_status(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    print(format_status(build_status(config)))
    return EXIT_OK


_COMMANDS = {
    "run": cmd_run,
    "validate-config": cmd_validate_config,
    "next-fire": cmd_next_fire,
    "status": cmd_status,
}


def main(argv: list[str] | None = None) -> int:
    """Initialize config and dispatch the requested command."""
    load_dotenv()
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    args = parse_args(argv)

    try:
        return _COMMANDS[args.command](args)
    except ConfigurationError as exc:
        logging.error("Configuration error: %s", exc)
        return EXIT_CONFIG_ERROR


if __name__ == "__main__":
    sys.exit(main())
