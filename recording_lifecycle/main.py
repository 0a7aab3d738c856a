"""Command-line entry point for scheduled and manual lifecycle jobs.

Usage:
    python -m recording_lifecycle.main fetch --hours 24
    python -m recording_lifecycle.main recover-all
    python -m recording_lifecycle.main disable

Scheduled jobs are skipped while the persisted ``processing_enabled``
flag is false; ``enable`` and ``disable`` set it. Every command prints
the operation's summary line.
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from recording_lifecycle.config import Settings
from recording_lifecycle.fetch.scheduler import CONTINUATION_HANDLER, FetchScheduler
from recording_lifecycle.lifecycle.blob_mover import BlobMover
from recording_lifecycle.lifecycle.triggers import StateTriggerScheduler
from recording_lifecycle.notify.email import Notifier, ResendNotifier
from recording_lifecycle.observability.logger import setup_logging
from recording_lifecycle.provider.zoom_phone import ZoomPhoneClient
from recording_lifecycle.recovery.orchestrator import RecoveryOrchestrator
from recording_lifecycle.recovery.partial_failure import PartialFailureDetector
from recording_lifecycle.results import Outcome
from recording_lifecycle.storage.interface import StateStore
from recording_lifecycle.storage.ledger_client import LedgerClient
from recording_lifecycle.storage.recordings import RecordingLedger
from recording_lifecycle.storage.s3_blob_store import S3BlobStore
from recording_lifecycle.storage.state_store import S3StateStore, read_flag
from recording_lifecycle.utils.clock import now_utc
from recording_lifecycle.utils.errors import ConfigurationError, LifecycleError

logger = logging.getLogger(__name__)

PROCESSING_ENABLED_KEY = "processing_enabled"

SCHEDULED_COMMANDS = frozenset(
    {
        "fetch",
        "fetch-ledger",
        "continue-fetch",
        "run-due",
        "detect-partial-failures",
        "recover-all",
    }
)

ADMIN_COMMANDS = frozenset({"enable", "disable", "detection-stats", "check-record"})


@dataclass
class Services:
    settings: Settings
    state: StateStore
    triggers: StateTriggerScheduler
    scheduler: FetchScheduler | None
    orchestrator: RecoveryOrchestrator
    detector: PartialFailureDetector


def _build_notifier() -> Notifier | None:
    try:
        return ResendNotifier()
    except ConfigurationError as exc:
        logger.warning("Notifications disabled: %s", exc)
        return None


def build_services(settings: Settings, with_provider: bool) -> Services:
    """Wire the production stores and clients from the environment.

    Raises:
        ConfigurationError: If a required store setting is missing.
    """
    state = S3StateStore()
    blobs = S3BlobStore(settings.location_ids)
    ledger = RecordingLedger(LedgerClient())
    mover = BlobMover(blobs)
    triggers = StateTriggerScheduler(state)
    notifier = _build_notifier()

    detector = PartialFailureDetector(mover, ledger, settings, notifier=notifier)
    orchestrator = RecoveryOrchestrator(
        mover, ledger, state, settings, detector=detector, notifier=notifier
    )
    scheduler = None
    if with_provider:
        scheduler = FetchScheduler(
            ZoomPhoneClient(), blobs, ledger, state, triggers, settings
        )
    return Services(settings, state, triggers, scheduler, orchestrator, detector)


def _window(hours: int | None) -> tuple[datetime | None, datetime | None]:
    if hours is None:
        return None, None
    to_time = now_utc()
    return to_time - timedelta(hours=hours), to_time


def run_due(services: Services) -> list[Outcome]:
    """Run every persisted trigger whose time has come."""
    handlers: dict[str, Callable[[], Outcome]] = {}
    if services.scheduler is not None:
        handlers[CONTINUATION_HANDLER] = services.scheduler.continue_fetch
    outcomes: list[Outcome] = []
    for handler in services.triggers.pop_due():
        action = handlers.get(handler)
        if action is None:
            logger.warning("No handler registered for trigger %s", handler)
            continue
        outcomes.append(action())
    return outcomes


def run_command(args: argparse.Namespace, services: Services) -> list[Outcome]:
    command = args.command
    if command in ("fetch", "fetch-ledger"):
        from_time, to_time = _window(args.hours)
        if command == "fetch":
            return [services.scheduler.fetch_window(from_time, to_time)]
        return [services.scheduler.fetch_from_ledger(from_time, to_time)]
    if command == "continue-fetch":
        return [services.scheduler.continue_fetch()]
    if command == "run-due":
        return run_due(services)
    if command == "recover-interrupted":
        return [services.orchestrator.recover_interrupted_files()]
    if command == "recover-errors":
        return [services.orchestrator.recover_error_files()]
    if command == "reset-pending":
        return [services.orchestrator.reset_pending_transcriptions()]
    if command == "force-recover":
        return [services.orchestrator.force_recover_all_error_files()]
    if command == "detect-partial-failures":
        return [services.detector.detect_and_recover()]
    if command == "recover-all":
        return [services.orchestrator.run_full_recovery()]
    raise ValueError(f"Unknown command: {command}")


def run_admin_command(args: argparse.Namespace, services: Services) -> str:
    """Run an operator command and return its summary line."""
    command = args.command
    if command in ("enable", "disable"):
        enabled = command == "enable"
        services.state.put_json(PROCESSING_ENABLED_KEY, enabled)
        logger.info("Set %s to %s", PROCESSING_ENABLED_KEY, enabled)
        return f"processing {'enabled' if enabled else 'disabled'}"
    if command == "detection-stats":
        stats = services.detector.statistics()
        return "detection stats: " + ", ".join(
            f"{name}={count}" for name, count in stats.items()
        )
    if command == "check-record":
        issue = services.detector.check_record(args.record_id)
        return f"{args.record_id}: {issue or 'no issue detected'}"
    raise ValueError(f"Unknown command: {command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="recording-lifecycle",
        description="Recording ingestion and recovery jobs",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    for name in ("fetch", "fetch-ledger"):
        command = sub.add_parser(name)
        command.add_argument(
            "--hours", type=int, default=None, help="Window length ending now"
        )
    for name in (
        "continue-fetch",
        "run-due",
        "recover-interrupted",
        "recover-errors",
        "reset-pending",
        "force-recover",
        "detect-partial-failures",
        "recover-all",
        "enable",
        "disable",
        "detection-stats",
    ):
        sub.add_parser(name)
    check = sub.add_parser("check-record")
    check.add_argument("record_id", help="Recording id to check")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run one command and print its summary."""
    setup_logging()
    args = build_parser().parse_args(argv)

    needs_provider = args.command in (
        "fetch",
        "fetch-ledger",
        "continue-fetch",
        "run-due",
    )
    try:
        settings = Settings.from_env()
        services = build_services(settings, with_provider=needs_provider)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        print(f"{args.command} failed: {exc}")
        return 2

    if args.command in ADMIN_COMMANDS:
        try:
            print(run_admin_command(args, services))
        except LifecycleError as exc:
            logger.error("%s failed: %s", args.command, exc)
            print(f"{args.command} failed: {exc}")
            return 1
        return 0

    if args.command in SCHEDULED_COMMANDS:
        try:
            enabled = read_flag(services.state, PROCESSING_ENABLED_KEY, default=True)
        except LifecycleError as exc:
            logger.error("Could not read %s: %s", PROCESSING_ENABLED_KEY, exc)
            print(f"{args.command} failed: {exc}")
            return 1
        if not enabled:
            logger.info("Processing disabled, skipping %s", args.command)
            print(f"{args.command} skipped: processing disabled")
            return 0

    for outcome in run_command(args, services):
        print(outcome.message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
