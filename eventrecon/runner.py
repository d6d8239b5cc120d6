"""
Phase orchestration.

    backfill              extract snapshot, create missing Events / Classes, fill ids
    fix-duplicates        reconcile Events sharing a natural key, re-key stale ids
    validate              read-only consistency checks, writes validation-report.json
    run                   the three above, in that order

Maintenance phases, never part of `run`:

    dedupe-registrations  delete repeated Registrations of one child
    rollback              delete all Events / Classes / Registrations, verify journey

Exit status:
- 0 when every phase completed and its checks (if any) passed
- 1 on a fatal store error, on any group error, or on failed checks

A fatal error stops the remaining phases; the summary is still written.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence, TextIO

from eventrecon.backfill import IdentityBackfill, extract_snapshot
from eventrecon.config import Settings
from eventrecon.executor import DryRunExecutor, Executor, LiveExecutor
from eventrecon.grouping import find_duplicate_groups, find_stale_identifiers, targets_from_snapshot
from eventrecon.model import Event
from eventrecon.reconcile import ReconcileResult, Reconciler, default_dependents
from eventrecon.registrations import RegistrationGroup, dedupe_registrations
from eventrecon.report import RunLog, RunStats
from eventrecon.rollback import Rollback, RollbackReport
from eventrecon.storage import load_snapshot, save_report, save_snapshot, save_summary
from eventrecon.store import AirtableClient, StoreError
from eventrecon.validate import DEFAULT_SAMPLE_SIZE, ValidationReport, Validator


PHASES = ("backfill", "fix-duplicates", "validate")
MAINTENANCE_PHASES = ("dedupe-registrations", "rollback")


def build_store(settings: Settings) -> AirtableClient:
    return AirtableClient(settings.api_key, settings.base_id, timeout=settings.timeout)


def make_executor(store: Any, dry_run: bool) -> Executor:
    return DryRunExecutor() if dry_run else LiveExecutor(store)


def load_events(store: Any, settings: Settings) -> list[Event]:
    return [Event.from_record(r) for r in store.select_all(settings.tables.events)]


# ---------------------------------------------------------------------------
# Phases
# ---------------------------------------------------------------------------


def run_backfill(store: Any, executor: Executor, log: RunLog, stats: RunStats, settings: Settings) -> dict[str, Any]:
    journey = list(store.select_all(settings.tables.journey))
    log.info(f"Loaded {len(journey)} {settings.tables.journey} records")

    snapshot = extract_snapshot(journey)
    path = save_snapshot(snapshot, settings.snapshot_path)
    s = snapshot["stats"]
    log.info(
        f"Snapshot: {s['unique_events']} events, {s['unique_classes']} classes, "
        f"{s['registrations']} registrations ({s['placeholder_records']} placeholders) -> {path}"
    )

    IdentityBackfill(store, executor, log, stats, settings.tables).run(journey, snapshot)
    return snapshot


def run_fix_duplicates(
    store: Any, executor: Executor, log: RunLog, stats: RunStats, settings: Settings
) -> list[ReconcileResult]:
    events = load_events(store, settings)
    # identifiers the backfill stamped on journey rows win over the Events' own categories
    targets = targets_from_snapshot(load_snapshot(settings.snapshot_path))
    groups = find_duplicate_groups(events, targets)
    stale = find_stale_identifiers(events, targets)
    log.info(f"Loaded {len(events)} Events, {len(groups)} duplicate group(s), {len(stale)} stale identifier(s)")
    stats.bump("duplicate_groups", len(groups))
    stats.bump("stale_identifiers", len(stale))
    if not groups and not stale:
        log.info("No duplicates found.")
        return []

    reconciler = Reconciler(
        store,
        executor,
        log,
        stats,
        events_table=settings.tables.events,
        dependents=default_dependents(settings.tables),
    )
    reconciler.load_dependents()
    return reconciler.reconcile_all(groups + stale)


def run_validate(
    store: Any, log: RunLog, stats: RunStats, settings: Settings, *, sample_size: int = DEFAULT_SAMPLE_SIZE
) -> ValidationReport:
    snapshot = load_snapshot(settings.snapshot_path)
    report = Validator(store, settings.tables, snapshot, sample_size=sample_size).validate()
    save_report(report.to_dict(), settings.report_path)

    for msg in report.warnings:
        log.item("WARN", msg)
    for msg in report.errors:
        log.item("ERROR", msg)
        stats.error(msg)
    log.info(f"Validation {'PASSED' if report.passed else 'FAILED'} -> {settings.report_path}")
    return report


def run_dedupe_registrations(
    store: Any, executor: Executor, log: RunLog, stats: RunStats, settings: Settings
) -> list[RegistrationGroup]:
    return dedupe_registrations(store, executor, log, stats, settings.tables)


def run_rollback(store: Any, executor: Executor, log: RunLog, stats: RunStats, settings: Settings) -> RollbackReport:
    snapshot = load_snapshot(settings.snapshot_path)
    report = Rollback(store, executor, log, stats, settings.tables, snapshot).run()
    save_report(report.to_dict(), settings.rollback_path)

    for msg in report.warnings:
        log.item("WARN", msg)
    for msg in report.errors:
        log.item("ERROR", msg)
        stats.error(msg)
    log.info(f"Journey table {'intact' if report.passed else 'NOT verified'} -> {settings.rollback_path}")
    return report


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------


def run_phases(
    phases: Sequence[str],
    settings: Settings,
    *,
    dry_run: bool = False,
    store: Optional[Any] = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    stream: Optional[TextIO] = None,
) -> int:
    """
    Run the given phases in order and return the process exit code.
    """
    unknown = [p for p in phases if p not in PHASES + MAINTENANCE_PHASES]
    if unknown:
        raise ValueError(f"Unknown phase(s): {', '.join(unknown)}")

    store = store if store is not None else build_store(settings)
    executor = make_executor(store, dry_run)
    log = RunLog(dry_run=dry_run, stream=stream)
    stats = RunStats(phase=" + ".join(phases), dry_run=dry_run)

    results: list[ReconcileResult] = []
    registration_groups: list[RegistrationGroup] = []
    report: Optional[ValidationReport] = None
    rollback: Optional[RollbackReport] = None
    fatal: Optional[str] = None

    try:
        for phase in phases:
            log.banner(f"eventrecon {phase}")
            if phase == "backfill":
                run_backfill(store, executor, log, stats, settings)
            elif phase == "fix-duplicates":
                results = run_fix_duplicates(store, executor, log, stats, settings)
            elif phase == "validate":
                report = run_validate(store, log, stats, settings, sample_size=sample_size)
            elif phase == "dedupe-registrations":
                registration_groups = run_dedupe_registrations(store, executor, log, stats, settings)
            else:
                rollback = run_rollback(store, executor, log, stats, settings)
    except StoreError as exc:
        fatal = str(exc)
        log.item("ERROR", f"fatal: {exc}")
        stats.error(f"fatal: {exc}")

    log.info("")
    log.info("Summary")
    for line in stats.render():
        log.info(f"  {line}")

    summary = stats.to_dict()
    summary["fatal"] = fatal
    summary["groups"] = [r.to_dict() for r in results]
    summary["validation"] = report.to_dict() if report is not None else None
    if "dedupe-registrations" in phases:
        summary["registration_groups"] = [g.to_dict() for g in registration_groups]
    if "rollback" in phases:
        summary["rollback"] = rollback.to_dict() if rollback is not None else None
    summary["mutations"] = len(executor.mutations)
    summary["exit_code"] = exit_code = 1 if stats.failed else 0
    save_summary(summary, settings.summary_path)

    return exit_code
