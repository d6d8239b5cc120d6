"""
Rollback of the identity backfill.

Deletes every record of the tables the backfill populates, then checks that
the legacy journey table (the source of truth) is intact:

    Registrations -> Classes -> Events     (reverse order of creation)

Journey checks:
- the record count still matches the snapshot's total_records
- at least 90% of the first rows still carry booking_id and class_id

The journey table is only read. A run with the dry-run executor deletes
nothing but reports what it would delete.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from eventrecon.config import Tables
from eventrecon.executor import Executor
from eventrecon.model import JOURNEY_FIELDS, Record, as_text
from eventrecon.report import RunLog, RunStats
from eventrecon.storage import utc_timestamp


MIN_VALID_SAMPLE_RATIO = 0.9
JOURNEY_SAMPLE_SIZE = 10


@dataclass
class RollbackReport:
    deleted: dict[str, int] = field(default_factory=dict)
    journey_records: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def passed(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "passed": self.passed,
            "deleted": dict(self.deleted),
            "journey_records": self.journey_records,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }


def _has_ids(record: Record) -> bool:
    return bool(as_text(record.get(JOURNEY_FIELDS["booking_id"]))) and bool(
        as_text(record.get(JOURNEY_FIELDS["class_id"]))
    )


class Rollback:
    def __init__(
        self,
        store: Any,
        executor: Executor,
        log: RunLog,
        stats: RunStats,
        tables: Tables,
        snapshot: Optional[dict[str, Any]],
        *,
        sample_size: int = JOURNEY_SAMPLE_SIZE,
    ) -> None:
        self.store = store
        self.executor = executor
        self.log = log
        self.stats = stats
        self.tables = tables
        self.snapshot = snapshot
        self.sample_size = sample_size
        self.report = RollbackReport()

    def delete_all(self, name: str, table: str) -> int:
        ids = [rec.id for rec in self.store.select_all(table)]
        self.log.info(f"{table}: {len(ids)} record(s) to delete")
        if ids:
            for rid in ids:
                self.log.item("DELETE", f"{table} {rid}")
            self.executor.delete(table, ids)
        self.report.deleted[name] = len(ids)
        self.stats.bump(f"{name}_deleted", len(ids))
        return len(ids)

    def verify_journey(self) -> None:
        journey = list(self.store.select_all(self.tables.journey))
        self.report.journey_records = len(journey)

        if self.snapshot is None:
            self.report.warnings.append("journey: no snapshot, record count not verified")
        else:
            expected = self.snapshot["stats"].get("total_records")
            if expected != len(journey):
                self.report.errors.append(f"journey: expected {expected} records, found {len(journey)}")

        sample = journey[: self.sample_size]
        valid = sum(1 for rec in sample if _has_ids(rec))
        if valid < len(sample) * MIN_VALID_SAMPLE_RATIO:
            self.report.errors.append(f"journey: only {valid}/{len(sample)} sampled rows carry booking_id and class_id")

    def run(self) -> RollbackReport:
        self.delete_all("registrations", self.tables.registrations)
        self.delete_all("classes", self.tables.classes)
        self.delete_all("events", self.tables.events)
        self.verify_journey()
        return self.report
