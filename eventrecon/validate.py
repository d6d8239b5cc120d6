"""
Post-run consistency checks.

The validator only reads. It runs every check and collects all findings:
- counts in the store vs the extraction snapshot
- orphaned references (links or text ids pointing at no Event / Class)
- duplicate Events still sharing a natural key
- sampled field values vs the snapshot

Orphans are reported per (dependent, reference): a Class linked to a
missing Event produces exactly one error, no matter how many checks could
have noticed it.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from eventrecon.config import Tables
from eventrecon.grouping import find_duplicate_groups
from eventrecon.identity import date_part
from eventrecon.model import (
    JOURNEY_FIELDS,
    ORDER_FIELDS,
    REGISTRATION_FIELDS,
    ClassRecord,
    Event,
    Record,
    as_links,
    as_text,
)
from eventrecon.storage import utc_timestamp
from eventrecon.store import PermissionDeniedError


DEFAULT_SAMPLE_SIZE = 10
ORPHAN_ID_LIMIT = 5


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_timestamp)

    @property
    def passed(self) -> bool:
        return not self.errors

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "passed": self.passed,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "stats": dict(self.stats),
        }


class _OrphanCollector:
    """
    Groups orphaned record ids by (dependent, missing reference).
    """

    def __init__(self) -> None:
        self.found: dict[tuple[str, str], list[str]] = {}

    def add(self, dependent: str, ref: str, record_id: str) -> None:
        self.found.setdefault((dependent, ref), []).append(record_id)

    def messages(self) -> list[str]:
        out: list[str] = []
        for (dependent, ref), ids in self.found.items():
            shown = ", ".join(ids[:ORPHAN_ID_LIMIT])
            more = f" (+{len(ids) - ORPHAN_ID_LIMIT} more)" if len(ids) > ORPHAN_ID_LIMIT else ""
            target = ref or "(empty)"
            out.append(f"orphans: {len(ids)} {dependent} record(s) reference {target}: {shown}{more}")
        return out

    @property
    def total(self) -> int:
        return sum(len(ids) for ids in self.found.values())


class Validator:
    def __init__(
        self,
        store: Any,
        tables: Tables,
        snapshot: Optional[dict[str, Any]],
        *,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
    ) -> None:
        self.store = store
        self.tables = tables
        self.snapshot = snapshot
        self.sample_size = sample_size
        self.report = ValidationReport()

    # -- loading ------------------------------------------------------------

    def _load(self, table: str) -> list[Record]:
        return list(self.store.select_all(table))

    def _load_optional(self, table: str) -> Optional[list[Record]]:
        try:
            return self._load(table)
        except PermissionDeniedError:
            self.report.warnings.append(f"{table}: table not accessible, checks skipped")
            return None

    # -- checks -------------------------------------------------------------

    def check_counts(self, events: list[Event], classes: list[ClassRecord], registrations: Optional[list[Record]]) -> None:
        if self.snapshot is None:
            self.report.errors.append("counts: no snapshot to compare against (run backfill first)")
            return
        expected = self.snapshot["stats"]
        pairs = [
            ("events", len(events), expected.get("unique_events")),
            ("classes", len(classes), expected.get("unique_classes")),
        ]
        if registrations is not None:
            pairs.append(("registrations", len(registrations), expected.get("registrations")))
        for name, actual, want in pairs:
            if want is None:
                self.report.warnings.append(f"counts: snapshot has no expected {name} count")
            elif actual != want:
                self.report.errors.append(f"counts: {name} expected {want}, found {actual}")

    def check_orphans(
        self,
        events: list[Event],
        classes: list[ClassRecord],
        journey: list[Record],
        registrations: Optional[list[Record]],
        orders: Optional[list[Record]],
    ) -> None:
        event_records = {ev.record_id for ev in events}
        event_ids = {ev.event_id for ev in events if ev.event_id}
        class_records = {c.record_id for c in classes}
        orphans = _OrphanCollector()

        for cls in classes:
            if not cls.event_links:
                orphans.add("classes", "", cls.record_id)
            for link in cls.event_links:
                if link not in event_records:
                    orphans.add("classes", link, cls.record_id)

        for rec in registrations or []:
            for link in as_links(rec.get(REGISTRATION_FIELDS["event_link"])):
                if link not in event_records:
                    orphans.add("registrations", link, rec.id)
            for link in as_links(rec.get(REGISTRATION_FIELDS["class_link"])):
                if link not in class_records:
                    orphans.add("registrations", link, rec.id)

        self._check_text_refs(orphans, "parent_journey", journey, JOURNEY_FIELDS["booking_id"], event_ids)
        self._check_text_refs(orphans, "orders", orders or [], ORDER_FIELDS["booking_id"], event_ids)

        self.report.errors.extend(orphans.messages())
        self.report.stats["orphaned_records"] = orphans.total

    @staticmethod
    def _check_text_refs(
        orphans: _OrphanCollector,
        dependent: str,
        records: Iterable[Record],
        field_name: str,
        event_ids: set[str],
    ) -> None:
        for rec in records:
            ref = as_text(rec.get(field_name))
            # rows not yet backfilled carry no id at all; that is not an orphan
            if ref and ref not in event_ids:
                orphans.add(dependent, ref, rec.id)

    def check_duplicates(self, events: list[Event], classes: list[ClassRecord]) -> None:
        groups = find_duplicate_groups(events)
        for group in groups:
            school_name, event_date = group.natural_key
            ids = ", ".join(ev.event_id or "(no id)" for ev in group.members)
            self.report.errors.append(f"duplicates: {school_name} {event_date} has {len(group.members)} Events: {ids}")
        self.report.stats["duplicate_groups"] = len(groups)

        counts = Counter(c.class_id for c in classes if c.class_id)
        for class_id, n in counts.items():
            if n > 1:
                self.report.warnings.append(f"duplicates: class_id {class_id} used by {n} Classes")

    def check_samples(self, events: list[Event], classes: list[ClassRecord]) -> None:
        if self.snapshot is None:
            self.report.errors.append("samples: no snapshot to compare against (run backfill first)")
            return

        by_event_id = {ev.event_id: ev for ev in events if ev.event_id}
        for expected in self.snapshot["events"][: self.sample_size]:
            event_id = expected.get("event_id", "")
            actual = by_event_id.get(event_id)
            if actual is None:
                self.report.errors.append(f"samples: Event {event_id} not found")
                continue
            if actual.school_name != expected.get("school_name"):
                self.report.errors.append(
                    f"samples: Event {event_id} school_name {actual.school_name!r} != {expected.get('school_name')!r}"
                )
            if date_part(actual.event_date) != date_part(expected.get("event_date")):
                self.report.errors.append(
                    f"samples: Event {event_id} event_date {actual.event_date!r} != {expected.get('event_date')!r}"
                )

        by_class_id = {c.class_id: c for c in classes if c.class_id}
        for expected in self.snapshot["classes"][: self.sample_size]:
            class_id = expected.get("class_id", "")
            actual_class = by_class_id.get(class_id)
            if actual_class is None:
                self.report.errors.append(f"samples: Class {class_id} not found")
            elif actual_class.class_name != expected.get("class_name"):
                self.report.errors.append(
                    f"samples: Class {class_id} class_name {actual_class.class_name!r} != {expected.get('class_name')!r}"
                )

    # -- entry point --------------------------------------------------------

    def validate(self) -> ValidationReport:
        """
        Run all checks. Store errors on required tables propagate to the caller.
        """
        events = [Event.from_record(r) for r in self._load(self.tables.events)]
        classes = [ClassRecord.from_record(r) for r in self._load(self.tables.classes)]
        journey = self._load(self.tables.journey)
        registrations = self._load_optional(self.tables.registrations)
        orders = self._load_optional(self.tables.orders)

        self.report.stats.update(
            {
                "events": len(events),
                "classes": len(classes),
                "parent_journey": len(journey),
                "registrations": None if registrations is None else len(registrations),
                "orders": None if orders is None else len(orders),
            }
        )

        self.check_counts(events, classes, registrations)
        self.check_orphans(events, classes, journey, registrations, orders)
        self.check_duplicates(events, classes)
        self.check_samples(events, classes)
        return self.report
