"""
Identity backfill (legacy journey rows -> Events / Classes / Registrations).

The legacy parent_journey_table is the source of truth: one row per
registered child (or a placeholder row per class). From it we:
- extract the unique Events, Classes and registrations (the snapshot)
- create Events whose natural key has no Event in the store yet
- create Classes whose class_id is not in the store yet, linked to their Event
- create Registrations for journey rows that have none yet (optional table)
- fill a missing booking_id / class_id on journey rows

Important rules:
- the snapshot only reads; it is written to disk before any reconciliation
- existing Events are never re-keyed here (that is fix-duplicates' job);
  an existing Event without any identifier gets the snapshot one
- journey rows reference the identifier of the Event actually matched
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable

from eventrecon.config import Tables
from eventrecon.executor import Executor
from eventrecon.grouping import index_by_natural_key
from eventrecon.identity import date_part, dominant_category, generate_class_id, generate_event_id
from eventrecon.model import (
    CLASS_FIELDS,
    EVENT_FIELDS,
    JOURNEY_FIELDS,
    REGISTRATION_FIELDS,
    ClassRecord,
    Event,
    Record,
    as_links,
    as_text,
)
from eventrecon.report import RunLog, RunStats
from eventrecon.store import PermissionDeniedError


def is_placeholder(record: Record) -> bool:
    """
    Placeholder rows reserve a class slot but carry no registration.
    """
    return not record.get(JOURNEY_FIELDS["registered_child"]) and not record.get(JOURNEY_FIELDS["parent_email"])


def _journey_key(record: Record) -> tuple[str, str] | None:
    school = as_text(record.get(JOURNEY_FIELDS["school_name"]))
    day = date_part(as_text(record.get(JOURNEY_FIELDS["booking_date"])))
    if not school or not day:
        return None
    return (school, day)


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def extract_snapshot(journey_records: Iterable[Record]) -> dict[str, Any]:
    """
    Build the extraction snapshot from legacy journey rows. Pure, no I/O.
    """
    rows = list(journey_records)

    first_row: dict[tuple[str, str], Record] = {}
    categories: dict[tuple[str, str], list[str]] = defaultdict(list)
    class_rows: dict[tuple[str, str, str], Record] = {}

    for rec in rows:
        key = _journey_key(rec)
        if key is None:
            continue
        first_row.setdefault(key, rec)
        categories[key].append(as_text(rec.get(JOURNEY_FIELDS["event_type"])))
        class_name = as_text(rec.get(JOURNEY_FIELDS["class_name"]))
        if class_name:
            class_rows.setdefault((key[0], key[1], class_name), rec)

    event_ids = {key: generate_event_id(key[0], dominant_category(categories[key]), key[1]) for key in first_row}

    events: list[dict[str, Any]] = []
    for key, rec in first_row.items():
        events.append(
            {
                "event_id": event_ids[key],
                "school_name": key[0],
                "event_date": key[1],
                "event_type": as_text(rec.get(JOURNEY_FIELDS["event_type"])),
                "assigned_staff": as_links(rec.get(JOURNEY_FIELDS["assigned_staff"])),
                "assigned_engineer": as_links(rec.get(JOURNEY_FIELDS["assigned_engineer"])),
                "legacy_booking_id": as_text(rec.get(JOURNEY_FIELDS["booking_id"])),
            }
        )

    classes: list[dict[str, Any]] = []
    for (school, day, class_name), rec in class_rows.items():
        classes.append(
            {
                "class_id": generate_class_id(school, day, class_name),
                "event_id": event_ids[(school, day)],
                "class_name": class_name,
                "main_teacher": as_text(rec.get(JOURNEY_FIELDS["main_teacher"])),
                "other_teachers": as_text(rec.get(JOURNEY_FIELDS["other_teachers"])),
                "total_children": _as_int(rec.get(JOURNEY_FIELDS["total_children"])),
                "legacy_booking_id": as_text(rec.get(JOURNEY_FIELDS["booking_id"])),
            }
        )

    registrations: list[dict[str, Any]] = []
    placeholders = 0
    for rec in rows:
        if is_placeholder(rec):
            placeholders += 1
            continue
        key = _journey_key(rec)
        class_name = as_text(rec.get(JOURNEY_FIELDS["class_name"]))
        registrations.append(
            {
                "event_id": event_ids[key] if key else "",
                "class_id": generate_class_id(key[0], key[1], class_name) if key and class_name else "",
                "parent_email": as_text(rec.get(JOURNEY_FIELDS["parent_email"])),
                "registered_child": as_text(rec.get(JOURNEY_FIELDS["registered_child"])),
                "legacy_record_id": rec.id,
            }
        )

    return {
        "events": events,
        "classes": classes,
        "registrations": registrations,
        "stats": {
            "total_records": len(rows),
            "placeholder_records": placeholders,
            "unique_events": len(events),
            "unique_classes": len(classes),
            "registrations": len(registrations),
        },
    }


def _event_fields(ev: dict[str, Any]) -> dict[str, Any]:
    fields = {
        EVENT_FIELDS["event_id"]: ev["event_id"],
        EVENT_FIELDS["school_name"]: ev["school_name"],
        EVENT_FIELDS["event_date"]: ev["event_date"],
        EVENT_FIELDS["event_type"]: ev["event_type"],
        EVENT_FIELDS["legacy_booking_id"]: ev["legacy_booking_id"],
    }
    # linked fields reject empty strings, only send them when set
    for name in ("assigned_staff", "assigned_engineer"):
        if ev.get(name):
            fields[EVENT_FIELDS[name]] = ev[name]
    return fields


def _class_fields(cls: dict[str, Any], event_record_id: str | None) -> dict[str, Any]:
    return {
        CLASS_FIELDS["class_id"]: cls["class_id"],
        CLASS_FIELDS["event_link"]: [event_record_id] if event_record_id else [],
        CLASS_FIELDS["class_name"]: cls["class_name"],
        CLASS_FIELDS["main_teacher"]: cls["main_teacher"],
        CLASS_FIELDS["other_teachers"]: cls["other_teachers"],
        CLASS_FIELDS["total_children"]: cls["total_children"],
        CLASS_FIELDS["legacy_booking_id"]: cls["legacy_booking_id"],
    }


class IdentityBackfill:
    def __init__(self, store: Any, executor: Executor, log: RunLog, stats: RunStats, tables: Tables) -> None:
        self.store = store
        self.executor = executor
        self.log = log
        self.stats = stats
        self.tables = tables
        self.booking_ids: dict[tuple[str, str], str] = {}

    def backfill_events(self, snapshot: dict[str, Any]) -> dict[str, str]:
        """
        Create missing Events. Returns canonical event id -> Events record id.

        Also records, per natural key, the identifier journey rows should
        carry: the one on the Event record that was matched or created.
        """
        events = [Event.from_record(r) for r in self.store.select_all(self.tables.events)]
        by_key = index_by_natural_key(events)

        record_for: dict[str, str] = {}
        to_create: list[dict[str, Any]] = []
        unnamed: list[tuple[str, dict[str, Any]]] = []
        for ev in snapshot["events"]:
            key = (ev["school_name"], ev["event_date"])
            existing = by_key.get(key)
            if not existing:
                to_create.append(ev)
                self.booking_ids[key] = ev["event_id"]
                continue
            match = next((e for e in existing if e.event_id == ev["event_id"]), existing[0])
            record_for[ev["event_id"]] = match.record_id
            if match.event_id:
                self.booking_ids[key] = match.event_id
                self.log.item("SKIP", f"Event {ev['school_name']} {ev['event_date']} present as {match.event_id}")
                self.stats.bump("events_skipped")
            else:
                self.booking_ids[key] = ev["event_id"]
                self.log.item("UPDATE", f"{self.tables.events} {match.record_id} event_id -> {ev['event_id']}")
                unnamed.append((match.record_id, {EVENT_FIELDS["event_id"]: ev["event_id"]}))

        if unnamed:
            self.executor.update(self.tables.events, unnamed)
            self.stats.bump("events_named", len(unnamed))

        if to_create:
            for ev in to_create:
                self.log.item("CREATE", f"Event {ev['event_id']}")
            created = self.executor.create(self.tables.events, [_event_fields(ev) for ev in to_create])
            for ev, rec in zip(to_create, created):
                record_for[ev["event_id"]] = rec.id
            self.stats.bump("events_created", len(created))

        return record_for

    def backfill_classes(self, snapshot: dict[str, Any], record_for: dict[str, str]) -> dict[str, str]:
        """
        Create missing Classes. Returns class id -> Classes record id.
        """
        classes = [ClassRecord.from_record(r) for r in self.store.select_all(self.tables.classes)]
        class_record_for = {c.class_id: c.record_id for c in classes if c.class_id}

        to_create: list[dict[str, Any]] = []
        for cls in snapshot["classes"]:
            if cls["class_id"] in class_record_for:
                self.log.item("SKIP", f"Class {cls['class_id']} present")
                self.stats.bump("classes_skipped")
                continue
            to_create.append(cls)

        if not to_create:
            return class_record_for
        for cls in to_create:
            self.log.item("CREATE", f"Class {cls['class_id']} -> {cls['event_id']}")
        created = self.executor.create(
            self.tables.classes,
            [_class_fields(cls, record_for.get(cls["event_id"])) for cls in to_create],
        )
        for cls, rec in zip(to_create, created):
            class_record_for[cls["class_id"]] = rec.id
        self.stats.bump("classes_created", len(created))
        return class_record_for

    def backfill_registrations(
        self, snapshot: dict[str, Any], record_for: dict[str, str], class_record_for: dict[str, str]
    ) -> None:
        """
        Create one Registration per non-placeholder journey row, keyed by the journey record id.
        """
        try:
            existing = list(self.store.select_all(self.tables.registrations, fields=[REGISTRATION_FIELDS["legacy_record"]]))
        except PermissionDeniedError:
            self.log.item("SKIP", f"registrations ({self.tables.registrations}): table not accessible")
            self.stats.skipped_dependents.append("registrations")
            return
        done = {as_text(r.get(REGISTRATION_FIELDS["legacy_record"])) for r in existing}

        to_create: list[dict[str, Any]] = []
        for reg in snapshot["registrations"]:
            if reg["legacy_record_id"] in done:
                self.stats.bump("registrations_skipped")
                continue
            fields: dict[str, Any] = {
                REGISTRATION_FIELDS["registered_child"]: reg["registered_child"],
                REGISTRATION_FIELDS["legacy_record"]: reg["legacy_record_id"],
            }
            if reg["event_id"] in record_for:
                fields[REGISTRATION_FIELDS["event_link"]] = [record_for[reg["event_id"]]]
            if reg["class_id"] in class_record_for:
                fields[REGISTRATION_FIELDS["class_link"]] = [class_record_for[reg["class_id"]]]
            self.log.item("CREATE", f"Registration for {self.tables.journey} {reg['legacy_record_id']}")
            to_create.append(fields)

        if to_create:
            created = self.executor.create(self.tables.registrations, to_create)
            self.stats.bump("registrations_created", len(created))

    def backfill_journey_ids(self, journey_records: Iterable[Record], snapshot: dict[str, Any]) -> None:
        """
        Fill booking_id / class_id on journey rows that do not have one yet.

        booking_id gets the identifier of the Event record backfill_events
        matched, so it always names an Event that exists.
        """
        event_ids = {(ev["school_name"], ev["event_date"]): ev["event_id"] for ev in snapshot["events"]}
        event_ids.update(self.booking_ids)

        updates: list[tuple[str, dict[str, Any]]] = []
        for rec in journey_records:
            key = _journey_key(rec)
            if key is None:
                continue
            fields: dict[str, Any] = {}
            if not as_text(rec.get(JOURNEY_FIELDS["booking_id"])):
                fields[JOURNEY_FIELDS["booking_id"]] = event_ids[key]
            class_name = as_text(rec.get(JOURNEY_FIELDS["class_name"]))
            if class_name and not as_text(rec.get(JOURNEY_FIELDS["class_id"])):
                fields[JOURNEY_FIELDS["class_id"]] = generate_class_id(key[0], key[1], class_name)
            if fields:
                self.log.item("UPDATE", f"{self.tables.journey} {rec.id} {sorted(fields)}")
                updates.append((rec.id, fields))

        if updates:
            self.executor.update(self.tables.journey, updates)
            self.stats.bump("journey_rows_updated", len(updates))

    def run(self, journey_records: list[Record], snapshot: dict[str, Any]) -> None:
        record_for = self.backfill_events(snapshot)
        class_record_for = self.backfill_classes(snapshot, record_for)
        self.backfill_registrations(snapshot, record_for, class_record_for)
        self.backfill_journey_ids(journey_records, snapshot)
