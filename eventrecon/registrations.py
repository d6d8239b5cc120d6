"""
Cleanup of duplicate Registrations.

A child signed up twice by the same parent for the same Event leaves two
Registration rows. For every (event, child, parent) with more than one row
the earliest registration is kept and the others are deleted.

Rules:
- child names compare case-insensitively, surrounding whitespace ignored
- rows without an Event link or a child name are never grouped
- a row without registration_date counts as the earliest
- rows created by the backfill (legacy_record set) mirror a journey row and
  are never deleted here; the next backfill would only recreate them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from eventrecon.config import Tables
from eventrecon.executor import Executor
from eventrecon.model import REGISTRATION_FIELDS, Record, as_links, as_text
from eventrecon.report import RunLog, RunStats


RegistrationKey = tuple[str, str, str]


def registration_key(record: Record) -> Optional[RegistrationKey]:
    events = as_links(record.get(REGISTRATION_FIELDS["event_link"]))
    child = as_text(record.get(REGISTRATION_FIELDS["registered_child"])).lower()
    if not events or not child:
        return None
    parents = as_links(record.get(REGISTRATION_FIELDS["parent_link"]))
    return (events[0], child, parents[0] if parents else "")


def registered_at(record: Record) -> str:
    return as_text(record.get(REGISTRATION_FIELDS["registration_date"]))


def is_backfilled(record: Record) -> bool:
    return bool(as_text(record.get(REGISTRATION_FIELDS["legacy_record"])))


@dataclass
class RegistrationGroup:
    key: RegistrationKey
    kept: Record
    duplicates: list[Record] = field(default_factory=list)
    protected: list[Record] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        event, child, parent = self.key
        return {
            "event": event,
            "child": child,
            "parent": parent,
            "kept": self.kept.id,
            "deleted": [r.id for r in self.duplicates],
            "protected": [r.id for r in self.protected],
        }


def find_duplicate_registrations(records: Iterable[Record]) -> list[RegistrationGroup]:
    buckets: dict[RegistrationKey, list[Record]] = {}
    for rec in records:
        key = registration_key(rec)
        if key is not None:
            buckets.setdefault(key, []).append(rec)

    groups: list[RegistrationGroup] = []
    for key, members in buckets.items():
        if len(members) < 2:
            continue
        # sorted() is stable, so equal dates keep source order
        ordered = sorted(members, key=registered_at)
        group = RegistrationGroup(key=key, kept=ordered[0])
        for rec in ordered[1:]:
            (group.protected if is_backfilled(rec) else group.duplicates).append(rec)
        groups.append(group)
    return groups


def dedupe_registrations(
    store: Any, executor: Executor, log: RunLog, stats: RunStats, tables: Tables
) -> list[RegistrationGroup]:
    records = list(store.select_all(tables.registrations))
    groups = find_duplicate_registrations(records)
    log.info(f"Loaded {len(records)} Registrations, {len(groups)} child(ren) registered more than once")
    stats.bump("registration_groups", len(groups))

    to_delete: list[str] = []
    for group in groups:
        _, child, parent = group.key
        log.info(f"Child {child!r} parent {parent or '(none)'}: keep {group.kept.id} ({registered_at(group.kept) or 'unknown'})")
        for rec in group.protected:
            log.item("SKIP", f"{tables.registrations} {rec.id} came from {as_text(rec.get(REGISTRATION_FIELDS['legacy_record']))}")
        for rec in group.duplicates:
            log.item("DELETE", f"{tables.registrations} {rec.id} ({registered_at(rec) or 'unknown'})")
            to_delete.append(rec.id)
        stats.bump("registrations_protected", len(group.protected))

    if to_delete:
        executor.delete(tables.registrations, to_delete)
        stats.bump("registrations_deleted", len(to_delete))
    return groups
