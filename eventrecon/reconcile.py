"""
Reconciliation of duplicate Event groups.

For every DuplicateGroup:
1. choose the record to keep (canonical selection, see select_canonical)
2. relink every dependent record class from the superseded records to the kept one
3. rewrite the kept record's identifier (and fill its empty attributes)
4. delete the superseded records

Important rules (DO NOT CHANGE):
- nothing is deleted unless every dependent class was relinked first
- a failing group is logged, counted and left untouched; the run continues
- all mutations go through the injected Executor, so dry-run and live runs
  make the same decisions from the same input
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from eventrecon.config import Tables
from eventrecon.executor import Executor
from eventrecon.model import (
    CLASS_FIELDS,
    EVENT_FIELDS,
    EVENT_MERGE_FIELDS,
    JOURNEY_FIELDS,
    ORDER_FIELDS,
    REGISTRATION_FIELDS,
    DuplicateGroup,
    Event,
    Record,
    as_links,
    as_text,
    is_empty,
)
from eventrecon.report import RunLog, RunStats
from eventrecon.store import PermissionDeniedError, StoreError


@dataclass(frozen=True)
class Dependent:
    """
    A table whose records point at Events.

    by_link=True  -> `field` is a linked-record list of Event record ids
    by_link=False -> `field` holds a text copy of the Event identifier
    """

    name: str
    table: str
    field: str
    by_link: bool
    optional: bool = False


def default_dependents(tables: Tables) -> list[Dependent]:
    return [
        Dependent("classes", tables.classes, CLASS_FIELDS["event_link"], by_link=True),
        Dependent("registrations", tables.registrations, REGISTRATION_FIELDS["event_link"], by_link=True, optional=True),
        Dependent("parent_journey", tables.journey, JOURNEY_FIELDS["booking_id"], by_link=False),
        Dependent("orders", tables.orders, ORDER_FIELDS["booking_id"], by_link=False, optional=True),
    ]


class DependentIndex:
    """
    Reference -> record ids for one dependent table, kept current while relinking.
    """

    def __init__(self, dependent: Dependent, records: Iterable[Record]) -> None:
        self.dependent = dependent
        self.values: dict[str, Any] = {}
        self.refs: dict[str, dict[str, None]] = defaultdict(dict)
        for rec in records:
            self._add(rec.id, rec.get(dependent.field))

    def _refs_of(self, value: Any) -> list[str]:
        if self.dependent.by_link:
            return as_links(value)
        text = as_text(value)
        return [text] if text else []

    def _add(self, record_id: str, value: Any) -> None:
        self.values[record_id] = value
        for ref in self._refs_of(value):
            self.refs[ref][record_id] = None

    def _remove(self, record_id: str) -> None:
        for ref in self._refs_of(self.values.pop(record_id, None)):
            self.refs.get(ref, {}).pop(record_id, None)

    def referencing(self, refs: Iterable[str]) -> list[str]:
        hits: set[str] = set()
        for ref in refs:
            hits.update(self.refs.get(ref, {}))
        # source order, so repeated runs issue identical update batches
        return [rid for rid in self.values if rid in hits]

    def plan(self, old_refs: Iterable[str], new_ref: str) -> list[tuple[str, Any]]:
        """
        Return [(record_id, new field value)] for every record referencing one of `old_refs`.
        """
        old = set(old_refs)
        planned: list[tuple[str, Any]] = []
        for rid in self.referencing(old):
            if self.dependent.by_link:
                links: list[str] = []
                for link in as_links(self.values[rid]):
                    target = new_ref if link in old else link
                    if target not in links:
                        links.append(target)
                planned.append((rid, links))
            else:
                planned.append((rid, new_ref))
        return planned

    def apply(self, updates: Iterable[tuple[str, Any]]) -> None:
        for rid, value in updates:
            self._remove(rid)
            self._add(rid, value)


@dataclass
class ReconcileResult:
    natural_key: tuple[str, str]
    canonical_id: str
    kept: str
    superseded: list[str]
    rewritten: bool
    relinked: dict[str, int] = field(default_factory=dict)
    deleted: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def decision(self) -> dict[str, Any]:
        """
        The keep/supersede/relink decision, independent of whether it was executed.
        """
        return {
            "natural_key": list(self.natural_key),
            "canonical_id": self.canonical_id,
            "kept": self.kept,
            "superseded": list(self.superseded),
            "rewritten": self.rewritten,
            "relinked": dict(self.relinked),
        }

    def to_dict(self) -> dict[str, Any]:
        out = self.decision()
        out["deleted"] = list(self.deleted)
        out["error"] = self.error
        return out


def select_canonical(group: DuplicateGroup) -> tuple[Event, list[Event]]:
    """
    Pick the record to keep.

    1. a member already carrying the canonical identifier
    2. otherwise the first member in source order (its identifier gets rewritten)

    Rule 2 is a product policy, not an engineering necessity: with three or
    more divergent members "first" is as good as "newest" or "most complete".
    """
    kept = next((m for m in group.members if m.event_id == group.canonical_id), group.members[0])
    superseded = [m for m in group.members if m is not kept]
    return kept, superseded


class Reconciler:
    def __init__(
        self,
        store: Any,
        executor: Executor,
        log: RunLog,
        stats: RunStats,
        *,
        events_table: str,
        dependents: list[Dependent],
    ) -> None:
        self.store = store
        self.executor = executor
        self.log = log
        self.stats = stats
        self.events_table = events_table
        self.dependents = dependents
        self.indexes: dict[str, DependentIndex] = {}
        self.skipped: set[str] = set()

    # -- setup --------------------------------------------------------------

    def _skip(self, dep: Dependent, reason: str) -> None:
        self.skipped.add(dep.name)
        self.stats.skipped_dependents.append(dep.name)
        self.log.item("SKIP", f"{dep.name} ({dep.table}): {reason}, not relinked for the rest of this run")

    def load_dependents(self) -> None:
        """
        Read every dependent table once. Optional tables that are not accessible are skipped.
        """
        for dep in self.dependents:
            try:
                records = list(self.store.select_all(dep.table, fields=[dep.field]))
            except PermissionDeniedError:
                if not dep.optional:
                    raise
                self._skip(dep, "table not accessible")
                continue
            self.indexes[dep.name] = DependentIndex(dep, records)
            self.log.info(f"Loaded {len(records)} {dep.name} records")

    # -- per group ----------------------------------------------------------

    def _kept_fields(self, kept: Event, superseded: list[Event], canonical_id: str) -> dict[str, Any]:
        fields: dict[str, Any] = {}
        if kept.event_id != canonical_id:
            fields[EVENT_FIELDS["event_id"]] = canonical_id
        for name in EVENT_MERGE_FIELDS:
            field_name = EVENT_FIELDS[name]
            if not is_empty(kept.raw.get(field_name)):
                continue
            for other in superseded:
                value = other.raw.get(field_name)
                if not is_empty(value):
                    fields[field_name] = value
                    break
        return fields

    def _relink(self, dep: Dependent, index: DependentIndex, old_refs: list[str], new_ref: str) -> int:
        updates = index.plan(old_refs, new_ref)
        if not updates:
            return 0
        for rid, _ in updates:
            self.log.item("RELINK", f"{dep.table} {rid} -> {new_ref}")
        self.executor.update(dep.table, [(rid, {dep.field: value}) for rid, value in updates])
        index.apply(updates)
        return len(updates)

    def reconcile(self, group: DuplicateGroup) -> ReconcileResult:
        kept, superseded = select_canonical(group)
        canonical_id = group.canonical_id
        result = ReconcileResult(
            natural_key=group.natural_key,
            canonical_id=canonical_id,
            kept=kept.record_id,
            superseded=[m.record_id for m in superseded],
            rewritten=kept.event_id != canonical_id,
        )

        school_name, event_date = group.natural_key
        self.log.info(f"School: {school_name} | Date: {event_date} | canonical: {canonical_id}")
        for member in group.members:
            marker = "keep" if member is kept else "supersede"
            self.log.info(f"  - {member.event_id or '(no id)'} ({member.record_id}) -> {marker}")

        # identifiers that must disappear, including the kept record's own old id
        old_ids = [eid for eid in group.distinct_ids if eid and eid != canonical_id]
        old_records = [m.record_id for m in superseded]

        try:
            for dep in self.dependents:
                index = self.indexes.get(dep.name)
                if dep.name in self.skipped or index is None:
                    continue
                old_refs = old_records if dep.by_link else old_ids
                new_ref = kept.record_id if dep.by_link else canonical_id
                try:
                    count = self._relink(dep, index, old_refs, new_ref)
                except PermissionDeniedError:
                    if not dep.optional:
                        raise
                    self._skip(dep, "permission denied on update")
                    continue
                result.relinked[dep.name] = count
                self.stats.relinked[dep.name] += count

            kept_fields = self._kept_fields(kept, superseded, canonical_id)
            if kept_fields:
                self.log.item("UPDATE", f"{self.events_table} {kept.record_id} {sorted(kept_fields)}")
                self.executor.update(self.events_table, [(kept.record_id, kept_fields)])
                if result.rewritten:
                    self.stats.bump("events_rewritten")

            if old_records:
                for rid in old_records:
                    self.log.item("DELETE", f"{self.events_table} {rid}")
                self.executor.delete(self.events_table, old_records)
                result.deleted = list(old_records)
                self.stats.bump("events_deleted", len(old_records))

            self.stats.bump("groups_processed")
        except StoreError as exc:
            result.error = str(exc)
            self.log.item("ERROR", f"{school_name} {event_date}: {exc} (superseded records kept)")
            self.stats.error(f"{school_name}|{event_date}: {exc}")
            self.stats.bump("groups_errored")

        return result

    def reconcile_all(self, groups: list[DuplicateGroup]) -> list[ReconcileResult]:
        results: list[ReconcileResult] = []
        for group in groups:
            self.log.info("-" * 40)
            results.append(self.reconcile(group))
        return results
