"""
Natural-key grouping of Events.

Given events loaded from the store, find groups that share the same natural
key (school name, event date) and therefore describe one physical event.

Rules:
- keys are compared exactly; there is no fuzzy or partial matching
- events without school name or date have no key and are never grouped
- source order is preserved inside every group (reconciliation depends on it)
- when a snapshot assigned an identifier to a key, that identifier is the
  canonical one; otherwise it is derived from the members' categories
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Iterable, Mapping, Optional

from eventrecon.identity import date_part, dominant_category, generate_event_id
from eventrecon.model import DuplicateGroup, Event


NaturalKey = tuple[str, str]


def natural_key(event: Event) -> Optional[NaturalKey]:
    return event.natural_key


def index_by_natural_key(events: Iterable[Event]) -> dict[NaturalKey, list[Event]]:
    """
    Build key -> [events] for all events that have a natural key.
    """
    index: dict[NaturalKey, list[Event]] = defaultdict(list)
    for ev in events:
        key = natural_key(ev)
        if key is not None:
            index[key].append(ev)
    return dict(index)


def targets_from_snapshot(snapshot: Optional[dict[str, Any]]) -> dict[NaturalKey, str]:
    """
    Natural key -> event identifier the backfill stamped on journey rows.
    """
    if not snapshot:
        return {}
    targets: dict[NaturalKey, str] = {}
    for ev in snapshot.get("events", []):
        school_name = ev.get("school_name") or ""
        day = date_part(ev.get("event_date"))
        if school_name and day and ev.get("event_id"):
            targets[(school_name, day)] = ev["event_id"]
    return targets


def group_category(members: list[Event]) -> str:
    return dominant_category(ev.event_type for ev in members)


def canonical_event_id(
    key: NaturalKey, members: list[Event], targets: Optional[Mapping[NaturalKey, str]] = None
) -> str:
    if targets and key in targets:
        return targets[key]
    school_name, event_date = key
    return generate_event_id(school_name, group_category(members), event_date)


def find_duplicate_groups(
    events: Iterable[Event], targets: Optional[Mapping[NaturalKey, str]] = None
) -> list[DuplicateGroup]:
    """
    Return one DuplicateGroup per natural key that has more than one Event record.
    """
    groups: list[DuplicateGroup] = []
    for key, members in index_by_natural_key(events).items():
        if len(members) < 2:
            continue
        groups.append(
            DuplicateGroup(natural_key=key, members=members, canonical_id=canonical_event_id(key, members, targets))
        )
    return groups


def find_stale_identifiers(
    events: Iterable[Event], targets: Optional[Mapping[NaturalKey, str]] = None
) -> list[DuplicateGroup]:
    """
    Single-member groups for Events that are alone on their key but carry a
    missing or non-canonical identifier. Reconciling them only rewrites the
    identifier and the text references to it.
    """
    stale: list[DuplicateGroup] = []
    for key, members in index_by_natural_key(events).items():
        if len(members) != 1:
            continue
        canonical_id = canonical_event_id(key, members, targets)
        if members[0].event_id != canonical_id:
            stale.append(DuplicateGroup(natural_key=key, members=members, canonical_id=canonical_id))
    return stale
