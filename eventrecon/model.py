"""
Central data model definitions used across the project.

The record store hands back generic records ({id, fields}). This module
defines:
- the field names of every table the engine reads or writes
- a thin Record wrapper around one store row
- typed views (Event, ClassRecord) used by grouping and reconciliation
- DuplicateGroup, the transient result of grouping (never persisted)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from eventrecon.identity import date_part


# ---------------------------------------------------------------------------
# Field names (referenced by name, not by field id)
# ---------------------------------------------------------------------------

EVENT_FIELDS = {
    "event_id": "event_id",
    "school_name": "school_name",
    "event_date": "event_date",
    "event_type": "event_type",
    "assigned_staff": "assigned_staff",
    "assigned_engineer": "assigned_engineer",
    "simplybook_booking": "simplybook_booking",
    "legacy_booking_id": "legacy_booking_id",
}

CLASS_FIELDS = {
    "class_id": "class_id",
    "event_link": "event_id",  # linked record -> Events
    "class_name": "class_name",
    "main_teacher": "main_teacher",
    "other_teachers": "other_teachers",
    "total_children": "total_children",
    "legacy_booking_id": "legacy_booking_id",
}

JOURNEY_FIELDS = {
    "booking_id": "booking_id",
    "school_name": "school_name",
    "booking_date": "booking_date",
    "event_type": "event_type",
    "class_name": "class",
    "class_id": "class_id",
    "main_teacher": "main_teacher",
    "other_teachers": "other_teachers",
    "total_children": "total_children",
    "registered_child": "registered_child",
    "parent_email": "parent_email",
    "assigned_staff": "assigned_staff",
    "assigned_engineer": "assigned_engineer",
}

ORDER_FIELDS = {
    "booking_id": "booking_id",
}

REGISTRATION_FIELDS = {
    "event_link": "event_id",  # linked record -> Events
    "class_link": "class_id",  # linked record -> Classes
    "parent_link": "parent_id",  # linked record -> Parents
    "registered_child": "registered_child",
    "legacy_record": "legacy_record",  # journey row the registration came from
    "registration_date": "registration_date",
}

# Event attributes copied onto the kept record when it is empty there.
EVENT_MERGE_FIELDS = (
    "event_type",
    "assigned_staff",
    "assigned_engineer",
    "simplybook_booking",
    "legacy_booking_id",
)


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def as_links(value: Any) -> list[str]:
    """
    Linked-record fields come back as a list of record ids (or are absent).
    """
    if isinstance(value, list):
        return [str(x) for x in value if x]
    if isinstance(value, str) and value:
        return [value]
    return []


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        # lookup fields arrive as single-element lists
        return str(value[0]).strip() if value else ""
    return str(value).strip()


@dataclass
class Record:
    """
    One row of a store table.
    """

    id: str
    fields: dict[str, Any] = field(default_factory=dict)

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "Record":
        return cls(id=str(payload.get("id", "")), fields=dict(payload.get("fields") or {}))


@dataclass
class Event:
    """
    Represents one school's one booking occasion (a row of the Events table).
    """

    record_id: str
    event_id: str
    school_name: str
    event_date: str
    event_type: str
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Record) -> "Event":
        return cls(
            record_id=record.id,
            event_id=as_text(record.get(EVENT_FIELDS["event_id"])),
            school_name=as_text(record.get(EVENT_FIELDS["school_name"])),
            event_date=as_text(record.get(EVENT_FIELDS["event_date"])),
            event_type=as_text(record.get(EVENT_FIELDS["event_type"])),
            raw=dict(record.fields),
        )

    @property
    def natural_key(self) -> Optional[tuple[str, str]]:
        """
        (school name, event date) or None if either part is missing.

        The event category is not part of the key.
        """
        day = date_part(self.event_date)
        if not self.school_name or not day:
            return None
        return (self.school_name, day)


@dataclass
class ClassRecord:
    """
    Represents one roster/group within an Event (a row of the Classes table).
    """

    record_id: str
    class_id: str
    class_name: str
    event_links: list[str]

    @classmethod
    def from_record(cls, record: Record) -> "ClassRecord":
        return cls(
            record_id=record.id,
            class_id=as_text(record.get(CLASS_FIELDS["class_id"])),
            class_name=as_text(record.get(CLASS_FIELDS["class_name"])),
            event_links=as_links(record.get(CLASS_FIELDS["event_link"])),
        )


@dataclass
class DuplicateGroup:
    """
    Events sharing one natural key, in source order, plus the id they should converge to.
    """

    natural_key: tuple[str, str]
    members: list[Event]
    canonical_id: str

    @property
    def distinct_ids(self) -> list[str]:
        seen: list[str] = []
        for ev in self.members:
            if ev.event_id not in seen:
                seen.append(ev.event_id)
        return seen
