"""
Executors: the single place where store mutations happen.

A run picks one executor up front:
- LiveExecutor forwards create/update/delete to the record store client
- DryRunExecutor performs nothing and hands back placeholder records

Both record every call in `mutations`, so a dry run and a live run over
the same input can be compared call by call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from eventrecon.model import Record


@dataclass
class Mutation:
    action: str  # "create" | "update" | "delete"
    table: str
    record_ids: list[str] = field(default_factory=list)
    fields: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "table": self.table, "record_ids": self.record_ids, "fields": self.fields}


class Executor:
    """
    Strategy interface for store mutations.
    """

    def __init__(self) -> None:
        self.mutations: list[Mutation] = []

    def create(self, table: str, records: Sequence[dict[str, Any]]) -> list[Record]:
        created = self._create(table, records)
        self.mutations.append(Mutation("create", table, [], [dict(r) for r in records]))
        return created

    def update(self, table: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        self._update(table, updates)
        self.mutations.append(Mutation("update", table, [rid for rid, _ in updates], [dict(f) for _, f in updates]))

    def delete(self, table: str, ids: Sequence[str]) -> None:
        self._delete(table, ids)
        self.mutations.append(Mutation("delete", table, list(ids), []))

    def _create(self, table: str, records: Sequence[dict[str, Any]]) -> list[Record]:
        raise NotImplementedError

    def _update(self, table: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        raise NotImplementedError

    def _delete(self, table: str, ids: Sequence[str]) -> None:
        raise NotImplementedError


class LiveExecutor(Executor):
    def __init__(self, store: Any) -> None:
        super().__init__()
        self.store = store

    def _create(self, table: str, records: Sequence[dict[str, Any]]) -> list[Record]:
        return self.store.create_many(table, records)

    def _update(self, table: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        self.store.update_many(table, updates)

    def _delete(self, table: str, ids: Sequence[str]) -> None:
        self.store.delete_many(table, ids)


class DryRunExecutor(Executor):
    def __init__(self) -> None:
        super().__init__()
        self._counter = 0

    def _create(self, table: str, records: Sequence[dict[str, Any]]) -> list[Record]:
        created: list[Record] = []
        for fields in records:
            self._counter += 1
            created.append(Record(id=f"dry-run-{self._counter}", fields=dict(fields)))
        return created

    def _update(self, table: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        return None

    def _delete(self, table: str, ids: Sequence[str]) -> None:
        return None
