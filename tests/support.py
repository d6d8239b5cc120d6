"""
In-memory record store used by the tests.

Implements the same interface as eventrecon.store.AirtableClient
(select_all / create_many / update_many / delete_many) and can simulate:
- tables that are not accessible (403 on read or on update)
- tables whose updates fail with a generic store error
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from eventrecon.config import Settings, Tables
from eventrecon.model import Record
from eventrecon.store import PermissionDeniedError, StoreError


class MemoryStore:
    def __init__(self, tables: Optional[dict[str, list[dict[str, Any]]]] = None) -> None:
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.denied_reads: set[str] = set()
        self.denied_updates: set[str] = set()
        self.failing_updates: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self._next = 0
        for table, rows in (tables or {}).items():
            self.add(table, rows)

    # -- setup helpers ------------------------------------------------------

    def add(self, table: str, rows: Iterable[dict[str, Any]]) -> list[str]:
        """
        Insert rows; a row may carry its own "id", everything else is a field.
        """
        ids: list[str] = []
        bucket = self.tables.setdefault(table, {})
        for row in rows:
            fields = dict(row)
            rid = fields.pop("id", None) or self._new_id()
            bucket[rid] = fields
            ids.append(rid)
        return ids

    def _new_id(self) -> str:
        self._next += 1
        return f"recNEW{self._next:04d}"

    def rows(self, table: str) -> dict[str, dict[str, Any]]:
        return self.tables.get(table, {})

    def fields_of(self, table: str, record_id: str) -> dict[str, Any]:
        return self.tables[table][record_id]

    # -- client interface ---------------------------------------------------

    def select_all(self, table: str, fields: Optional[Iterable[str]] = None) -> list[Record]:
        self.calls.append(("select", table))
        if table in self.denied_reads:
            raise PermissionDeniedError(f"GET {table}: permission denied", table=table)
        wanted = list(fields) if fields else None
        out: list[Record] = []
        for rid, row in self.rows(table).items():
            data = {k: v for k, v in row.items() if wanted is None or k in wanted}
            out.append(Record(id=rid, fields=_copy(data)))
        return out

    def create_many(self, table: str, records: Sequence[dict[str, Any]]) -> list[Record]:
        self.calls.append(("create", table))
        created: list[Record] = []
        for fields in records:
            rid = self.add(table, [_copy(fields)])[0]
            created.append(Record(id=rid, fields=_copy(fields)))
        return created

    def update_many(self, table: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        self.calls.append(("update", table))
        if table in self.denied_updates:
            raise PermissionDeniedError(f"PATCH {table}: permission denied", table=table)
        if table in self.failing_updates:
            raise StoreError(f"PATCH {table}: HTTP 422 simulated failure")
        for rid, fields in updates:
            if rid not in self.rows(table):
                raise StoreError(f"PATCH {table}: record {rid} not found")
            self.tables[table][rid].update(_copy(fields))

    def delete_many(self, table: str, ids: Sequence[str]) -> None:
        self.calls.append(("delete", table))
        for rid in ids:
            if self.rows(table).pop(rid, None) is None:
                raise StoreError(f"DELETE {table}: record {rid} not found")


def _copy(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: list(v) if isinstance(v, list) else v for k, v in fields.items()}


def make_settings(data_dir: Any) -> Settings:
    return Settings(api_key="key", base_id="appTEST", tables=Tables(), data_dir=data_dir)
