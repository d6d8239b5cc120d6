"""
Record store client (Airtable REST API, v0).

The engine only needs a narrow interface:

    iter_pages / select_all   -> lazy iteration over records
    create_many               -> created records
    update_many / delete_many -> None (raise on failure)

Notes:
- list calls are paginated by the server; the client follows the `offset`
  cursor and yields one page at a time, so callers drive pagination with a
  plain for-loop
- mutation calls accept any number of records and are chunked into batches
  of MAX_BATCH (external limit of the store)
- 403 on a table is raised as PermissionDeniedError so callers can decide
  whether that table is optional
"""

from __future__ import annotations

import time
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence

import requests

from eventrecon.model import Record


API_URL = "https://api.airtable.com/v0"

MAX_BATCH = 10
PAGE_SIZE = 100


class StoreError(RuntimeError):
    """Base error for record store failures."""


class AuthenticationError(StoreError):
    """Raised when the API key is rejected (401)."""


class PermissionDeniedError(StoreError):
    """Raised when a specific table is not accessible with the current token (403)."""

    def __init__(self, message: str, *, table: str) -> None:
        super().__init__(message)
        self.table = table


class RateLimitError(StoreError):
    """Raised when the store keeps answering 429 after all retries."""


# ---------------------------------------------------------------------------
# Filter formulas
# ---------------------------------------------------------------------------


def _quote(value: Any) -> str:
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def field_equals(name: str, value: Any) -> str:
    return f"{{{name}}} = {_quote(value)}"


def field_contains(name: str, value: Any) -> str:
    # FIND() returns 0 when the needle is absent
    return f"FIND({_quote(value)}, {{{name}}}) > 0"


def all_of(*clauses: str) -> str:
    return f"AND({', '.join(clauses)})"


def any_of(*clauses: str) -> str:
    return f"OR({', '.join(clauses)})"


def chunked(items: Sequence[Any], size: int = MAX_BATCH) -> Iterator[Sequence[Any]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class AirtableClient:
    """
    Small REST client with cursor pagination, batch chunking and 429 retries.
    """

    DEFAULT_TIMEOUT = 30.0
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RATE_LIMIT_WAIT = 30.0

    def __init__(
        self,
        api_key: str,
        base_id: str,
        *,
        session: Optional[requests.Session] = None,
        api_url: str = API_URL,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        rate_limit_wait: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = f"{api_url.rstrip('/')}/{base_id}"
        self.timeout = timeout if timeout is not None else self.DEFAULT_TIMEOUT
        self.max_retries = max_retries if max_retries is not None else self.DEFAULT_MAX_RETRIES
        self.rate_limit_wait = rate_limit_wait if rate_limit_wait is not None else self.DEFAULT_RATE_LIMIT_WAIT
        self._sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    # -- reads --------------------------------------------------------------

    def iter_pages(
        self,
        table: str,
        *,
        fields: Optional[Iterable[str]] = None,
        formula: Optional[str] = None,
        page_size: int = PAGE_SIZE,
    ) -> Iterator[list[Record]]:
        """
        Yield one page of records at a time until the server stops returning an offset.

        The generator is lazy and not restartable: call again to re-read.
        """
        params: dict[str, Any] = {"pageSize": page_size}
        if fields:
            params["fields[]"] = list(fields)
        if formula:
            params["filterByFormula"] = formula

        offset: Optional[str] = None
        while True:
            page_params = dict(params)
            if offset:
                page_params["offset"] = offset
            payload = self._request("GET", table, params=page_params)
            yield [Record.from_api(r) for r in payload.get("records", [])]
            offset = payload.get("offset")
            if not offset:
                break

    def select(
        self,
        table: str,
        *,
        fields: Optional[Iterable[str]] = None,
        formula: Optional[str] = None,
    ) -> Iterator[Record]:
        for page in self.iter_pages(table, fields=fields, formula=formula):
            yield from page

    def select_all(self, table: str, fields: Optional[Iterable[str]] = None) -> Iterator[Record]:
        return self.select(table, fields=fields)

    # -- writes -------------------------------------------------------------

    def create_many(self, table: str, records: Sequence[dict[str, Any]]) -> list[Record]:
        created: list[Record] = []
        for batch in chunked(list(records)):
            payload = self._request("POST", table, json={"records": [{"fields": f} for f in batch]})
            created.extend(Record.from_api(r) for r in payload.get("records", []))
        return created

    def update_many(self, table: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        for batch in chunked(list(updates)):
            body = {"records": [{"id": rid, "fields": f} for rid, f in batch]}
            self._request("PATCH", table, json=body)

    def delete_many(self, table: str, ids: Sequence[str]) -> None:
        for batch in chunked(list(ids)):
            self._request("DELETE", table, params={"records[]": list(batch)})

    # -- transport ----------------------------------------------------------

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        url = f"{self.base_url}/{table}"
        attempt = 0
        while True:
            try:
                resp = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
            except requests.RequestException as exc:
                raise StoreError(f"{method} {table} failed: {exc}") from exc

            if resp.status_code == 429:
                if attempt >= self.max_retries:
                    raise RateLimitError(f"{method} {table}: rate limited after {attempt} retries")
                attempt += 1
                self._sleep(self.rate_limit_wait)
                continue

            if resp.status_code == 401:
                raise AuthenticationError(f"{method} {table}: API key rejected")
            if resp.status_code == 403:
                raise PermissionDeniedError(f"{method} {table}: permission denied", table=table)
            if resp.status_code >= 400:
                raise StoreError(f"{method} {table}: HTTP {resp.status_code} {_error_message(resp)}")

            try:
                return resp.json()
            except ValueError as exc:
                raise StoreError(f"{method} {table}: invalid JSON response") from exc


def _error_message(resp: requests.Response) -> str:
    try:
        err = resp.json().get("error")
    except ValueError:
        return resp.text[:200]
    if isinstance(err, dict):
        return str(err.get("message") or err.get("type") or "")
    return str(err or "")
