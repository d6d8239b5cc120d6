"""
Persistent run artifacts.

This module manages the files inside the data directory:

    <data_dir>/snapshot.json           extraction snapshot (written by backfill)
    <data_dir>/validation-report.json  validator output
    <data_dir>/run-summary.json        counters of the last run
    <data_dir>/rollback-report.json    deleted counts and journey checks of a rollback

Design rationale:
- the snapshot is written once, before any reconciliation, and later runs
  read it back to check counts and field values
- the report and summary are machine-readable copies of what the CLI prints
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


def _write_json(path: str | Path, payload: Any) -> Path:
    """
    Write `payload` as pretty JSON, creating parent directories if needed.
    """
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    return out


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def save_snapshot(snapshot: dict[str, Any], path: str | Path) -> Path:
    payload = dict(snapshot)
    payload.setdefault("created_at", utc_timestamp())
    return _write_json(path, payload)


def load_snapshot(path: str | Path) -> Optional[dict[str, Any]]:
    """
    Load the extraction snapshot.

    Returns None if the file does not exist or is not a valid snapshot;
    the validator reports that as an error instead of crashing.
    """
    snapshot_path = Path(path)
    if not snapshot_path.exists():
        return None

    try:
        data = json.loads(snapshot_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(data, dict) or not isinstance(data.get("stats"), dict):
        return None
    # normalize: every list section is present
    for section in ("events", "classes", "registrations"):
        if not isinstance(data.get(section), list):
            data[section] = []
    return data


def save_report(report: dict[str, Any], path: str | Path) -> Path:
    return _write_json(path, report)


def save_summary(summary: dict[str, Any], path: str | Path) -> Path:
    payload = dict(summary)
    payload.setdefault("finished_at", utc_timestamp())
    return _write_json(path, payload)
