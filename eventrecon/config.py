"""
Runtime configuration.

Resolution order for every setting:
  1. variables already set in the environment
  2. `.env.local`, then `.env` in the working directory (python-dotenv)
  3. defaults below

Credentials have no default: a missing key or base id is a setup error and
the run must stop before touching the store.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


DEFAULT_DATA_DIR = "migration-data"
DEFAULT_TIMEOUT = 30.0


class ConfigError(RuntimeError):
    """Raised when required settings are missing or invalid."""


@dataclass(frozen=True)
class Tables:
    events: str = "Events"
    classes: str = "Classes"
    journey: str = "parent_journey_table"
    orders: str = "Orders"
    registrations: str = "Registrations"


@dataclass(frozen=True)
class Settings:
    api_key: str
    base_id: str
    tables: Tables = field(default_factory=Tables)
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    timeout: float = DEFAULT_TIMEOUT

    @property
    def snapshot_path(self) -> Path:
        return self.data_dir / "snapshot.json"

    @property
    def report_path(self) -> Path:
        return self.data_dir / "validation-report.json"

    @property
    def rollback_path(self) -> Path:
        return self.data_dir / "rollback-report.json"

    @property
    def summary_path(self) -> Path:
        return self.data_dir / "run-summary.json"


def load_env_files(directory: Optional[Path] = None) -> None:
    """
    Load .env.local and .env into os.environ. Existing env vars take precedence.
    """
    base = directory or Path.cwd()
    for name in (".env.local", ".env"):
        path = base / name
        if path.exists():
            load_dotenv(path, override=False)


def load_settings(env: Optional[Mapping[str, str]] = None, data_dir: Optional[str | Path] = None) -> Settings:
    """
    Build Settings from `env` (defaults to os.environ after loading .env files).
    """
    if env is None:
        load_env_files()
        env = os.environ

    api_key = (env.get("AIRTABLE_API_KEY") or env.get("AIRTABLE_PAT") or "").strip()
    base_id = (env.get("AIRTABLE_BASE_ID") or "").strip()
    if not api_key or not base_id:
        raise ConfigError("Missing AIRTABLE_API_KEY (or AIRTABLE_PAT) or AIRTABLE_BASE_ID environment variables")

    defaults = Tables()
    tables = Tables(
        events=env.get("EVENTS_TABLE_ID") or defaults.events,
        classes=env.get("CLASSES_TABLE_ID") or defaults.classes,
        journey=env.get("PARENT_JOURNEY_TABLE_ID") or defaults.journey,
        orders=env.get("ORDERS_TABLE_ID") or defaults.orders,
        registrations=env.get("REGISTRATIONS_TABLE_ID") or defaults.registrations,
    )

    raw_timeout = env.get("EVENTRECON_TIMEOUT") or str(DEFAULT_TIMEOUT)
    try:
        timeout = float(raw_timeout)
    except ValueError:
        raise ConfigError(f"EVENTRECON_TIMEOUT must be a number, got {raw_timeout!r}") from None

    resolved_dir = Path(data_dir) if data_dir is not None else Path(env.get("EVENTRECON_DATA_DIR") or DEFAULT_DATA_DIR)

    return Settings(api_key=api_key, base_id=base_id, tables=tables, data_dir=resolved_dir, timeout=timeout)
