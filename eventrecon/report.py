"""
Run output: per-item log lines and the final tally.

Every phase prints one line per decision so an operator can audit a run:

    SKIP   Event evt_... already present
    UPDATE Classes rec123 -> recKEEP
    [DRY RUN] DELETE Events recOLD

Every dry-run line carries the "[DRY RUN] " prefix.
"""

from __future__ import annotations

import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, TextIO


DRY_RUN_PREFIX = "[DRY RUN] "

ACTIONS = ("SKIP", "CREATE", "UPDATE", "RELINK", "DELETE", "WARN", "ERROR")


class RunLog:
    def __init__(self, dry_run: bool = False, stream: TextIO | None = None) -> None:
        self.dry_run = dry_run
        self.stream = stream
        self.lines: list[str] = []

    def _emit(self, text: str) -> None:
        line = f"{DRY_RUN_PREFIX}{text}" if self.dry_run else text
        self.lines.append(line)
        print(line, file=self.stream or sys.stdout)

    def info(self, message: str = "") -> None:
        self._emit(message)

    def item(self, action: str, message: str) -> None:
        tag = action.upper()
        if tag not in ACTIONS:
            raise ValueError(f"Unknown log action: {action!r}")
        # fixed width keeps the columns aligned like "SKIP   ..." / "DELETE ..."
        self._emit(f"{tag:<6} {message}")

    def banner(self, title: str) -> None:
        self._emit("=" * 40)
        self._emit(f"  {title}")
        if self.dry_run:
            self._emit("  ** no changes will be made **")
        self._emit("=" * 40)


@dataclass
class RunStats:
    """
    Counters accumulated by all phases of one run.
    """

    phase: str = ""
    dry_run: bool = False
    counters: Counter = field(default_factory=Counter)
    relinked: Counter = field(default_factory=Counter)
    skipped_dependents: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def bump(self, name: str, amount: int = 1) -> None:
        self.counters[name] += amount

    def error(self, message: str) -> None:
        self.errors.append(message)
        self.counters["errors"] += 1

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "dry_run": self.dry_run,
            "counters": dict(self.counters),
            "relinked": dict(self.relinked),
            "skipped_dependents": list(self.skipped_dependents),
            "errors": list(self.errors),
        }

    def render(self) -> list[str]:
        """
        Human-readable tally, one "label: value" line per counter.
        """
        rows: list[tuple[str, Any]] = [(name.replace("_", " "), n) for name, n in sorted(self.counters.items())]
        rows.extend((f"{name} relinked", n) for name, n in sorted(self.relinked.items()))
        if self.skipped_dependents:
            rows.append(("skipped dependents", ", ".join(self.skipped_dependents)))
        if "errors" not in self.counters:
            rows.append(("errors", 0))
        width = max((len(label) for label, _ in rows), default=0) + 1
        return [f"{label + ':':<{width}} {value}" for label, value in rows]
