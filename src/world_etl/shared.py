"""world_etl.shared

Shared utilities used by both the members and worlds importers.
Includes the exception types, RejectWriter, RunCounters, CSV pre-scan,
and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

from world_etl.normalize import normalize_row


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigurationError(Exception):
    """A row or group needs a mapping the configuration does not provide."""


class UnmappedRoleError(ConfigurationError):
    """No role mapping exists for a (world type, role label) pair."""

    def __init__(self, world_type: str | None, role_label: str | None = None) -> None:
        self.world_type = world_type
        self.role_label = role_label
        if role_label is None:
            msg = f"no role map configured for world type {world_type!r}"
        else:
            msg = f"role {role_label!r} is not mapped for world type {world_type!r}"
        super().__init__(msg)


class MissingTemplateError(ConfigurationError):
    """No world template is configured for a world-type code."""

    def __init__(self, world_type_code: str | None) -> None:
        self.world_type_code = world_type_code
        super().__init__(f"no world template configured for {world_type_code!r}")


class GroupNotFoundError(Exception):
    """A membership row references a world the store does not know."""

    def __init__(self, group_id: str) -> None:
        self.group_id = group_id
        super().__init__(f"group {group_id!r} does not exist")


class WorldCreationError(Exception):
    """Raised when a world still has no properties after create-or-load."""


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: list[str | None], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            self._writer = csv.writer(self._fh)
        self._writer.writerow([*("" if v is None else v for v in row), reason])
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    rows_read: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    exceptional: int = 0
    exceptions: list[str] = field(default_factory=list)

    def record_exception(self, message: str) -> None:
        self.exceptional += 1
        self.exceptions.append(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "exceptional": self.exceptional,
            "exceptions": self.exceptions,
        }


# ---------------------------------------------------------------------------
# CSV pre-scan
# ---------------------------------------------------------------------------

def read_csv_rows(
    csv_path: Path,
    min_columns: int,
    max_columns: int,
    skip_first_row: bool,
    counters: RunCounters,
    rejects: RejectWriter,
) -> list[list[str | None]]:
    """Read a positional CSV file, rejecting rows outside the column bounds.

    Cells are trimmed and empty cells become None. Rejected rows count as
    skipped and are written to the rejects file.
    """
    rows: list[list[str | None]] = []
    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.reader(fh)
        for idx, raw_row in enumerate(reader):
            if idx == 0 and skip_first_row:
                continue
            if not raw_row:
                continue
            counters.rows_read += 1
            row = normalize_row(raw_row)
            if not (min_columns <= len(row) <= max_columns):
                rejects.write(row, "unexpected_column_count")
                counters.skipped += 1
                continue
            rows.append(row)
    return rows


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------

def report_subject(category: str, today: date | None = None) -> str:
    return f"{category}.csv file processed: {(today or date.today()).isoformat()}"


def build_run_report(
    counters: RunCounters,
    subject: str,
    updated_label: str = "updated",
    dry_run: bool = False,
) -> str:
    lines = [
        f"=== {subject} ===",
        f"dry_run     : {dry_run}",
        "",
        f"rows_read   : {counters.rows_read}",
        f"created     : {counters.created}",
        f"{updated_label:<12}: {counters.updated}",
        f"skipped     : {counters.skipped}",
        f"exceptional : {counters.exceptional}",
    ]
    if counters.exceptions:
        lines.append("")
        lines.append("--- Exceptions ---")
        lines.extend(counters.exceptions)
    return "\n".join(lines)


def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    counters: RunCounters,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
