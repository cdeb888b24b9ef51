"""Normalization functions for world/member CSV ingestion.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
from collections.abc import Iterable


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: normalize_row  (positional CSV rows)
# ---------------------------------------------------------------------------

def normalize_row(raw: Iterable[str | None]) -> list[str | None]:
    """Trim every cell; empty cells become None (an omitted value)."""
    return [trim(cell) for cell in raw]


# ---------------------------------------------------------------------------
# Rule 4: cell  (safe positional access)
# ---------------------------------------------------------------------------

def cell(row: list[str | None], index: int) -> str | None:
    """Return row[index], or None when the row is too short."""
    if index < len(row):
        return row[index]
    return None
