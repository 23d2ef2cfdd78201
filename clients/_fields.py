"""Defensive field access over heterogeneous PPM entity shapes.

Entities are plain dicts whose nested fields may be missing, ``None``, or of
an unexpected type.  Nothing in here raises on a malformed entity.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from datetime import date, datetime
from typing import Any

__all__ = [
    "coerce_hours",
    "czql_literal",
    "first_hours",
    "first_present",
    "format_date",
    "get_path",
]

Path = tuple[str, ...]


def get_path(entity: Any, path: Path) -> Any:
    """Walk *path* through nested dicts, returning ``None`` on any gap."""
    current = entity
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def first_present(entity: Any, paths: Sequence[Path], default: Any = None) -> Any:
    """Return the first value along *paths* that is neither ``None`` nor ``""``."""
    for path in paths:
        value = get_path(entity, path)
        if value is not None and value != "":
            return value
    return default


def coerce_hours(value: Any) -> float | None:
    """Interpret *value* as a number of hours.

    Accepts ints, floats, numeric strings and duration objects of the form
    ``{"value": n, "unit": "Hours"}``.  Returns ``None`` for anything that is
    not a finite, non-negative number.
    """
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, int | float):
        return None
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def first_hours(entity: Any, paths: Sequence[Path]) -> float:
    """First usable hours value along *paths*; ``0.0`` when none is usable."""
    for path in paths:
        hours = coerce_hours(get_path(entity, path))
        if hours is not None:
            return hours
    return 0.0


def format_date(value: Any) -> str | None:
    """Reduce an ISO timestamp to ``YYYY-MM-DD``.

    Unparseable strings are returned unchanged; empty values become ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError:
        pass
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        return text


def czql_literal(value: str) -> str:
    """Quote *value* as a CZQL string literal."""
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"
