"""Decide whether two query results represent the same answer."""

from __future__ import annotations

import re
from collections.abc import Sequence

from .database import Cell, QueryResult

NULL_MARKER = "\x00"
CELL_SEPARATOR = "\x1f"

_ORDER_BY_RE = re.compile(r"order\s+by", re.IGNORECASE)


def is_order_sensitive(reference_solution: str, override: bool | None = None) -> bool:
    """Return whether rows must match position by position.

    An explicit authored ``override`` wins; otherwise any ORDER BY clause in the
    reference solution text makes the comparison order-sensitive.
    """
    if override is not None:
        return override
    return _ORDER_BY_RE.search(reference_solution) is not None


def normalize_cell(value: Cell) -> str:
    """Map one cell to its canonical comparison text."""
    if value is None:
        return NULL_MARKER
    if isinstance(value, float):
        if value.is_integer():
            text = str(int(value))
        else:
            text = format(value, ".12g")
    elif isinstance(value, bytes | bytearray | memoryview):
        text = bytes(value).hex()
    else:
        text = str(value)
    return text.strip().casefold()


def normalize_row(row: Sequence[Cell]) -> str:
    """Join normalized cells into one canonical row string."""
    return CELL_SEPARATOR.join(normalize_cell(value) for value in row)


def results_equivalent(left: QueryResult, right: QueryResult, order_sensitive: bool) -> bool:
    """Compare two results, ignoring column-name case and (optionally) row order."""
    if not left.ok or not right.ok:
        return False
    if len(left.columns) != len(right.columns):
        return False
    if len(left.rows) != len(right.rows):
        return False
    left_columns = [column.casefold() for column in left.columns]
    right_columns = [column.casefold() for column in right.columns]
    if left_columns != right_columns:
        return False

    left_rows = [normalize_row(row) for row in left.rows]
    right_rows = [normalize_row(row) for row in right.rows]
    if order_sensitive:
        return left_rows == right_rows
    return sorted(left_rows) == sorted(right_rows)
