"""Read-only table views over cached records.

Returns :mod:`polars` DataFrames so list screens can filter, sort and count
without touching the cache itself.

Usage::

    frame  = to_frame(store.items)
    chats  = table_view(store.items, filters={"type": "chat", "is_active": True},
                        search="gpt", search_fields=("name", "model"))
    counts = count_by(store.items, "type")
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import polars as pl

from dashsync.models import Record

#: Filter values meaning "do not filter on this column".
_WILDCARDS = (None, "all", "")


def to_frame(items: Iterable[Record], columns: Sequence[str] | None = None) -> pl.DataFrame:
    """Return *items* as a DataFrame (optionally restricted to *columns*)."""
    rows = [dict(r) for r in items]
    if not rows:
        return pl.DataFrame(schema={c: pl.Null for c in columns} if columns else None)
    frame = pl.from_dicts(rows, infer_schema_length=None)
    if columns:
        present = [c for c in columns if c in frame.columns]
        frame = frame.select(present)
    return frame


def table_view(
    items: Iterable[Record],
    *,
    filters: Mapping[str, Any] | None = None,
    search: str | None = None,
    search_fields: Sequence[str] = ("name",),
    columns: Sequence[str] | None = None,
    order_by: str | None = None,
    descending: bool = False,
) -> pl.DataFrame:
    """Return the records matching *filters* and *search*, as a DataFrame.

    Parameters
    ----------
    filters:
        Column → required value.  ``None``, ``""`` and ``"all"`` skip the
        column.  Filtering on a column the records do not have yields no rows.
    search:
        Case-insensitive substring matched against any of *search_fields*.
    columns:
        Which columns to return.  Defaults to all.
    order_by:
        Column to sort by; ignored when absent from the data.
    """
    frame = to_frame(items)
    if frame.is_empty():
        return frame

    for column, value in (filters or {}).items():
        if value in _WILDCARDS:
            continue
        if column not in frame.columns:
            return frame.clear()
        frame = frame.filter(pl.col(column) == value)

    query = (search or "").strip().lower()
    if query:
        fields = [f for f in search_fields if f in frame.columns]
        if not fields:
            return frame.clear()
        matches = [
            pl.col(f).cast(pl.Utf8).str.to_lowercase().str.contains(query, literal=True).fill_null(False)
            for f in fields
        ]
        frame = frame.filter(pl.any_horizontal(matches))

    if order_by and order_by in frame.columns:
        frame = frame.sort(order_by, descending=descending, nulls_last=True)
    if columns:
        frame = frame.select([c for c in columns if c in frame.columns])
    return frame


def count_by(items: Iterable[Record], field: str) -> pl.DataFrame:
    """Return a ``field → count`` table sorted by frequency."""
    frame = to_frame(items)
    if frame.is_empty() or field not in frame.columns:
        return pl.DataFrame(schema={field: pl.Utf8, "count": pl.UInt32})
    return (
        frame.group_by(field)
        .agg(pl.len().alias("count"))
        .sort(["count", field], descending=[True, False], nulls_last=True)
    )
