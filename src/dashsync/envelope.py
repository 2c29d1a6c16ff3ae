"""Response-shape adapters.

Each endpoint family gets exactly one adapter here, with an explicit priority
order, so no call site has to sniff payloads itself.

- :func:`extract_items`     – list endpoints (``data`` → ``files`` → ``items`` →
  ``results``, or a resource-specific key list).
- :func:`parse_bulk_delete` – bulk-delete endpoints (``successful``/``failed``
  pair, then per-item ``results`` objects, else nothing resolved).
- :func:`parse_scroll_page` – cursor/scroll endpoints.
- :func:`delete_confirmed`  – single-item delete endpoints.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from dashsync.errors import AmbiguousResult
from dashsync.models import Record, ScrollPage

logger = logging.getLogger(__name__)

DEFAULT_LIST_KEYS: tuple[str, ...] = ("data", "files", "items", "results")

#: Keys a record's identifier may live under, in priority order.
ID_KEYS: tuple[str, ...] = ("id", "fileId", "file_id")

NO_STATUS_MESSAGE = "No status returned"
DELETE_FAILED_MESSAGE = "Delete failed"


def item_id(record: Any) -> str | None:
    """Return the identifier of *record* as a string, or ``None`` if it has none."""
    if isinstance(record, Mapping):
        for key in ID_KEYS:
            value = record.get(key)
            if value is not None and value != "":
                return str(value)
    return None


# ---------------------------------------------------------------------------
# Lists
# ---------------------------------------------------------------------------


def extract_items(payload: Any, keys: Sequence[str] = DEFAULT_LIST_KEYS) -> list[Record]:
    """Find the record list inside a list-endpoint payload.

    A bare JSON array is returned as-is.  Otherwise the first key of *keys*
    holding an array wins; an object under one of those keys is searched one
    level deeper (``{"data": {"models": [...]}}``).

    Raises :class:`AmbiguousResult` when no array can be found.
    """
    if isinstance(payload, list):
        return [r for r in payload if isinstance(r, Mapping)]
    if isinstance(payload, Mapping):
        for key in keys:
            value = payload.get(key)
            if isinstance(value, list):
                return [r for r in value if isinstance(r, Mapping)]
        for key in keys:
            value = payload.get(key)
            if isinstance(value, Mapping):
                try:
                    return extract_items(value, keys)
                except AmbiguousResult:
                    continue
    raise AmbiguousResult(f"No item list found in response (looked for {', '.join(keys)})")


# ---------------------------------------------------------------------------
# Bulk delete
# ---------------------------------------------------------------------------


@dataclass
class BulkDeleteReport:
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    #: Requested ids the response said nothing about (classified failed).
    unresolved: list[str] = field(default_factory=list)


def _failed_entry(entry: Any) -> tuple[str | None, str]:
    if isinstance(entry, Mapping):
        return item_id(entry), str(entry.get("error") or entry.get("message") or DELETE_FAILED_MESSAGE)
    if entry is None:
        return None, DELETE_FAILED_MESSAGE
    return str(entry), DELETE_FAILED_MESSAGE


def parse_bulk_delete(payload: Any, requested: Iterable[str]) -> BulkDeleteReport:
    """Classify every requested id from a bulk-delete response.

    Shapes, in priority order:

    1. ``{"successful": [ids], "failed": [ids | {file_id, error}]}``, possibly
       nested under ``data``.
    2. ``{"results": [{"id"|"fileId"|"file_id": ..., "success": bool}, ...]}``.
    3. ``{"deleted_count": n, "point_ids": [ids]}`` (vector deletion); the
       listed ids were deleted.

    An id the response does not mention, or mentions without a usable status, is
    failed with ``"No status returned"``.  An id reported both ways is failed.
    Ids that were not requested are ignored.
    """
    wanted = list(dict.fromkeys(str(i) for i in requested))
    wanted_set = set(wanted)
    ok: set[str] = set()
    bad: dict[str, str] = {}

    body = payload
    if isinstance(body, Mapping) and isinstance(body.get("data"), Mapping):
        nested = body["data"]
        if any(k in nested for k in ("successful", "failed", "results", "point_ids")):
            body = nested

    if isinstance(body, Mapping) and (
        isinstance(body.get("successful"), list) or isinstance(body.get("failed"), list)
    ):
        for entry in body.get("successful") or []:
            if entry is not None:
                ok.add(str(entry))
        for entry in body.get("failed") or []:
            failed_id, message = _failed_entry(entry)
            if failed_id is not None:
                bad[failed_id] = message
    elif isinstance(body, Mapping) and isinstance(body.get("results"), list):
        for result in body["results"]:
            result_id = item_id(result)
            if result_id is None:
                continue
            success = result.get("success")
            if success is True:
                ok.add(result_id)
            elif success is False:
                bad[result_id] = str(result.get("error") or result.get("message") or DELETE_FAILED_MESSAGE)
    elif isinstance(body, Mapping) and isinstance(body.get("point_ids"), list) and "deleted_count" in body:
        for entry in body["point_ids"]:
            if entry is not None:
                ok.add(str(entry))

    report = BulkDeleteReport()
    for requested_id in wanted:
        if requested_id in bad:
            report.failed.append(requested_id)
            report.errors[requested_id] = bad[requested_id]
        elif requested_id in ok:
            report.succeeded.append(requested_id)
        else:
            report.failed.append(requested_id)
            report.errors[requested_id] = NO_STATUS_MESSAGE
            report.unresolved.append(requested_id)

    ignored = (ok | set(bad)) - wanted_set
    if ignored:
        logger.debug("Bulk delete reported %d id(s) that were not requested", len(ignored))
    if report.unresolved:
        logger.warning(
            "Bulk delete returned no status for %d of %d id(s); counting them as failed",
            len(report.unresolved),
            len(wanted),
        )
    return report


def delete_confirmed(data: Any) -> bool:
    """Interpret the data of a successful single-item delete call."""
    if data is None or data is True:
        return True
    if data is False:
        return False
    if isinstance(data, Mapping):
        return data.get("success", True) is not False
    return True


# ---------------------------------------------------------------------------
# Scroll
# ---------------------------------------------------------------------------


def parse_scroll_page(payload: Any) -> ScrollPage:
    """Decode ``{points, scroll_id, has_more, total_scrolled}``.

    Raises :class:`AmbiguousResult` when ``points`` is missing or not a list.
    """
    if not isinstance(payload, Mapping) or not isinstance(payload.get("points"), list):
        raise AmbiguousResult("Scroll response has no 'points' list")
    points = tuple(p for p in payload["points"] if isinstance(p, Mapping))
    raw_token = payload.get("scroll_id")
    token = str(raw_token) if raw_token not in (None, "") else None
    has_more = bool(payload.get("has_more", token is not None))
    try:
        total = int(payload.get("total_scrolled") or 0)
    except (TypeError, ValueError):
        total = 0
    return ScrollPage(points=points, scroll_id=token, has_more=has_more, total_scrolled=total)
