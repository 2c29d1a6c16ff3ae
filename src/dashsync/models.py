"""Value types shared by the cache, mutator, pager and batch deleter."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

#: A server-owned item as decoded from JSON.
Record = dict[str, Any]


@dataclass(frozen=True)
class CachedCollection:
    """Immutable snapshot of a cached collection, as handed to readers."""

    items: tuple[Record, ...] = ()
    #: Epoch seconds of the last successful full fetch; ``None`` before the first.
    last_fetched_at: float | None = None
    fetch_in_flight: bool = False
    version: int = 0
    error: str | None = None

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


@dataclass
class PendingMutation:
    """Rollback bookkeeping for the in-flight mutations on one item."""

    target_id: str
    #: Pre-mutation value; ``None`` when the item was not cached.
    previous: Record | None
    #: Index of the item in ``items`` when the snapshot was taken.
    position: int | None
    generation: int
    applied: bool = False


@dataclass(frozen=True)
class Patch:
    """Shallow field merge applied to one record."""

    fields: Record

    def apply(self, record: Record) -> Record:
        return {**record, **self.fields}


class _DeleteMarker:
    def __repr__(self) -> str:
        return "DELETE"


#: Change marker asking the mutator to remove the item.
DELETE = _DeleteMarker()


@dataclass(frozen=True)
class MutationOutcome:
    item_id: str | None
    ok: bool
    data: Any = None
    error: str | None = None
    #: Error kind from :mod:`dashsync.errors` (``"transport"``, ``"server_rejection"``, ...)
    kind: str | None = None
    #: True when a failure's rollback was skipped because a newer mutation owns the item.
    superseded: bool = False


@dataclass(frozen=True)
class PageCursor:
    #: ``None`` means "start"; otherwise an opaque server-issued scroll id.
    token: str | None = None
    exhausted: bool = False


@dataclass(frozen=True)
class ScrollPage:
    """One decoded scroll-endpoint response."""

    points: tuple[Record, ...]
    scroll_id: str | None
    has_more: bool
    total_scrolled: int


@dataclass(frozen=True)
class Page:
    """A page as returned by :class:`~dashsync.pager.CursorPager`."""

    points: tuple[Record, ...] = ()
    token: str | None = None
    exhausted: bool = False
    #: Running count of points delivered by this cursor so far.
    total_scrolled: int = 0
    #: True when the response belonged to a superseded cursor and was dropped.
    stale: bool = False

    @property
    def total(self) -> int | None:
        """Final point count, known only once the cursor is exhausted."""
        return self.total_scrolled if self.exhausted else None


@dataclass(frozen=True)
class Progress:
    completed: int
    total: int
    current: str | None = None


@dataclass
class BatchOutcome:
    succeeded_ids: set[str] = field(default_factory=set)
    failed_ids: set[str] = field(default_factory=set)
    completed: int = 0
    total: int = 0
    #: Failure message per failed id.
    errors: dict[str, str] = field(default_factory=dict)
    used_bulk: bool = False

    def record_success(self, item_id: str) -> None:
        self.failed_ids.discard(item_id)
        self.errors.pop(item_id, None)
        self.succeeded_ids.add(item_id)
        self.completed = len(self.succeeded_ids) + len(self.failed_ids)

    def record_failure(self, item_id: str, message: str) -> None:
        self.succeeded_ids.discard(item_id)
        self.failed_ids.add(item_id)
        self.errors[item_id] = message
        self.completed = len(self.succeeded_ids) + len(self.failed_ids)

    @property
    def finished(self) -> bool:
        return self.completed == self.total
