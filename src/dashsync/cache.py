"""CacheStore: stale-while-revalidate cache for one server-owned collection.

The store holds the last list the server returned for one *default* parameter
set, plus the metadata needed to keep it fresh:

- ``last_fetched_at`` – epoch seconds of the last successful full fetch.
- ``fetch_in_flight`` – a request for the default list is outstanding.
- ``version``         – bumped on every successful write (fetch or mutation).

Fetch policy
------------
1. A request is already in flight → return the cached snapshot unchanged.
2. Fresh (younger than ``ttl``), default parameters, non-empty → return the
   snapshot immediately and revalidate in a background task.  A failed
   background refresh is logged and otherwise ignored.
3. Cold or stale → await the request, replace the items, and record any
   failure on :attr:`CacheStore.error`.

Any parameters other than the default bypass the cache and return a transient
snapshot.  A response whose base ``version`` is no longer current is dropped,
so a slow early response can never overwrite newer data.

Writes to the cached items only happen here and through
:class:`~dashsync.mutator.OptimisticMutator`, via the ``replace_item`` /
``remove_item`` / ``insert_item`` / ``discard`` methods below.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from dashsync.envelope import DEFAULT_LIST_KEYS, extract_items, item_id
from dashsync.errors import SyncError, describe_error
from dashsync.models import CachedCollection, Record

if TYPE_CHECKING:
    from dashsync.sync.base import ResourceClient

logger = logging.getLogger(__name__)

#: Async callable that fetches the full list for a parameter set.
Loader = Callable[[dict[str, Any]], Awaitable[Sequence[Record]]]


def list_loader(
    client: "ResourceClient",
    path: str,
    *,
    keys: Sequence[str] = DEFAULT_LIST_KEYS,
    fallback: str = "Failed to fetch items",
) -> Loader:
    """Build a :data:`Loader` that GETs *path* and extracts the record list."""

    async def load(params: dict[str, Any]) -> list[Record]:
        result = await client.get(path, params or None)
        return extract_items(result.raise_for_failure(fallback), keys)

    return load


@dataclass
class _InFlight:
    base_version: int
    background: bool
    epoch: int = 0
    task: "asyncio.Task[bool] | None" = field(default=None, repr=False)


class CacheStore:
    """Holds one cached collection and applies the stale-while-revalidate policy."""

    def __init__(
        self,
        loader: Loader,
        *,
        name: str = "items",
        ttl: float = 30.0,
        default_params: Mapping[str, Any] | None = None,
        key: Callable[[Record], str | None] = item_id,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.ttl = ttl
        self._loader = loader
        self._key = key
        self._clock = clock
        self._default_params: dict[str, Any] = dict(default_params or {})
        self._items: tuple[Record, ...] = ()
        self._last_fetched_at: float | None = None
        self._version = 0
        self._inflight: _InFlight | None = None
        self._epoch = 0
        self.error: str | None = None

    # ------------------------------------------------------------------
    # Read-only selectors
    # ------------------------------------------------------------------

    @property
    def items(self) -> tuple[Record, ...]:
        return self._items

    @property
    def last_fetched_at(self) -> float | None:
        return self._last_fetched_at

    @property
    def version(self) -> int:
        return self._version

    @property
    def fetch_in_flight(self) -> bool:
        return self._inflight is not None

    @property
    def loading(self) -> bool:
        """True while a foreground (awaited) fetch is running."""
        return self._inflight is not None and not self._inflight.background

    @property
    def default_params(self) -> dict[str, Any]:
        return dict(self._default_params)

    @property
    def is_fresh(self) -> bool:
        if self._last_fetched_at is None:
            return False
        return (self._clock() - self._last_fetched_at) < self.ttl

    @property
    def collection(self) -> CachedCollection:
        return CachedCollection(
            items=self._items,
            last_fetched_at=self._last_fetched_at,
            fetch_in_flight=self.fetch_in_flight,
            version=self._version,
            error=self.error,
        )

    def key_of(self, record: Record) -> str | None:
        return self._key(record)

    def get(self, key: str) -> Record | None:
        for record in self._items:
            if self._key(record) == key:
                return record
        return None

    def index_of(self, key: str) -> int | None:
        for index, record in enumerate(self._items):
            if self._key(record) == key:
                return index
        return None

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    async def fetch(
        self, params: Mapping[str, Any] | None = None, *, force: bool = False
    ) -> CachedCollection:
        """Return the collection, fetching or revalidating as the policy dictates.

        Parameters
        ----------
        params:
            Query parameters.  ``None`` or a mapping equal to the default
            parameters uses the cache; anything else is fetched transiently.
        force:
            Skip the freshness check and await a fetch.  An in-flight request
            is joined unless it was issued before the latest write.
        """
        if params is not None and dict(params) != self._default_params:
            return await self._fetch_transient(dict(params))

        current = self._inflight
        if current is not None:
            if force and current.base_version != self._version:
                # Superseded: its response will fail the version check anyway
                pass
            else:
                if force and current.task is not None:
                    await asyncio.shield(current.task)
                return self.collection

        if not force and self._items and self.is_fresh:
            self._start(background=True)
            return self.collection

        record = self._start(background=False)
        # Shielded: abandoning this call must not cancel the shared request
        await asyncio.shield(record.task)
        return self.collection

    async def refresh(self) -> CachedCollection:
        """Force an authoritative re-fetch of the default list."""
        return await self.fetch(force=True)

    async def wait_idle(self) -> None:
        """Wait until no request for the default list is outstanding."""
        while self._inflight is not None and self._inflight.task is not None:
            await asyncio.shield(self._inflight.task)

    def _start(self, *, background: bool) -> _InFlight:
        record = _InFlight(base_version=self._version, background=background, epoch=self._epoch)
        self._inflight = record
        record.task = asyncio.ensure_future(self._run(record))
        return record

    async def _run(self, record: _InFlight) -> bool:
        try:
            fetched = await self._loader(dict(self._default_params))
        except SyncError as exc:
            if record.background:
                logger.warning("Background refresh of %s failed: %s", self.name, exc)
            elif record.epoch == self._epoch:
                self.error = describe_error(exc, f"Failed to fetch {self.name}")
            return False
        finally:
            if self._inflight is record:
                self._inflight = None

        if record.base_version != self._version:
            logger.debug(
                "Discarding stale %s response (issued at version %d, now %d)",
                self.name,
                record.base_version,
                self._version,
            )
            return False

        self._items = self._dedupe(fetched)
        self._last_fetched_at = self._clock()
        self._version += 1
        self.error = None
        return True

    async def _fetch_transient(self, params: dict[str, Any]) -> CachedCollection:
        try:
            fetched = await self._loader(params)
        except SyncError as exc:
            return CachedCollection(error=describe_error(exc, f"Failed to fetch {self.name}"))
        return CachedCollection(items=self._dedupe(fetched), last_fetched_at=self._clock())

    def _dedupe(self, records: Iterable[Record]) -> tuple[Record, ...]:
        seen: set[str] = set()
        result: list[Record] = []
        for record in records:
            key = self._key(record)
            if key is not None:
                if key in seen:
                    continue
                seen.add(key)
            result.append(record)
        return tuple(result)

    # ------------------------------------------------------------------
    # Guarded writes
    # ------------------------------------------------------------------

    def replace_item(self, key: str, record: Record) -> bool:
        """Replace the record stored under *key*; returns False if it is absent."""
        index = self.index_of(key)
        if index is None:
            return False
        self._items = self._items[:index] + (record,) + self._items[index + 1 :]
        self._version += 1
        return True

    def remove_item(self, key: str) -> tuple[Record, int] | None:
        """Remove the record under *key*; returns it with its former index."""
        index = self.index_of(key)
        if index is None:
            return None
        record = self._items[index]
        self._items = self._items[:index] + self._items[index + 1 :]
        self._version += 1
        return record, index

    def insert_item(self, record: Record, index: int = 0) -> None:
        """Insert *record* at *index*, replacing any record with the same key."""
        key = self._key(record)
        items = self._items
        if key is not None:
            items = tuple(r for r in items if self._key(r) != key)
        index = max(0, min(index, len(items)))
        self._items = items[:index] + (record,) + items[index:]
        self._version += 1

    def discard(self, keys: Iterable[str]) -> int:
        """Remove every record whose key is in *keys*; returns how many went."""
        doomed = set(keys)
        kept = tuple(r for r in self._items if self._key(r) not in doomed)
        removed = len(self._items) - len(kept)
        if removed:
            self._items = kept
            self._version += 1
        return removed

    def report_error(self, message: str | None) -> None:
        self.error = message

    # ------------------------------------------------------------------
    # Parameters / lifecycle
    # ------------------------------------------------------------------

    def set_default_params(self, params: Mapping[str, Any] | None) -> None:
        """Cache a different parameter set; the current list becomes stale."""
        new = dict(params or {})
        if new == self._default_params:
            return
        self._default_params = new
        self._last_fetched_at = None
        # Responses for the old parameters must not land
        self._version += 1

    def reset(self) -> None:
        """Drop all cached state.

        An outstanding request is left to finish; its result fails the version
        check and its error is not recorded, so callers awaiting it just get the
        empty collection.
        """
        self._inflight = None
        self._epoch += 1
        self._items = ()
        self._last_fetched_at = None
        self._version += 1
        self.error = None
