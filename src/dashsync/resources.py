"""Per-resource collections and the process-wide sync context.

Each management screen reads one :class:`ManagedCollection`: a
:class:`~dashsync.cache.CacheStore` for the list, an
:class:`~dashsync.mutator.OptimisticMutator` for edits and deletes, and a
:class:`~dashsync.batch.BatchDeleter` for multi-select deletion, all bound to
the endpoints in an :class:`Endpoints` table.

:class:`SyncContext` owns one collection per resource and the HTTP client.
Create it once and pass it to whoever needs it; tests build their own::

    async with SyncContext.from_settings(SyncSettings.load("dashsync.toml")) as ctx:
        await ctx.models.fetch()
        await ctx.models.update("m1", {"is_active": False})
        outcome = await ctx.files.delete_many(selected, on_progress=print)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import polars as pl

from dashsync import selectors
from dashsync.batch import PARTIAL_FAILURE_MESSAGE, BatchDeleter, ErrorCallback, ProgressCallback, SuccessCallback
from dashsync.cache import CacheStore, list_loader
from dashsync.config import SyncSettings
from dashsync.envelope import DEFAULT_LIST_KEYS, parse_bulk_delete
from dashsync.models import BatchOutcome, CachedCollection, MutationOutcome, Record
from dashsync.mutator import OptimisticMutator
from dashsync.pager import CursorPager, ScrollAccumulator
from dashsync.sync.base import ApiResult, ResourceClient, TokenProvider
from dashsync.sync.http import HttpResourceClient


# ---------------------------------------------------------------------------
# Endpoint tables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Endpoints:
    name: str
    noun: str
    list: str
    #: Item path template with an ``{id}`` placeholder.
    item: str
    create: str | None = None
    bulk_delete: str | None = None
    #: Request-body key carrying the ids for ``bulk_delete``.
    bulk_key: str = "ids"
    list_keys: tuple[str, ...] = DEFAULT_LIST_KEYS
    #: Whether the list endpoint takes ``skip``/``limit``.
    paged: bool = False

    def item_path(self, item_id: str) -> str:
        return self.item.format(id=quote(str(item_id), safe=""))


KNOWLEDGE_STORES = Endpoints(
    name="knowledge stores",
    noun="knowledge store",
    list="/knowledge-stores",
    item="/knowledge-stores/{id}",
    create="/knowledge-stores",
    list_keys=("knowledge_stores", "data", "items"),
    paged=True,
)

MODELS = Endpoints(
    name="models",
    noun="model",
    list="/models",
    item="/models/{id}",
    create="/models",
    list_keys=("models", "data", "items"),
    paged=True,
)

CREDENTIALS = Endpoints(
    name="credentials",
    noun="credential",
    list="/credentials",
    item="/credentials/{id}",
    create="/credentials",
    list_keys=("credentials", "data", "items"),
)

FILES = Endpoints(
    name="files",
    noun="file",
    list="/file/list",
    item="/file/{id}",
    bulk_delete="/file/batch/delete",
    bulk_key="file_ids",
)

SCROLL_PATH = "/knowledge-stores/{id}/scroll"
VECTORS_DELETE_PATH = "/knowledge-stores/{id}/vectors/delete"


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class ManagedCollection:
    """Cache, optimistic mutations and batch deletion for one resource."""

    def __init__(
        self,
        client: ResourceClient,
        endpoints: Endpoints,
        settings: SyncSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = settings or SyncSettings()
        self.client = client
        self.endpoints = endpoints
        self.settings = settings
        defaults = {"skip": 0, "limit": settings.list_limit} if endpoints.paged else None
        self.store = CacheStore(
            list_loader(
                client,
                endpoints.list,
                keys=endpoints.list_keys,
                fallback=f"Failed to fetch {endpoints.name}",
            ),
            name=endpoints.name,
            ttl=settings.cache_ttl,
            default_params=defaults,
            clock=clock,
        )
        self.mutator = OptimisticMutator(self.store, noun=endpoints.noun)
        self.deleter = BatchDeleter(
            self._delete_one,
            self._bulk_delete if endpoints.bulk_delete else None,
            chunk_size=settings.batch_size,
            pacing_delay=settings.pacing_delay,
        )

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    @property
    def items(self) -> tuple[Record, ...]:
        return self.store.items

    @property
    def loading(self) -> bool:
        return self.store.loading

    @property
    def error(self) -> str | None:
        return self.store.error

    def clear_error(self) -> None:
        self.store.report_error(None)

    def table_view(self, **kwargs: Any) -> pl.DataFrame:
        """Filtered DataFrame over the cached items; see :func:`selectors.table_view`."""
        return selectors.table_view(self.store.items, **kwargs)

    # ------------------------------------------------------------------
    # Fetch / mutate
    # ------------------------------------------------------------------

    async def fetch(
        self, params: Mapping[str, Any] | None = None, *, force: bool = False
    ) -> CachedCollection:
        return await self.store.fetch(params, force=force)

    async def refresh(self) -> CachedCollection:
        return await self.store.refresh()

    async def create(self, body: Mapping[str, Any]) -> MutationOutcome:
        path = self.endpoints.create or self.endpoints.list
        return await self.mutator.create(lambda: self.client.post(path, dict(body)))

    async def update(self, item_id: str, patch: Mapping[str, Any]) -> MutationOutcome:
        path = self.endpoints.item_path(item_id)
        return await self.mutator.update(item_id, patch, lambda: self.client.put(path, dict(patch)))

    async def delete(self, item_id: str) -> MutationOutcome:
        path = self.endpoints.item_path(item_id)
        return await self.mutator.delete(item_id, lambda: self.client.delete(path))

    async def delete_many(
        self,
        ids: Iterable[str],
        on_progress: ProgressCallback | None = None,
        *,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BatchOutcome:
        """Delete *ids* and drop the confirmed ones from the cache."""
        outcome = await self.deleter.run(
            ids, on_progress=on_progress, on_success=on_success, on_error=on_error
        )
        self.store.discard(outcome.succeeded_ids)
        self.store.report_error(PARTIAL_FAILURE_MESSAGE if outcome.failed_ids else None)
        return outcome

    def reset(self) -> None:
        self.store.reset()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def _delete_one(self, item_id: str) -> ApiResult:
        return await self.client.delete(self.endpoints.item_path(item_id))

    async def _bulk_delete(self, ids: list[str]) -> ApiResult:
        return await self.client.post(self.endpoints.bulk_delete, {self.endpoints.bulk_key: ids})


class FileCollection(ManagedCollection):
    async def rename(self, file_id: str, new_name: str) -> MutationOutcome:
        """Optimistically rename a file."""
        path = f"/file/rename/{quote(str(file_id), safe='')}"
        return await self.mutator.update(
            file_id,
            {"name": new_name},
            lambda: self.client.put(path, params={"new_name": new_name}),
        )


class KnowledgeStoreCollection(ManagedCollection):
    def scroller(self, store_id: str, page_size: int | None = None) -> CursorPager:
        """Cursor over the vector points stored in *store_id*."""
        path = SCROLL_PATH.format(id=quote(str(store_id), safe=""))

        async def fetch_page(scroll_id: str | None, limit: int) -> Any:
            result = await self.client.post(path, {"limit": limit, "scroll_id": scroll_id})
            return result.raise_for_failure("Failed to fetch scroll data")

        return CursorPager(fetch_page, page_size=page_size or self.settings.scroll_page_size)

    def browser(self, store_id: str, page_size: int | None = None) -> ScrollAccumulator:
        return ScrollAccumulator(self.scroller(store_id, page_size))

    def vector_deleter(self, store_id: str) -> BatchDeleter:
        """Batch deleter for vector points; one id at a time uses the same endpoint."""
        path = VECTORS_DELETE_PATH.format(id=quote(str(store_id), safe=""))

        async def bulk(ids: list[str]) -> ApiResult:
            return await self.client.post(path, {"point_ids": ids})

        async def single(point_id: str) -> ApiResult:
            result = await bulk([point_id])
            if not result.is_success:
                return result
            report = parse_bulk_delete(result.data, [point_id])
            if report.succeeded:
                return ApiResult.ok(True, result.message, result.status)
            return ApiResult.fail(report.errors.get(point_id, ""), result.status, result.data)

        return BatchDeleter(
            single,
            bulk,
            chunk_size=self.settings.batch_size,
            pacing_delay=self.settings.pacing_delay,
        )


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class SyncContext:
    """One collection per resource, sharing a single client."""

    def __init__(
        self,
        client: ResourceClient,
        settings: SyncSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.client = client
        self.knowledge_stores = KnowledgeStoreCollection(client, KNOWLEDGE_STORES, self.settings, clock=clock)
        self.models = ManagedCollection(client, MODELS, self.settings, clock=clock)
        self.credentials = ManagedCollection(client, CREDENTIALS, self.settings, clock=clock)
        self.files = FileCollection(client, FILES, self.settings, clock=clock)

    @classmethod
    def from_settings(
        cls,
        settings: SyncSettings | None = None,
        *,
        token_provider: TokenProvider | None = None,
        **client_kwargs: Any,
    ) -> "SyncContext":
        settings = settings or SyncSettings.load()
        client = HttpResourceClient(
            settings.base_url,
            api_prefix=settings.api_prefix,
            api_token=settings.api_token or None,
            token_provider=token_provider,
            timeout=settings.timeout,
            **client_kwargs,
        )
        return cls(client, settings)

    @property
    def collections(self) -> dict[str, ManagedCollection]:
        return {
            "knowledge_stores": self.knowledge_stores,
            "models": self.models,
            "credentials": self.credentials,
            "files": self.files,
        }

    def reset(self) -> None:
        """Drop every cached collection."""
        for collection in self.collections.values():
            collection.reset()

    async def aclose(self) -> None:
        self.reset()
        close = getattr(self.client, "aclose", None)
        if close is not None:
            await close()

    async def __aenter__(self) -> "SyncContext":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
