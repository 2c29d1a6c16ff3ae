"""OptimisticMutator: update/delete a cached record now, confirm or revert later.

Mutation discipline
-------------------
1. Snapshot the record (value and position) and apply the change to the
   :class:`~dashsync.cache.CacheStore` immediately.
2. Await the network call.
3. Success → drop the snapshot and, by default, re-fetch the authoritative list.
4. Failure → put the snapshot back exactly and record the error on the store.

Several mutations may target the same id before the first resolves.  Each one
gets a generation number; only the latest generation for an id may roll back.
The first pending mutation's snapshot stays the rollback base for the whole
run, and a superseded mutation that succeeds folds its change into that base,
so a later rollback never throws away confirmed data.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any

from dashsync.errors import SyncError, describe_error
from dashsync.models import DELETE, MutationOutcome, Patch, PendingMutation, Record

if TYPE_CHECKING:
    from dashsync.cache import CacheStore
    from dashsync.sync.base import ApiResult

logger = logging.getLogger(__name__)

#: Zero-argument coroutine factory that performs the network call.
Request = Callable[[], Awaitable["ApiResult"]]


class OptimisticMutator:
    """Applies optimistic changes to a :class:`CacheStore` with generation-checked rollback."""

    def __init__(
        self,
        store: "CacheStore",
        *,
        noun: str = "item",
        refetch_on_success: bool = True,
        refetch_on_failure: bool = False,
    ) -> None:
        self._store = store
        self.noun = noun
        self.refetch_on_success = refetch_on_success
        self.refetch_on_failure = refetch_on_failure
        self._pending: dict[str, PendingMutation] = {}
        self._generation = 0

    def pending(self, item_id: str) -> PendingMutation | None:
        """Return the rollback record for *item_id* while a mutation is in flight."""
        return self._pending.get(item_id)

    @property
    def in_flight(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def update(self, item_id: str, patch: Mapping[str, Any], request: Request) -> MutationOutcome:
        return await self.mutate(item_id, Patch(dict(patch)), request)

    async def delete(self, item_id: str, request: Request) -> MutationOutcome:
        return await self.mutate(item_id, DELETE, request)

    async def mutate(self, item_id: str, change: Patch | object, request: Request) -> MutationOutcome:
        """Apply *change* to *item_id* optimistically and reconcile with the server.

        *change* is a :class:`~dashsync.models.Patch` or
        :data:`~dashsync.models.DELETE`.
        """
        if change is not DELETE and not isinstance(change, Patch):
            raise TypeError(f"Unsupported change: {change!r}")
        action = "delete" if change is DELETE else "update"
        fallback = f"Failed to {action} {self.noun}"

        self._generation += 1
        generation = self._generation
        pending = self._pending.get(item_id)
        if pending is None:
            pending = PendingMutation(
                target_id=item_id,
                previous=copy.deepcopy(self._store.get(item_id)),
                position=self._store.index_of(item_id),
                generation=generation,
            )
            self._pending[item_id] = pending
        else:
            pending.generation = generation

        self._store.report_error(None)
        self._apply(item_id, change)
        pending.applied = True

        try:
            result = await request()
            data = result.raise_for_failure(fallback)
        except SyncError as exc:
            return await self._fail(pending, generation, exc, fallback)
        return await self._confirm(pending, generation, change, data)

    async def create(self, request: Request, *, position: int = 0) -> MutationOutcome:
        """Create a record server-side and insert the returned record on success.

        The id is server-assigned, so nothing is applied before confirmation.
        """
        fallback = f"Failed to create {self.noun}"
        self._store.report_error(None)
        try:
            result = await request()
            data = result.raise_for_failure(fallback)
        except SyncError as exc:
            message = describe_error(exc, fallback)
            self._store.report_error(message)
            return MutationOutcome(None, False, error=message, kind=exc.kind)

        key = self._store.key_of(data) if isinstance(data, Mapping) else None
        if key is not None:
            self._store.insert_item(dict(data), position)
        if self.refetch_on_success:
            await self._store.refresh()
        return MutationOutcome(key, True, data=data)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _apply(self, item_id: str, change: Patch | object) -> None:
        if change is DELETE:
            self._store.remove_item(item_id)
            return
        current = self._store.get(item_id)
        if current is not None:
            self._store.replace_item(item_id, change.apply(current))

    def _restore(self, pending: PendingMutation) -> None:
        key = pending.target_id
        if pending.previous is None:
            self._store.remove_item(key)
        elif self._store.get(key) is not None:
            self._store.replace_item(key, copy.deepcopy(pending.previous))
        else:
            position = pending.position if pending.position is not None else 0
            self._store.insert_item(copy.deepcopy(pending.previous), position)

    async def _confirm(
        self, pending: PendingMutation, generation: int, change: Patch | object, data: Any
    ) -> MutationOutcome:
        latest = pending.generation == generation
        if latest:
            self._pending.pop(pending.target_id, None)
        else:
            pending.previous = _fold(pending.previous, change)

        if latest and self.refetch_on_success:
            await self._store.refresh()
        elif latest and change is not DELETE and isinstance(data, Mapping):
            if self._store.key_of(data) == pending.target_id:
                self._store.replace_item(pending.target_id, dict(data))
        return MutationOutcome(pending.target_id, True, data=data)

    async def _fail(
        self, pending: PendingMutation, generation: int, exc: SyncError, fallback: str
    ) -> MutationOutcome:
        message = describe_error(exc, fallback)
        superseded = pending.generation != generation
        if superseded:
            logger.debug(
                "Not rolling back %s %s: generation %d superseded by %d",
                self.noun,
                pending.target_id,
                generation,
                pending.generation,
            )
        else:
            self._pending.pop(pending.target_id, None)
            self._restore(pending)

        if self.refetch_on_failure:
            await self._store.refresh()
        self._store.report_error(message)
        return MutationOutcome(
            pending.target_id, False, error=message, kind=exc.kind, superseded=superseded
        )


def _fold(previous: Record | None, change: Patch | object) -> Record | None:
    if change is DELETE or previous is None:
        return None
    return change.apply(previous)
