"""BatchDeleter: bulk-preferred deletion with a per-item fallback.

``run(ids, chunk_size, on_progress)``:

1. Up to ``chunk_size`` ids and a bulk endpoint available → one bulk call.
   The response is classified with
   :func:`~dashsync.envelope.parse_bulk_delete`; ids it does not account for
   are failed.  If the bulk call itself fails (no response, or a response
   marked unsuccessful) every id goes through step 2 instead.
2. Otherwise delete ids one at a time, in input order, chunk by chunk.
   ``on_progress`` fires after every item and a short pause separates items
   within a chunk.
3. ``on_success(succeeded)`` and ``on_error(message, failed)`` each fire once
   at the end, possibly with empty lists.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TYPE_CHECKING

from dashsync.envelope import DELETE_FAILED_MESSAGE, delete_confirmed, parse_bulk_delete
from dashsync.errors import SyncError, describe_error
from dashsync.models import BatchOutcome, Progress

if TYPE_CHECKING:
    from dashsync.sync.base import ApiResult

logger = logging.getLogger(__name__)

SingleDelete = Callable[[str], Awaitable["ApiResult"]]
BulkDelete = Callable[[list[str]], Awaitable["ApiResult"]]
ProgressCallback = Callable[[Progress], None]
SuccessCallback = Callable[[list[str]], None]
ErrorCallback = Callable[[str, list[str]], None]

PARTIAL_FAILURE_MESSAGE = "Some items could not be deleted"


class BatchDeleter:
    """Deletes a set of ids, preferring one bulk request."""

    def __init__(
        self,
        delete_one: SingleDelete,
        bulk_delete: BulkDelete | None = None,
        *,
        chunk_size: int = 10,
        pacing_delay: float = 0.1,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self._delete_one = delete_one
        self._bulk_delete = bulk_delete
        self.chunk_size = chunk_size
        self.pacing_delay = pacing_delay
        self._sleep = sleep

    async def run(
        self,
        ids: Iterable[str],
        chunk_size: int | None = None,
        on_progress: ProgressCallback | None = None,
        *,
        on_success: SuccessCallback | None = None,
        on_error: ErrorCallback | None = None,
    ) -> BatchOutcome:
        size = self.chunk_size if chunk_size is None else chunk_size
        if size < 1:
            raise ValueError("chunk_size must be at least 1")
        wanted = list(dict.fromkeys(str(i) for i in ids))
        outcome = BatchOutcome(total=len(wanted))

        if wanted:
            bulk_done = False
            if self._bulk_delete is not None and len(wanted) <= size:
                bulk_done = await self._run_bulk(wanted, outcome)
            if not bulk_done:
                await self._run_chunked(wanted, size, outcome, on_progress)

        succeeded = [i for i in wanted if i in outcome.succeeded_ids]
        failed = [i for i in wanted if i in outcome.failed_ids]
        if on_success is not None:
            on_success(succeeded)
        if on_error is not None:
            on_error(PARTIAL_FAILURE_MESSAGE if failed else "", failed)
        return outcome

    async def _run_bulk(self, ids: list[str], outcome: BatchOutcome) -> bool:
        try:
            result = await self._bulk_delete(ids)
            payload = result.raise_for_failure("Bulk delete failed")
        except SyncError as exc:
            logger.info(
                "Bulk delete of %d item(s) failed (%s); deleting one by one",
                len(ids),
                describe_error(exc, exc.kind),
            )
            return False

        report = parse_bulk_delete(payload, ids)
        for item_id in report.succeeded:
            outcome.record_success(item_id)
        for item_id in report.failed:
            outcome.record_failure(item_id, report.errors.get(item_id, DELETE_FAILED_MESSAGE))
        outcome.used_bulk = True
        return True

    async def _run_chunked(
        self,
        ids: list[str],
        size: int,
        outcome: BatchOutcome,
        on_progress: ProgressCallback | None,
    ) -> None:
        for start in range(0, len(ids), size):
            chunk = ids[start : start + size]
            for position, item_id in enumerate(chunk):
                await self._delete_single(item_id, outcome)
                if on_progress is not None:
                    on_progress(Progress(outcome.completed, outcome.total, item_id))
                if len(chunk) > 1 and position < len(chunk) - 1 and self.pacing_delay > 0:
                    await self._sleep(self.pacing_delay)

    async def _delete_single(self, item_id: str, outcome: BatchOutcome) -> None:
        try:
            result = await self._delete_one(item_id)
            data = result.raise_for_failure(DELETE_FAILED_MESSAGE)
        except SyncError as exc:
            outcome.record_failure(item_id, describe_error(exc, DELETE_FAILED_MESSAGE))
            return
        if delete_confirmed(data):
            outcome.record_success(item_id)
        else:
            outcome.record_failure(item_id, DELETE_FAILED_MESSAGE)
