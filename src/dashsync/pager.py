"""CursorPager: resumable scroll over a large remote collection.

State machine::

    IDLE --start/next--> FETCHING --token--> HAS_MORE --next--> FETCHING ...
                                  \\--no token / has_more=false--> EXHAUSTED

- ``EXHAUSTED`` is terminal: ``next()`` returns an empty page without a request.
- A failed request restores the previous state and token, so retrying ``next()``
  asks for the same page again (pages are delivered at least once, never
  skipped).
- ``start()`` begins a new cursor; a response still in flight for the old one
  is dropped when it arrives.

The pager keeps only the token and the exhausted flag.  Callers accumulate the
points themselves, or use :class:`ScrollAccumulator`.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from dashsync.envelope import item_id, parse_scroll_page
from dashsync.errors import StaleResponse, SyncError, describe_error
from dashsync.models import Page, PageCursor, Record

logger = logging.getLogger(__name__)

#: Async callable ``(scroll_id, limit) -> payload`` for one scroll request.
PageFetcher = Callable[[str | None, int], Awaitable[Any]]


class PagerState(enum.Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    HAS_MORE = "has_more"
    EXHAUSTED = "exhausted"


class CursorPager:
    """Page through a scroll endpoint with an opaque continuation token."""

    def __init__(self, fetch_page: PageFetcher, *, page_size: int = 100) -> None:
        self._fetch_page = fetch_page
        self.page_size = page_size
        self.cursor = PageCursor()
        self.total_scrolled = 0
        self._state = PagerState.IDLE
        self._generation = 0
        self._inflight: "asyncio.Task[Page] | None" = None

    @property
    def state(self) -> PagerState:
        return self._state

    @property
    def exhausted(self) -> bool:
        return self.cursor.exhausted

    @property
    def has_more(self) -> bool:
        return self._state is not PagerState.IDLE and not self.cursor.exhausted

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, page_size: int | None = None) -> Page:
        """Reset to a fresh cursor and fetch the first page."""
        self.reset()
        if page_size is not None:
            self.page_size = page_size
        return await self.next()

    async def next(self) -> Page:
        """Fetch the page after the current token.

        Raises :class:`~dashsync.errors.SyncError` when the request fails. On any
        failure the cursor is left where it was. Cancelling the caller does not
        cancel the request; its page still advances the cursor.
        """
        if self.cursor.exhausted:
            return Page(token=self.cursor.token, exhausted=True, total_scrolled=self.total_scrolled)
        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._request(self._generation))
        task = self._inflight
        try:
            # Shielded: an abandoned caller must not cancel the shared request
            return await asyncio.shield(task)
        except StaleResponse:
            return Page(stale=True)

    def reset(self) -> None:
        """Forget the cursor; any in-flight response will be discarded."""
        self._generation += 1
        self._inflight = None
        self.cursor = PageCursor()
        self.total_scrolled = 0
        self._state = PagerState.IDLE

    async def iter_pages(self, *, restart: bool = True) -> AsyncIterator[Page]:
        """Yield pages until the cursor is exhausted."""
        page = await (self.start() if restart else self.next())
        yield page
        while not self.cursor.exhausted:
            page = await self.next()
            if page.stale:
                return
            yield page

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _request(self, generation: int) -> Page:
        previous = self._state
        self._state = PagerState.FETCHING
        try:
            payload = await self._fetch_page(self.cursor.token, self.page_size)
            scroll = parse_scroll_page(payload)
        except BaseException as exc:
            if generation != self._generation:
                if isinstance(exc, Exception):
                    raise StaleResponse("cursor was restarted") from exc
                raise
            # Any failure leaves the cursor where it was so next() re-requests
            self._state = previous
            self._inflight = None
            raise

        if generation != self._generation:
            logger.debug("Discarding scroll page for a superseded cursor")
            raise StaleResponse("cursor was restarted")

        self._inflight = None
        exhausted = scroll.scroll_id is None or not scroll.has_more
        self.cursor = PageCursor(token=scroll.scroll_id if not exhausted else self.cursor.token, exhausted=exhausted)
        self.total_scrolled += len(scroll.points)
        self._state = PagerState.EXHAUSTED if exhausted else PagerState.HAS_MORE
        return Page(
            points=scroll.points,
            token=scroll.scroll_id,
            exhausted=exhausted,
            total_scrolled=self.total_scrolled,
        )


class ScrollAccumulator:
    """Concatenates pager output for display and records errors instead of raising."""

    def __init__(self, pager: CursorPager, *, key: Callable[[Record], str | None] = item_id) -> None:
        self.pager = pager
        self._key = key
        self.points: list[Record] = []
        self._seen: set[str] = set()
        self.loading = False
        self.error: str | None = None

    @property
    def has_more(self) -> bool:
        return self.pager.has_more

    @property
    def total_scrolled(self) -> int:
        return len(self.points)

    async def load_first(self, page_size: int | None = None) -> bool:
        """Start over and load the first page; returns False on failure."""
        self.points = []
        self._seen = set()
        return await self._load(self.pager.start(page_size), "Failed to fetch scroll data")

    async def load_more(self) -> bool:
        """Append the next page; a no-op once the cursor is exhausted."""
        if self.pager.exhausted or self.pager.state is PagerState.IDLE:
            return False
        return await self._load(self.pager.next(), "Failed to load more scroll data")

    def reset(self) -> None:
        self.pager.reset()
        self.points = []
        self._seen = set()
        self.loading = False
        self.error = None

    async def _load(self, pending: Awaitable[Page], fallback: str) -> bool:
        self.loading = True
        self.error = None
        try:
            page = await pending
        except SyncError as exc:
            self.error = describe_error(exc, fallback)
            return False
        finally:
            self.loading = False
        if page.stale:
            return False
        self._extend(page.points)
        return True

    def _extend(self, points: tuple[Record, ...]) -> None:
        for point in points:
            key = self._key(point)
            if key is not None:
                if key in self._seen:
                    continue
                self._seen.add(key)
            self.points.append(point)
