"""
Cursor pagination controller for one list session.

A list session is identified by (filters, page size). Its pages live in the
query cache; the controller only tracks load state and decides which cursor
to fetch next. The flattened item list is always recomputed from the cached
pages, so optimistic patches and rollbacks show up without any extra wiring.
"""

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, List, Optional, Protocol, Sequence, Tuple

import structlog

from resgrid.modules.resources.client.cache import Pages, QueryCache
from resgrid.modules.resources.client.keys import ResourceKeys
from resgrid.schemas.resources import ResourceFilters, ResourcePage, ResourceRead
from resgrid.shared.core.exceptions import TransportError
from resgrid.shared.core.retry import RetryPolicy, call_with_retry

logger = structlog.get_logger()


class PageFetcher(Protocol):
    async def fetch_page(
        self,
        cursor: Optional[str],
        page_size: int,
        filters: Optional[ResourceFilters] = None,
    ) -> ResourcePage: ...


class ListState(str, Enum):
    IDLE = "idle"
    LOADING_FIRST_PAGE = "loading_first_page"
    READY = "ready"
    LOADING_NEXT_PAGE = "loading_next_page"
    READY_WITH_ERROR = "ready_with_error"


def flatten_pages(pages: Sequence[ResourcePage]) -> Tuple[ResourceRead, ...]:
    return tuple(item for page in pages for item in page.data)


class InfiniteResourceList:
    """
    Accumulates pages for one filter set and exposes them as a flat list.

    At most one load (first page, next page or refetch) is in flight at a
    time; extra calls while one is running are no-ops.
    """

    def __init__(
        self,
        api: PageFetcher,
        cache: QueryCache,
        *,
        filters: Optional[ResourceFilters] = None,
        page_size: int = 50,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be a positive integer")
        self.filters = filters or ResourceFilters()
        self.page_size = page_size
        self.key = ResourceKeys.list(self.filters, page_size)
        self._api = api
        self._cache = cache
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

        self._state = ListState.IDLE
        self._error: Optional[TransportError] = None
        self._in_flight = False
        self._generation = 0
        self._attached = False
        self._disposed = False
        self._refetch_task: Optional["asyncio.Task[None]"] = None
        self._settle_listeners: List[Callable[[], None]] = []
        self._flat_source: Optional[Pages] = None
        self._flat_items: Tuple[ResourceRead, ...] = ()

    # ---------- Derived state ----------

    @property
    def state(self) -> ListState:
        return self._state

    @property
    def error(self) -> Optional[TransportError]:
        return self._error

    @property
    def pages(self) -> Pages:
        return self._cache.get_pages(self.key)

    @property
    def items(self) -> Tuple[ResourceRead, ...]:
        pages = self.pages
        if pages is not self._flat_source:
            self._flat_items = flatten_pages(pages)
            self._flat_source = pages
        return self._flat_items

    @property
    def total_count(self) -> int:
        pages = self.pages
        return pages[-1].total_count if pages else 0

    @property
    def has_next_page(self) -> bool:
        if self._disposed:
            return False
        pages = self.pages
        return not pages or pages[-1].next_cursor is not None

    @property
    def is_loading(self) -> bool:
        return self._in_flight

    @property
    def is_fetching_next_page(self) -> bool:
        return self._state is ListState.LOADING_NEXT_PAGE

    # ---------- Lifecycle ----------

    async def start(self) -> None:
        """Attach to the cache and show what it holds, loading the first page if empty."""
        if self._disposed:
            raise RuntimeError("List session has been disposed")
        if not self._attached:
            self._cache.observe(self.key)
            self._attached = True
        if self.pages:
            self._state = ListState.READY
            self.revalidate()
        else:
            await self.load_next_page()

    def dispose(self) -> None:
        """Detach from the cache. Results of loads still in flight are dropped."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._in_flight = False
        if self._refetch_task is not None and not self._refetch_task.done():
            self._refetch_task.cancel()
        if self._attached:
            self._cache.release(self.key)
            self._attached = False
        self._settle_listeners.clear()

    def on_settled(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Call `callback` whenever a load or refetch finishes, whoever started it.

        Returns the function that removes the callback.
        """
        self._settle_listeners.append(callback)

        def _remove() -> None:
            if callback in self._settle_listeners:
                self._settle_listeners.remove(callback)

        return _remove

    # ---------- Loading ----------

    async def load_next_page(self) -> None:
        """
        Fetch the page after the last cached one.

        No-op while another load is in flight, after the last page, or once
        disposed. After a failed load the same cursor is retried.
        """
        if self._disposed or self._in_flight:
            return
        pages = self.pages
        if pages and pages[-1].next_cursor is None:
            return

        cursor = pages[-1].next_cursor if pages else None
        first_page = not pages
        # Claimed before the first await so a concurrent caller sees it.
        self._in_flight = True
        self._state = ListState.LOADING_FIRST_PAGE if first_page else ListState.LOADING_NEXT_PAGE
        generation = self._generation
        epoch = self._cache.begin_fetch(self.key)

        try:
            page = await call_with_retry(
                lambda: self._api.fetch_page(cursor, self.page_size, self.filters),
                self._retry_policy,
                operation="load_page",
                sleep=self._sleep,
            )
        except TransportError as exc:
            if generation == self._generation:
                self._in_flight = False
                self._fail(exc, cursor=cursor)
            return
        except BaseException:
            if generation == self._generation:
                self._in_flight = False
                self._settle(False)
            raise

        if generation != self._generation:
            logger.debug("page_load_discarded", key=self.key, reason="disposed")
            return
        self._in_flight = False

        if first_page:
            committed = self._cache.commit_fetch(self.key, epoch, (page,))
        else:
            committed = self._cache.append_page(self.key, epoch, page, after_cursor=cursor)
        self._settle(committed)
        if committed:
            logger.debug(
                "page_loaded",
                key=self.key,
                pages=len(self.pages),
                items=len(page.data),
                has_more=page.has_more,
            )

    async def refetch(self) -> None:
        """
        Re-fetch as many pages as are cached, from the start of the list.

        The new sequence replaces the cached one wholesale when complete, so a
        failure part way through leaves the old pages untouched.
        """
        if self._disposed or self._in_flight:
            return
        page_count = max(1, len(self.pages))
        self._in_flight = True
        if not self.pages:
            self._state = ListState.LOADING_FIRST_PAGE
        generation = self._generation
        epoch = self._cache.begin_fetch(self.key)

        fetched: List[ResourcePage] = []
        cursor: Optional[str] = None
        try:
            for _ in range(page_count):
                page = await call_with_retry(
                    lambda: self._api.fetch_page(cursor, self.page_size, self.filters),
                    self._retry_policy,
                    operation="refetch_page",
                    sleep=self._sleep,
                )
                fetched.append(page)
                cursor = page.next_cursor
                if cursor is None:
                    break
        except TransportError as exc:
            if generation == self._generation:
                self._in_flight = False
                self._fail(exc, cursor=cursor)
            return
        except BaseException:
            if generation == self._generation:
                self._in_flight = False
                self._settle(False)
            raise

        if generation != self._generation:
            return
        self._in_flight = False
        committed = self._cache.commit_fetch(self.key, epoch, tuple(fetched))
        self._settle(committed)
        if committed:
            logger.debug("list_refetched", key=self.key, pages=len(fetched))

    def revalidate(self) -> Optional["asyncio.Task[None]"]:
        """
        Start a background refetch when the cached pages are stale or invalidated.

        Cached pages stay visible while the refetch runs. Returns the task, or
        None when nothing needed doing.
        """
        if self._disposed or self._in_flight:
            return None
        if not self._cache.is_stale(self.key):
            return None
        task = asyncio.get_running_loop().create_task(self.refetch())
        self._refetch_task = task
        return task

    def read(self) -> Tuple[ResourceRead, ...]:
        """Current items, revalidating in the background when stale."""
        self.revalidate()
        return self.items

    # ---------- Internals ----------

    def _fail(self, exc: TransportError, *, cursor: Optional[str]) -> None:
        self._error = exc
        self._state = ListState.READY_WITH_ERROR
        logger.warning(
            "page_load_failed",
            key=self.key,
            cursor=cursor,
            error=exc.message,
            code=exc.code,
            upstream_status=exc.upstream_status,
        )
        self._notify_settled()

    def _settle(self, committed: bool) -> None:
        if committed:
            self._error = None
            self._state = ListState.READY
        elif self.pages:
            # Superseded by a cancel; the cached pages are still valid.
            self._state = ListState.READY
        elif self._error is None:
            self._state = ListState.IDLE
        else:
            self._state = ListState.READY_WITH_ERROR
        self._notify_settled()

    def _notify_settled(self) -> None:
        for callback in list(self._settle_listeners):
            callback()
