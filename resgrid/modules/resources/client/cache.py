"""
Client Query Cache

Keyed store of fetched resource pages. The cache is the only shared mutable
state on the client: list controllers and the mutation coordinator write to
it exclusively through the operations below, and readers only ever see whole
page tuples (pages are immutable, every write swaps in new tuples).

Async writes use an epoch protocol: `begin_fetch` hands out the entry's
current epoch, `cancel` moves the entry to a fresh epoch, and a commit whose
epoch no longer matches is discarded.
"""

import itertools
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import structlog

from resgrid.modules.resources.client.keys import QueryKey, key_matches
from resgrid.schemas.resources import ResourcePage
from resgrid.shared.core.config import Settings, get_settings
from resgrid.shared.core.exceptions import CacheConsistencyViolation

logger = structlog.get_logger()

Pages = Tuple[ResourcePage, ...]
PageTransform = Callable[[ResourcePage], ResourcePage]


@dataclass(frozen=True)
class CacheOptions:
    """Staleness policy. Both windows are milliseconds."""

    freshness_window_ms: int = 60_000
    idle_eviction_ms: int = 600_000

    def __post_init__(self) -> None:
        if self.freshness_window_ms < 0:
            raise ValueError("freshness_window_ms must be >= 0")
        if self.idle_eviction_ms < self.freshness_window_ms:
            raise ValueError("idle_eviction_ms must be >= freshness_window_ms")

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "CacheOptions":
        settings = settings or get_settings()
        return cls(
            freshness_window_ms=settings.CACHE_FRESHNESS_WINDOW_MS,
            idle_eviction_ms=settings.CACHE_IDLE_EVICTION_MS,
        )


@dataclass(frozen=True)
class EntrySnapshot:
    """Saved value of one entry, restorable verbatim."""

    key: QueryKey
    pages: Pages
    updated_at: float
    is_invalidated: bool


@dataclass
class CacheEntry:
    key: QueryKey
    epoch: int
    pages: Pages = ()
    updated_at: float = 0.0
    is_invalidated: bool = False
    observers: int = 0
    idle_since: Optional[float] = None
    has_data: bool = field(default=False)

    def snapshot(self) -> EntrySnapshot:
        return EntrySnapshot(
            key=self.key,
            pages=self.pages,
            updated_at=self.updated_at,
            is_invalidated=self.is_invalidated,
        )


class QueryCache:
    def __init__(
        self,
        options: Optional[CacheOptions] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.options = options or CacheOptions()
        self._clock = clock
        self._entries: Dict[QueryKey, CacheEntry] = {}
        # Epochs are global so a recreated entry never reuses an old epoch.
        self._epochs = itertools.count(1)

    # ---------- Reads ----------

    def get(self, key: QueryKey) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def get_pages(self, key: QueryKey) -> Pages:
        entry = self._entries.get(key)
        return entry.pages if entry is not None else ()

    def keys(self, prefix: QueryKey = ()) -> List[QueryKey]:
        return [key for key in self._entries if key_matches(key, prefix)]

    def is_stale(self, key: QueryKey) -> bool:
        """True when the entry should be refetched before (or while) being served."""
        entry = self._entries.get(key)
        if entry is None or not entry.has_data or entry.is_invalidated:
            return True
        age_ms = (self._clock() - entry.updated_at) * 1000
        return age_ms >= self.options.freshness_window_ms

    # ---------- Writes ----------

    def set_pages(self, key: QueryKey, pages: Pages) -> CacheEntry:
        """Replace an entry's page sequence wholesale and mark it fresh."""
        entry = self._ensure_entry(key)
        entry.pages = tuple(pages)
        entry.updated_at = self._clock()
        entry.is_invalidated = False
        entry.has_data = True
        return entry

    def patch_all_matching(self, prefix: QueryKey, transform: PageTransform) -> List[QueryKey]:
        """
        Apply `transform` to every page of every entry under `prefix`.

        All new page tuples are computed before any is stored, so a transform
        that raises leaves the cache untouched. Freshness is not changed.
        """
        staged: List[Tuple[CacheEntry, Pages]] = []
        for key in self.keys(prefix):
            entry = self._entries[key]
            if not entry.has_data:
                continue
            new_pages = tuple(transform(page) for page in entry.pages)
            if any(new is not old for new, old in zip(new_pages, entry.pages)):
                staged.append((entry, new_pages))

        for entry, new_pages in staged:
            entry.pages = new_pages
        return [entry.key for entry, _ in staged]

    def invalidate(self, prefix: QueryKey) -> List[QueryKey]:
        """Mark matching entries stale; observers refetch on their next read."""
        invalidated = []
        for key in self.keys(prefix):
            self._entries[key].is_invalidated = True
            invalidated.append(key)
        if invalidated:
            logger.debug("cache_invalidated", prefix=prefix, count=len(invalidated))
        return invalidated

    def cancel(self, prefix: QueryKey) -> List[QueryKey]:
        """Supersede in-flight fetches for matching entries; their results will be dropped."""
        cancelled = []
        for key in self.keys(prefix):
            self._entries[key].epoch = next(self._epochs)
            cancelled.append(key)
        return cancelled

    def remove(self, key: QueryKey) -> None:
        """Drop an entry and its whole page sequence."""
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    # ---------- Snapshots ----------

    def snapshot(self, prefix: QueryKey) -> Dict[QueryKey, EntrySnapshot]:
        return {
            key: self._entries[key].snapshot()
            for key in self.keys(prefix)
            if self._entries[key].has_data
        }

    def restore(self, snapshots: Mapping[QueryKey, EntrySnapshot]) -> None:
        """
        Put saved entries back exactly as they were.

        Restoration is whole-entry: an entry evicted since the snapshot is
        recreated, and anything written to a snapshotted entry in between is
        overwritten.
        """
        for key, saved in snapshots.items():
            entry = self._ensure_entry(key)
            entry.pages = saved.pages
            entry.updated_at = saved.updated_at
            entry.is_invalidated = saved.is_invalidated
            entry.has_data = True

    # ---------- Fetch protocol ----------

    def begin_fetch(self, key: QueryKey) -> int:
        return self._ensure_entry(key).epoch

    def commit_fetch(self, key: QueryKey, epoch: int, pages: Pages) -> bool:
        """Store a full page sequence fetched under `epoch`. False if superseded."""
        try:
            self._check_epoch(key, epoch)
        except CacheConsistencyViolation as exc:
            self._report(exc)
            return False
        self.set_pages(key, pages)
        return True

    def append_page(
        self, key: QueryKey, epoch: int, page: ResourcePage, after_cursor: Optional[str]
    ) -> bool:
        """
        Append a page fetched with `after_cursor`.

        The page is only appended while the entry still ends at that cursor;
        otherwise it would splice two different sequences together.
        """
        try:
            entry = self._check_epoch(key, epoch)
            last_cursor = entry.pages[-1].next_cursor if entry.pages else None
            if last_cursor != after_cursor:
                raise CacheConsistencyViolation(
                    "Page cursor no longer matches the end of the sequence",
                    details={"key": repr(key), "expected": last_cursor, "got": after_cursor},
                )
        except CacheConsistencyViolation as exc:
            self._report(exc)
            return False
        entry.pages = entry.pages + (page,)
        entry.has_data = True
        if len(entry.pages) == 1:
            entry.updated_at = self._clock()
            entry.is_invalidated = False
        return True

    # ---------- Observers and eviction ----------

    def observe(self, key: QueryKey) -> CacheEntry:
        self.collect_garbage()
        entry = self._ensure_entry(key)
        entry.observers += 1
        entry.idle_since = None
        return entry

    def release(self, key: QueryKey) -> None:
        entry = self._entries.get(key)
        if entry is None or entry.observers == 0:
            return
        entry.observers -= 1
        if entry.observers == 0:
            entry.idle_since = self._clock()

    def collect_garbage(self) -> List[QueryKey]:
        """Evict entries nobody has observed for longer than the idle window."""
        now = self._clock()
        limit_s = self.options.idle_eviction_ms / 1000
        evicted = [
            key
            for key, entry in self._entries.items()
            if entry.observers == 0
            and entry.idle_since is not None
            and now - entry.idle_since >= limit_s
        ]
        for key in evicted:
            del self._entries[key]
        if evicted:
            logger.debug("cache_entries_evicted", count=len(evicted))
        return evicted

    # ---------- Internals ----------

    def _ensure_entry(self, key: QueryKey) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key=key, epoch=next(self._epochs), idle_since=self._clock())
            self._entries[key] = entry
        return entry

    def _check_epoch(self, key: QueryKey, epoch: int) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            raise CacheConsistencyViolation(
                "Fetch result for an evicted entry", details={"key": repr(key)}
            )
        if entry.epoch != epoch:
            raise CacheConsistencyViolation(
                "Fetch result superseded by a newer epoch",
                details={"key": repr(key), "epoch": epoch, "current": entry.epoch},
            )
        return entry

    @staticmethod
    def _report(exc: CacheConsistencyViolation) -> None:
        logger.warning("cache_consistency_violation", reason=exc.message, **exc.details)
