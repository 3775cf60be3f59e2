from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from contextlib import contextmanager
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Hashable, Iterable, Iterator, NamedTuple

from metricbridge.packages.common.metricbridge_common.monitoring.prometheus import record_cache_event
from metricbridge.packages.federation.models.plans import Predicate
from metricbridge.packages.federation.table.columnar import ColumnarTable

logger = logging.getLogger(__name__)


class MetricCacheKey(NamedTuple):
    metric_name: str
    options: tuple[str, ...]

    @classmethod
    def build(cls, metric_name: str, predicates: Iterable[Predicate]) -> "MetricCacheKey":
        return cls(metric_name, tuple(sorted(predicate.cache_token() for predicate in predicates)))


@dataclass(frozen=True, slots=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    loads: int
    evictions: int
    releases: int


@dataclass(slots=True)
class _Entry:
    key: Hashable
    table: ColumnarTable
    created_at: float
    pins: int = 0
    evicted: bool = False
    released: bool = False


@dataclass(slots=True)
class _Pending:
    future: Future = field(default_factory=Future)
    waiters: int = 0


class CacheLease:
    """A pinned reference to a cached table. The table is not released while a lease is open."""

    def __init__(self, cache: "TableCache", entry: _Entry, *, hit: bool) -> None:
        self._cache = cache
        self._entry = entry
        self._closed = False
        self._close_lock = threading.Lock()
        self.hit = hit

    @property
    def table(self) -> ColumnarTable:
        return self._entry.table

    def close(self) -> None:
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self._cache._unpin(self._entry)

    def __enter__(self) -> "CacheLease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class TableCache:
    """Compute-once LRU/TTL cache of columnar tables.

    The cache is the owner of every table it stores. A table leaves the cache on
    capacity or time-based eviction, ``invalidate`` or ``clear``; it is released
    exactly once, after the last open lease on it is closed.
    """

    def __init__(
        self,
        *,
        name: str,
        max_entries: int = 100,
        ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1.")
        self.name = name
        self._max_entries = max_entries
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[Hashable, _Entry] = OrderedDict()
        self._pending: dict[Hashable, _Pending] = {}
        self._hits = 0
        self._misses = 0
        self._loads = 0
        self._evictions = 0
        self._releases = 0

    @contextmanager
    def get_or_compute(self, key: Hashable, compute: Callable[[], ColumnarTable]) -> Iterator[ColumnarTable]:
        """Yield the cached table for ``key``, computing it once if needed.

        The table stays owned by the cache and pinned until the block exits.
        """
        with self.acquire(key, compute) as lease:
            yield lease.table

    def acquire(self, key: Hashable, compute: Callable[[], ColumnarTable]) -> CacheLease:
        expired: list[_Entry] = []
        with self._lock:
            expired = self._purge_expired_locked()
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                entry.pins += 1
                self._hits += 1
                hit = True
                pending = None
            else:
                hit = False
                pending = self._pending.get(key)
                owner = pending is None
                if owner:
                    pending = _Pending()
                    self._pending[key] = pending
                    self._misses += 1
                else:
                    pending.waiters += 1
        self._release_all(expired)

        if hit:
            record_cache_event(self.name, "hit")
            return CacheLease(self, entry, hit=True)

        if not owner:
            record_cache_event(self.name, "wait")
            # pinned on our behalf by the computing caller
            return CacheLease(self, pending.future.result(), hit=True)

        record_cache_event(self.name, "miss")
        return CacheLease(self, self._compute(key, pending, compute), hit=False)

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
            to_release = self._evict_locked(entry) if entry is not None else []
        self._release_all(to_release)
        return entry is not None

    def clear(self) -> None:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            to_release = [item for entry in entries for item in self._evict_locked(entry)]
        self._release_all(to_release)
        logger.info("Cleared %s cache (%d entries)", self.name, len(entries))

    def purge_expired(self) -> int:
        with self._lock:
            expired = self._purge_expired_locked()
        self._release_all(expired)
        return len(expired)

    @property
    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                loads=self._loads,
                evictions=self._evictions,
                releases=self._releases,
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry)

    def _compute(self, key: Hashable, pending: _Pending, compute: Callable[[], ColumnarTable]) -> _Entry:
        started = time.perf_counter()
        try:
            table = compute()
        except BaseException as exc:
            with self._lock:
                self._pending.pop(key, None)
            pending.future.set_exception(exc)
            record_cache_event(self.name, "load_error")
            raise

        with self._lock:
            self._pending.pop(key, None)
            entry = _Entry(key=key, table=table, created_at=self._clock(), pins=1 + pending.waiters)
            self._entries[key] = entry
            self._loads += 1
            to_release = self._evict_overflow_locked()
        pending.future.set_result(entry)
        self._release_all(to_release)
        record_cache_event(self.name, "load")
        logger.debug(
            "Loaded %s cache entry %s in %.1f ms (%d rows)",
            self.name,
            key,
            (time.perf_counter() - started) * 1000,
            table.row_count,
        )
        return entry

    def _unpin(self, entry: _Entry) -> None:
        with self._lock:
            entry.pins -= 1
            to_release = self._claim_release_locked(entry)
        self._release_all(to_release)

    def _expired(self, entry: _Entry) -> bool:
        return self._clock() - entry.created_at >= self._ttl_seconds

    def _purge_expired_locked(self) -> list[_Entry]:
        expired_keys = [key for key, entry in self._entries.items() if self._expired(entry)]
        to_release: list[_Entry] = []
        for key in expired_keys:
            to_release.extend(self._evict_locked(self._entries.pop(key)))
        return to_release

    def _evict_overflow_locked(self) -> list[_Entry]:
        to_release: list[_Entry] = []
        while len(self._entries) > self._max_entries:
            _, entry = self._entries.popitem(last=False)
            to_release.extend(self._evict_locked(entry))
        return to_release

    def _evict_locked(self, entry: _Entry) -> list[_Entry]:
        entry.evicted = True
        self._evictions += 1
        return self._claim_release_locked(entry)

    def _claim_release_locked(self, entry: _Entry) -> list[_Entry]:
        if entry.evicted and entry.pins <= 0 and not entry.released:
            entry.released = True
            self._releases += 1
            return [entry]
        return []

    def _release_all(self, entries: list[_Entry]) -> None:
        for entry in entries:
            entry.table.release()
            record_cache_event(self.name, "release")
            logger.debug("Released %s cache entry %s", self.name, entry.key)
