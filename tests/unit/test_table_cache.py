from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from metricbridge.packages.federation.errors import InternalError
from metricbridge.packages.federation.executor import MetricCacheKey, TableCache
from metricbridge.packages.federation.models import DataType, Operator, Predicate
from metricbridge.packages.federation.table import ColumnSpec, ColumnarTable


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _table(value: int = 1) -> ColumnarTable:
    return ColumnarTable.from_pydict([ColumnSpec("v", DataType.LONG)], {"v": [value]})


def _load(cache: TableCache, key: str, compute) -> list[dict]:
    with cache.get_or_compute(key, compute) as table:
        return table.to_pylist()


def test_concurrent_callers_trigger_a_single_load() -> None:
    cache = TableCache(name="test")
    calls = 0
    started = threading.Event()
    release = threading.Event()

    def compute() -> ColumnarTable:
        nonlocal calls
        calls += 1
        started.set()
        release.wait(timeout=5)
        return _table()

    with ThreadPoolExecutor(max_workers=8) as pool:
        futures = [pool.submit(_load, cache, "k", compute) for _ in range(8)]
        started.wait(timeout=5)
        release.set()
        results = [future.result(timeout=5) for future in futures]

    assert calls == 1
    assert all(result == [{"v": 1}] for result in results)
    assert cache.stats.loads == 1


def test_hit_does_not_recompute() -> None:
    cache = TableCache(name="test")

    with cache.get_or_compute("k", _table) as first:
        with cache.get_or_compute("k", lambda: pytest.fail("recomputed")) as second:
            assert first is second

    assert cache.stats.hits == 1
    assert "k" in cache


def test_lru_eviction_releases_table() -> None:
    cache = TableCache(name="test", max_entries=2)
    with cache.get_or_compute("a", _table) as a:
        pass
    _load(cache, "b", _table)
    _load(cache, "a", _table)

    with cache.get_or_compute("c", _table) as c:
        assert not c.released

    assert "b" not in cache
    assert "a" in cache and "c" in cache
    assert not a.released
    assert cache.stats.evictions == 1
    assert cache.stats.releases == 1


def test_table_read_inside_block_survives_eviction() -> None:
    cache = TableCache(name="test", max_entries=1)

    with cache.get_or_compute("a", _table) as a:
        _load(cache, "b", _table)
        assert "a" not in cache
        assert a.to_pylist() == [{"v": 1}]

    assert a.released
    with pytest.raises(InternalError):
        a.to_pylist()


def test_ttl_expiry_releases_and_recomputes() -> None:
    clock = _Clock()
    cache = TableCache(name="test", ttl_seconds=10, clock=clock)
    with cache.get_or_compute("k", lambda: _table(1)) as first:
        pass

    clock.now = 11
    with cache.get_or_compute("k", lambda: _table(2)) as second:
        assert second.to_pylist() == [{"v": 2}]

    assert first.released


def test_purge_expired() -> None:
    clock = _Clock()
    cache = TableCache(name="test", ttl_seconds=1, clock=clock)
    _load(cache, "a", _table)
    _load(cache, "b", _table)

    clock.now = 5

    assert cache.purge_expired() == 2
    assert len(cache) == 0


def test_pinned_entry_is_released_only_after_lease_closes() -> None:
    cache = TableCache(name="test")
    lease = cache.acquire("k", _table)

    assert cache.invalidate("k") is True
    assert "k" not in cache
    assert not lease.table.released

    lease.close()
    lease.close()

    assert lease.table.released
    assert cache.stats.releases == 1


def test_clear_releases_every_unpinned_table() -> None:
    cache = TableCache(name="test")
    tables = []
    for key in ("a", "b", "c"):
        with cache.get_or_compute(key, _table) as table:
            tables.append(table)

    cache.clear()

    assert all(table.released for table in tables)
    assert len(cache) == 0


def test_failed_compute_is_not_cached_and_reaches_waiters() -> None:
    cache = TableCache(name="test")
    started = threading.Event()
    release = threading.Event()

    def failing() -> ColumnarTable:
        started.set()
        release.wait(timeout=5)
        raise RuntimeError("boom")

    with ThreadPoolExecutor(max_workers=2) as pool:
        owner = pool.submit(_load, cache, "k", failing)
        started.wait(timeout=5)
        waiter = pool.submit(_load, cache, "k", failing)
        release.set()
        with pytest.raises(RuntimeError):
            owner.result(timeout=5)
        with pytest.raises(RuntimeError):
            waiter.result(timeout=5)

    assert "k" not in cache
    assert _load(cache, "k", _table) == [{"v": 1}]


def test_metric_cache_key_ignores_predicate_order() -> None:
    first = Predicate(column="ticker", operator=Operator.EQ, value="AAPL")
    second = Predicate(column="timestamp", operator=Operator.EQ, value=1000)

    assert MetricCacheKey.build("m", [first, second]) == MetricCacheKey.build("m", [second, first])
    assert MetricCacheKey.build("m", [first]) != MetricCacheKey.build("m", [])
