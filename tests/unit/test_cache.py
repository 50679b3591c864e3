import asyncio
import datetime
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from querycore.core.cache import ANY_TABLE, DEFAULT_NAMESPACE, MISS, ResultCache, compute_key
from querycore.core.options import QueryOptions, SortOrder

pytestmark = pytest.mark.anyio


def test_compute_key_is_deterministic():
    sql = "SELECT * FROM audios WHERE subject = ?"
    assert compute_key(sql, ["biology"]) == compute_key(sql, ("biology",))
    assert compute_key(sql, ["biology"]).startswith(f"{DEFAULT_NAMESPACE}:")


@pytest.mark.parametrize(
    ("left", "right"),
    [
        (["biology"], ["chemistry"]),
        ([1, 2], [2, 1]),
        ([1], ["1"]),
        ([1], [True]),
        ([1], [1.0]),
        ([None], ["None"]),
        ([datetime.date(2024, 1, 1)], ["2024-01-01"]),
        ([Decimal("1.10")], [Decimal("1.1")]),
    ],
)
def test_compute_key_distinguishes_parameters(left, right):
    sql = "SELECT * FROM audios WHERE a = ? OR a = ?"
    assert compute_key(sql, left) != compute_key(sql, right)


def test_compute_key_distinguishes_sql():
    assert compute_key("SELECT 1") != compute_key("SELECT  1")


def test_compute_key_uses_only_result_shaping_options():
    sql = "SELECT * FROM audios"
    base = QueryOptions()
    assert compute_key(sql, (), base) == compute_key(sql, (), base.replace(use_cache=False, timeout=2.0))
    assert compute_key(sql, (), base) == compute_key(sql, (), base.replace(cache_ttl_millis=5))
    assert compute_key(sql, (), base) != compute_key(sql, (), base.replace(page=2))
    assert compute_key(sql, (), base) != compute_key(sql, (), base.replace(sort_order=SortOrder.ASC))


def test_compute_key_accepts_camel_case_mappings():
    sql = "SELECT * FROM audios"
    mapping = {"page": 1, "limit": 20, "sortBy": None, "sortOrder": "DESC", "useCache": True}
    assert compute_key(sql, (), mapping) == compute_key(sql, (), QueryOptions())


def test_compute_key_namespace_prefix():
    key = compute_key("SELECT * FROM audios", namespace="audios")
    namespace, digest = key.split(":")
    assert namespace == "audios"
    assert len(digest) == 64


def test_put_get_round_trip(cache):
    cache.put("k", {"rows": [1]})
    assert cache.get("k") == {"rows": [1]}
    assert "k" in cache
    assert len(cache) == 1


def test_get_unknown_key_is_miss(cache):
    assert cache.get("nope") is MISS
    assert not MISS


def test_falsy_values_are_cached(cache):
    cache.put("empty", [])
    assert cache.get("empty") == []


def test_entry_expires_after_ttl(cache, clock):
    cache.put("k", "v", ttl_millis=1000)
    clock.advance_millis(1000)
    assert cache.get("k") == "v"
    clock.advance_millis(1)
    assert cache.get("k") is MISS
    assert len(cache) == 0
    assert cache.stats().expirations == 1


def test_default_ttl_applies(clock):
    cache = ResultCache(default_ttl_millis=50, clock=clock)
    cache.put("k", "v")
    clock.advance_millis(51)
    assert cache.get("k") is MISS


@pytest.mark.parametrize("ttl", [0, -1])
def test_non_positive_ttl_is_rejected(cache, ttl):
    with pytest.raises(ValueError):
        cache.put("k", "v", ttl_millis=ttl)
    assert "k" not in cache


def test_invalid_default_ttl_is_rejected():
    with pytest.raises(ValueError):
        ResultCache(default_ttl_millis=0)


def test_put_overwrites(cache):
    cache.put("k", 1)
    cache.put("k", 2)
    assert cache.get("k") == 2
    assert len(cache) == 1


def test_delete(cache):
    cache.put("k", 1)
    assert cache.delete("k")
    assert not cache.delete("k")
    assert cache.get("k") is MISS


def test_invalidate_prefix_only_removes_matching_keys(cache):
    cache.put("audios:a", 1)
    cache.put("audios:b", 2)
    cache.put("audios_archive:c", 3)
    cache.put("speakers:d", 4)
    assert cache.invalidate_namespace("audios") == 2
    assert sorted(cache.keys()) == ["audios_archive:c", "speakers:d"]
    assert cache.invalidate_prefix("") == 2
    assert len(cache) == 0


def test_purge_expired(cache, clock):
    cache.put("short", 1, ttl_millis=10)
    cache.put("long", 2, ttl_millis=10_000)
    clock.advance_millis(11)
    assert cache.purge_expired() == 1
    assert cache.keys() == ["long"]


def test_has_does_not_count_as_lookup(cache):
    cache.put("k", 1)
    assert cache.has("k")
    stats = cache.stats()
    assert stats.hits == 0
    assert stats.misses == 0


def test_stats_and_hot_keys(cache):
    cache.put("a", 1)
    cache.put("b", 2)
    cache.get("a")
    cache.get("a")
    cache.get("b")
    cache.get("missing")
    stats = cache.stats()
    assert (stats.hits, stats.misses, stats.sets, stats.size) == (3, 1, 2, 2)
    assert stats.hit_rate == pytest.approx(0.75)
    assert cache.hot_keys(1) == [("a", 2)]
    assert stats.as_dict()["hits"] == 3


def test_clear_resets_everything(cache):
    cache.put("a", 1)
    cache.get("a")
    cache.clear()
    assert len(cache) == 0
    assert cache.stats().hits == 0


async def test_get_or_compute_caches_result(cache):
    calls = 0

    async def factory():
        nonlocal calls
        calls += 1
        return "value"

    assert await cache.get_or_compute("k", factory) == "value"
    assert await cache.get_or_compute("k", factory) == "value"
    assert calls == 1


async def test_get_or_compute_shares_inflight_call(cache):
    calls = 0
    release = asyncio.Event()

    async def factory():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"rows": []}

    tasks = [asyncio.ensure_future(cache.get_or_compute("k", factory)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks)
    assert calls == 1
    assert all(result is results[0] for result in results)


async def test_get_or_compute_failure_reaches_all_waiters_and_caches_nothing(cache):
    calls = 0
    release = asyncio.Event()

    async def factory():
        nonlocal calls
        calls += 1
        await release.wait()
        raise RuntimeError("backend down")

    tasks = [asyncio.ensure_future(cache.get_or_compute("k", factory)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    outcomes = await asyncio.gather(*tasks, return_exceptions=True)
    assert calls == 1
    assert all(isinstance(outcome, RuntimeError) for outcome in outcomes)
    assert "k" not in cache

    async def recovered():
        return "ok"

    assert await cache.get_or_compute("k", recovered) == "ok"


def test_invalidate_tables_matches_any_referenced_table(cache):
    cache.put("audios:joined", 1, tables=["audios", "Ratings"])
    cache.put("audios:plain", 2, tables=["audios"])
    cache.put("search:page", 3, tables=["audios"])
    cache.put("speakers:a", 4, tables=["speakers"])
    cache.put("query:unknown", 5, tables=None)
    cache.put("custom:untagged", 6)
    assert cache._entries["query:unknown"].tables == frozenset({ANY_TABLE})

    assert cache.invalidate_tables(["ratings"]) == 2
    assert sorted(cache.keys()) == ["audios:plain", "custom:untagged", "search:page", "speakers:a"]
    assert cache.invalidate_tables(["audios"]) == 2
    assert cache.invalidate_tables([]) == 0
    assert sorted(cache.keys()) == ["custom:untagged", "speakers:a"]


async def test_get_or_compute_tags_stored_value(cache):
    async def factory():
        return "rows"

    await cache.get_or_compute("audios:k", factory, tables={"audios", "ratings"})
    assert cache.invalidate_tables({"ratings"}) == 1


async def test_cancelled_caller_does_not_cancel_other_waiters(cache):
    calls = 0
    release = asyncio.Event()

    async def factory():
        nonlocal calls
        calls += 1
        await release.wait()
        return 42

    first = asyncio.ensure_future(cache.get_or_compute("k", factory))
    await asyncio.sleep(0)
    second = asyncio.ensure_future(cache.get_or_compute("k", factory))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    release.set()
    assert await second == 42
    assert calls == 1
    assert cache.get("k") == 42


async def test_computation_is_abandoned_when_every_caller_gives_up(cache):
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def factory():
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise

    waiter = asyncio.ensure_future(cache.get_or_compute("k", factory))
    await started.wait()
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    await asyncio.wait_for(cancelled.wait(), 1)
    assert "k" not in cache

    async def fresh():
        return "again"

    assert await cache.get_or_compute("k", fresh) == "again"


def test_concurrent_threads_see_whole_values(cache):
    values = [{"rows": [index] * 50, "row_count": 50} for index in range(20)]

    def writer(worker):
        for round_ in range(200):
            cache.put(f"audios:{worker}", values[(worker + round_) % len(values)], tables=["audios"])
            if round_ % 25 == 0:
                cache.invalidate_prefix(f"audios:{worker}")

    def reader(worker):
        seen = []
        for _ in range(200):
            value = cache.get(f"audios:{worker % 4}")
            if value is not MISS:
                seen.append(value)
        return seen

    with ThreadPoolExecutor(max_workers=8) as pool:
        writes = [pool.submit(writer, worker) for worker in range(4)]
        reads = [pool.submit(reader, worker) for worker in range(8)]
        for future in writes:
            future.result()
        observed = [value for future in reads for value in future.result()]

    assert all(any(value is candidate for candidate in values) for value in observed)
    stats = cache.stats()
    assert stats.hits + stats.misses == 8 * 200
    assert stats.size == len(cache.keys())


async def test_warmup_fills_entries_and_reports_failures(cache):
    async def rows():
        return ["row"]

    async def broken():
        raise RuntimeError("backend down")

    cache.put("audios:cached", "existing")
    failures = await cache.warmup(
        [("audios:new", rows, None), ("audios:bad", broken, 1000), ("audios:cached", rows, None)]
    )

    assert list(failures) == ["audios:bad"]
    assert isinstance(failures["audios:bad"], RuntimeError)
    assert cache.get("audios:new") == ["row"]
    assert cache.get("audios:cached") == "existing"
    assert "audios:bad" not in cache
