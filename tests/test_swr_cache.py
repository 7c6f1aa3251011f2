import asyncio

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from centxo.cache.store import RedisCacheStore, user_cache_key
from centxo.cache.swr import SWRCache

FRESH, STALE = 300, 3600


class Counter:
    def __init__(self, values=None, fail=False):
        self.calls = 0
        self.values = values
        self.fail = fail
        self.gate: asyncio.Event | None = None

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("upstream down")
        return self.values[self.calls - 1] if self.values else f"v{self.calls}"


async def test_horizons(cache, clock):
    compute = Counter()
    first = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert first.value == "v1" and not first.is_stale

    clock.now = 100
    fresh = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert fresh.value == "v1"
    assert not fresh.is_stale and not fresh.revalidating
    assert compute.calls == 1

    clock.now = 400
    stale = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert stale.value == "v1"
    assert stale.is_stale and stale.revalidating
    await cache.drain()
    assert compute.calls == 2

    # Refreshed at t=400, so t=4100 is past the stale horizon of that entry too
    clock.now = 4100
    blocked = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert blocked.value == "v3" and not blocked.is_stale
    assert compute.calls == 3


async def test_read_past_stale_horizon_blocks_on_compute(cache, clock):
    compute = Counter()
    await cache.get_or_compute("k", FRESH, STALE, compute)
    clock.now = 4000
    result = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert result.value == "v2"
    assert not result.is_stale
    assert compute.calls == 2


async def test_concurrent_stale_reads_share_one_refresh(cache, clock):
    compute = Counter()
    await cache.get_or_compute("k", FRESH, STALE, compute)
    clock.now = 400
    compute.gate = asyncio.Event()

    results = await asyncio.gather(
        *(cache.get_or_compute("k", FRESH, STALE, compute) for _ in range(5))
    )
    assert all(r.is_stale and r.value == "v1" for r in results)

    compute.gate.set()
    await cache.drain()
    assert compute.calls == 2

    fresh = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert fresh.value == "v2" and not fresh.is_stale


async def test_background_failure_keeps_stale_value(cache, clock):
    good = Counter()
    await cache.get_or_compute("k", FRESH, STALE, good)
    clock.now = 400
    await cache.get_or_compute("k", FRESH, STALE, Counter(fail=True))
    await cache.drain()

    again = await cache.get_or_compute("k", FRESH, STALE, good)
    assert again.value == "v1"
    assert again.is_stale
    await cache.drain()


async def test_blocking_failure_propagates(cache):
    with pytest.raises(RuntimeError, match="upstream down"):
        await cache.get_or_compute("k", FRESH, STALE, Counter(fail=True))


async def test_delete_forces_recompute(cache):
    compute = Counter()
    await cache.get_or_compute("k", FRESH, STALE, compute)
    await cache.delete_cache("k")
    result = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert result.value == "v2"


async def test_namespace_invalidation_only_touches_owner(cache, store):
    mine = user_cache_key("u1", "campaigns", "act_1")
    theirs = user_cache_key("u2", "campaigns", "act_1")
    for key in (mine, theirs):
        await cache.get_or_compute(key, FRESH, STALE, Counter())

    removed = await cache.invalidate_namespace("u1")
    assert removed == 1
    assert await store.get(mine) is None
    assert await store.get(theirs) is not None


async def test_refresh_in_flight_during_invalidation_is_dropped(cache, clock, store):
    key = user_cache_key("u1", "ads", "act_1")
    compute = Counter()
    await cache.get_or_compute(key, FRESH, STALE, compute)
    clock.now = 400
    compute.gate = asyncio.Event()
    await cache.get_or_compute(key, FRESH, STALE, compute)

    await cache.invalidate_namespace("u1")
    compute.gate.set()
    await cache.drain()

    assert await store.get(key) is None


async def test_sweep_drops_only_expired_entries(store, clock):
    await store.set("a", 1, 10)
    await store.set("b", 2, 100)
    clock.now = 50
    assert await store.sweep() == 1
    assert await store.sweep() == 0
    assert await store.get("b") == 2


async def test_scheduled_sweep_uses_shared_store(monkeypatch, store, clock):
    from centxo.scheduler import jobs

    monkeypatch.setattr(jobs, "get_cache_store", lambda: store)
    await store.set("a", 1, 10)
    clock.now = 11
    await jobs.cache_sweep_job()
    assert await store.sweep() == 0


async def test_entry_at_exact_stale_horizon_is_served_stale(cache, clock):
    compute = Counter()
    await cache.get_or_compute("k", FRESH, STALE, compute)
    clock.now = STALE
    result = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert result.value == "v1"
    assert result.is_stale and result.revalidating
    await cache.drain()
    assert compute.calls == 2


# ── Redis outage ──


class DownRedis:
    async def get(self, key):
        raise RedisConnectionError("redis down")

    async def setex(self, key, ttl, value):
        raise RedisConnectionError("redis down")

    async def delete(self, *keys):
        raise RedisConnectionError("redis down")

    async def scan_iter(self, match=None):
        raise RedisConnectionError("redis down")
        yield  # pragma: no cover


async def test_redis_outage_degrades_to_uncached_reads():
    cache = SWRCache(RedisCacheStore(client=DownRedis()))
    compute = Counter()
    first = await cache.get_or_compute("k", FRESH, STALE, compute)
    second = await cache.get_or_compute("k", FRESH, STALE, compute)
    assert (first.value, second.value) == ("v1", "v2")

    await cache.delete_cache("k")
    assert await cache.invalidate_namespace("u1") == 0
