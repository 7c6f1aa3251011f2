"""Centxo — Stale-While-Revalidate Cache.

Two horizons per entry:
  age <= fresh_ttl          → cached value, no work
  fresh_ttl < age <= stale  → cached value now, one background recompute
  age > stale_ttl / absent  → caller waits for compute()

Concurrent stale reads of one key share a single in-flight recompute.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from centxo.cache.store import CacheStore, get_cache_store, user_namespace
from centxo.core.logging import get_logger
from centxo.models.domain import CacheResult

logger = get_logger("cache.swr")

Compute = Callable[[], Awaitable[Any]]


class SWRCache:
    def __init__(
        self,
        store: CacheStore,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.clock = clock
        self._inflight: Dict[str, asyncio.Task] = {}
        # Keys invalidated while a recompute was running; its result is dropped
        self._discard: Set[str] = set()

    async def get_or_compute(
        self,
        key: str,
        fresh_ttl: int,
        stale_ttl: int,
        compute: Compute,
        cacheable: Optional[Callable[[Any], bool]] = None,
    ) -> CacheResult:
        """Serve `key` by age. Values rejected by `cacheable` are returned
        but never written, so the next read computes again."""
        entry = await self.store.get(key)
        if entry is not None:
            age = self.clock() - entry["computed_at"]
            if age <= fresh_ttl:
                logger.debug(f"Cache HIT (fresh, age {age:.0f}s)", extra={"cache_key": key})
                return CacheResult(value=entry["value"])
            if age <= stale_ttl:
                logger.info(
                    f"Cache STALE (age {age:.0f}s), background refresh",
                    extra={"cache_key": key},
                )
                self._schedule_refresh(key, fresh_ttl, stale_ttl, compute, cacheable)
                return CacheResult(value=entry["value"], is_stale=True, revalidating=True)

        logger.info("Cache MISS, computing", extra={"cache_key": key})
        value = await compute()
        if cacheable is None or cacheable(value):
            await self._put(key, value, fresh_ttl, stale_ttl)
        return CacheResult(value=value)

    async def delete_cache(self, key: str) -> None:
        """The next access treats `key` as absent."""
        if key in self._inflight:
            self._discard.add(key)
        await self.store.delete(key)

    async def invalidate_namespace(self, owner_id: str) -> int:
        """Remove every key owned by `owner_id`, including in-flight refreshes."""
        prefix = user_namespace(owner_id)
        self._discard.update(k for k in self._inflight if k.startswith(prefix))
        removed = await self.store.delete_prefix(prefix)
        logger.info(f"Invalidated {removed} cache keys for owner {owner_id}")
        return removed

    def is_refreshing(self, key: str) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def drain(self) -> None:
        """Wait for every background refresh to settle."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    # ── Internals ──

    async def _put(self, key: str, value: Any, fresh_ttl: int, stale_ttl: int) -> None:
        entry = {
            "value": value,
            "computed_at": self.clock(),
            "fresh_ttl": fresh_ttl,
            "stale_ttl": stale_ttl,
        }
        # Kept one second past the stale horizon so age == stale_ttl still reads
        await self.store.set(key, entry, stale_ttl + 1)

    def _schedule_refresh(
        self,
        key: str,
        fresh_ttl: int,
        stale_ttl: int,
        compute: Compute,
        cacheable: Optional[Callable[[Any], bool]] = None,
    ) -> None:
        if self.is_refreshing(key):
            return
        task = asyncio.create_task(self._refresh(key, fresh_ttl, stale_ttl, compute, cacheable))
        self._inflight[key] = task
        task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))

    async def _refresh(
        self,
        key: str,
        fresh_ttl: int,
        stale_ttl: int,
        compute: Compute,
        cacheable: Optional[Callable[[Any], bool]] = None,
    ) -> None:
        try:
            value = await compute()
        except Exception:
            # Stale value stays in place until stale_ttl
            logger.exception("Background refresh failed", extra={"cache_key": key})
            self._discard.discard(key)
            return
        if key in self._discard:
            self._discard.discard(key)
            logger.info("Dropped refresh of invalidated key", extra={"cache_key": key})
            return
        if cacheable is not None and not cacheable(value):
            logger.info("Refresh result not cacheable, keeping stale value", extra={"cache_key": key})
            return
        await self._put(key, value, fresh_ttl, stale_ttl)
        logger.info("Background refresh complete", extra={"cache_key": key})


_cache: Optional[SWRCache] = None


def get_swr_cache() -> SWRCache:
    global _cache
    if _cache is None:
        _cache = SWRCache(get_cache_store())
    return _cache
