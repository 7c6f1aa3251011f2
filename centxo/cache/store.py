"""Centxo — Shared Cache Store.

Keyed, TTL-scoped storage behind the SWR cache and the credential resolver.
Values must be JSON-serialisable so the Redis backend can hold them.
"""

import json
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from centxo.config import settings
from centxo.core.logging import get_logger

logger = get_logger("cache.store")


def generate_cache_key(prefix: str, *parts: Any) -> str:
    return ":".join([prefix, *(str(p) for p in parts)])


def user_namespace(owner_id: str) -> str:
    return f"user:{owner_id}:"


def user_cache_key(owner_id: str, kind: str, *parts: Any) -> str:
    """Key inside a user's namespace, removable by one prefix delete."""
    return generate_cache_key(f"user:{owner_id}:{kind}", *parts)


class CacheStore(ABC):
    """Abstract key/value store with per-key expiry."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with `prefix`. Returns how many went."""
        ...

    async def sweep(self) -> int:
        """Drop expired entries. Backends with native expiry need not override."""
        return 0

    async def close(self) -> None:
        return None


class InMemoryCacheStore(CacheStore):
    """Process-local store. The clock is injectable for tests."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: Dict[str, Tuple[Any, float]] = {}

    async def get(self, key: str) -> Optional[Any]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        self._data[key] = (value, self.clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data if k.startswith(prefix)]
        for k in keys:
            del self._data[k]
        return len(keys)

    async def sweep(self) -> int:
        now = self.clock()
        expired = [k for k, (_, exp) in self._data.items() if now >= exp]
        for k in expired:
            del self._data[k]
        return len(expired)


class RedisCacheStore(CacheStore):
    """Redis-backed store shared across processes.

    Errors are logged and reported as a miss (or a no-op for writes and
    deletes) so a Redis outage degrades to uncached reads instead of failing
    them.
    """

    def __init__(self, url: str | None = None, client: redis.Redis | None = None):
        self.client = client if client is not None else redis.from_url(url or settings.redis_url, decode_responses=True)

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self.client.get(key)
        except RedisError as e:
            logger.error(f"Redis get error: {e}", extra={"cache_key": key})
            return None
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.client.setex(key, ttl_seconds, json.dumps(value, default=str))
        except RedisError as e:
            logger.error(f"Redis set error: {e}", extra={"cache_key": key})

    async def delete(self, key: str) -> None:
        try:
            await self.client.delete(key)
        except RedisError as e:
            logger.error(f"Redis delete error: {e}", extra={"cache_key": key})

    async def delete_prefix(self, prefix: str) -> int:
        try:
            keys = [k async for k in self.client.scan_iter(match=f"{prefix}*")]
            if keys:
                await self.client.delete(*keys)
        except RedisError as e:
            logger.error(f"Redis prefix delete error: {e}", extra={"cache_key": prefix})
            return 0
        return len(keys)

    async def close(self) -> None:
        await self.client.aclose()


_store: Optional[CacheStore] = None


def get_cache_store() -> CacheStore:
    """Process-wide store: Redis when REDIS_URL is set, otherwise in-memory."""
    global _store
    if _store is None:
        if settings.redis_url:
            logger.info("Cache backend: Redis")
            _store = RedisCacheStore(settings.redis_url)
        else:
            logger.info("Cache backend: in-memory")
            _store = InMemoryCacheStore()
    return _store
