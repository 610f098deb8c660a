"""
Key-value cache for aggregated statistics and reports.

Values are stored as canonical JSON strings so that two reads of the same key
return identical payloads. Every operation degrades to a miss/no-op when the
cache is unreachable; the service keeps working without it.
"""
import json
import logging
from typing import Any, Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)

STATS_NAMESPACE = "stats"
REPORT_NAMESPACE = "report"

# Bumped on every invalidation in this process
_generation = 0


class CacheBackend(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete_pattern(self, pattern: str) -> int: ...

    async def ping(self) -> bool: ...


class RedisCache:
    def __init__(self, url: str) -> None:
        self._client = redis.from_url(url, decode_responses=True)

    async def get(self, key: str) -> str | None:
        try:
            return await self._client.get(key)
        except redis.RedisError as exc:
            logger.error("Cache get error for %s: %s", key, exc)
            return None

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            logger.error("Cache set error for %s: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> int:
        try:
            keys = [key async for key in self._client.scan_iter(match=pattern, count=100)]
            if keys:
                await self._client.delete(*keys)
                logger.info("Deleted %d cache keys matching %s", len(keys), pattern)
            return len(keys)
        except redis.RedisError as exc:
            logger.error("Cache pattern delete error for %s: %s", pattern, exc)
            return 0

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except redis.RedisError:
            return False

    async def close(self) -> None:
        await self._client.aclose()


def make_cache_key(namespace: str, operation: str, filters: dict[str, Any] | None = None) -> str:
    """`{namespace}:{operation}:{k=v&...}` with keys sorted and None values dropped."""
    items = sorted((k, v) for k, v in (filters or {}).items() if v is not None)
    filter_string = "&".join(f"{k}={v}" for k, v in items)
    return f"{namespace}:{operation}:{filter_string or 'default'}"


def dumps(data: Any) -> str:
    return json.dumps(data, sort_keys=True, default=str, separators=(",", ":"))


async def cached(cache: CacheBackend, key: str, ttl_seconds: int, compute) -> Any:
    """
    Return the cached value for key, or await compute(), store and return it.

    A result computed while this process invalidated the cache is returned but
    not stored. Invalidations made by other processes are not visible here, so
    a stale value can survive them for at most its TTL.
    """
    hit = await cache.get(key)
    if hit is not None:
        logger.debug("Cache hit: %s", key)
        return json.loads(hit)

    logger.debug("Cache miss: %s", key)
    generation = _generation
    payload = dumps(await compute())
    if generation == _generation:
        await cache.set(key, payload, ttl_seconds)
    else:
        logger.debug("Not storing %s: invalidated during computation", key)
    return json.loads(payload)


async def invalidate_transaction_caches(cache: CacheBackend) -> None:
    """Drop every cached statistic and report after a ledger write."""
    global _generation
    _generation += 1
    deleted = 0
    for namespace in (STATS_NAMESPACE, REPORT_NAMESPACE):
        deleted += await cache.delete_pattern(f"{namespace}:*")
    logger.info("Invalidated %d transaction-related cache keys", deleted)
