import json
import logging
import time
from typing import Callable, Iterable

import redis.asyncio as redis

from app.config import settings

logger = logging.getLogger(__name__)

# Tag shared by every paginated article-list entry.
ARTICLE_LIST_TAG = "articles_list"
# Aggregate counters served by /api/stats.
STATS_CACHE_KEY = "api.stats"


class CacheManager:
    """
    Cache-aside client interface shared by the Redis and in-memory backends.

    Values are JSON-serialised on write and decoded on read.  Subclasses
    implement the raw ``_read`` / ``_write`` / ``_remove`` primitives and
    the tag operations; hit/miss accounting lives here.
    """

    backend = "none"
    supports_tags = False

    def __init__(self) -> None:
        self._hits: int = 0
        self._misses: int = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    # ------------------------------------------------------------------
    # Core cache operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> dict | list | None:
        """Return the cached value for *key*, or None on a miss / error."""
        data = await self._read(key)
        if data is None:
            self._misses += 1
            return None
        self._hits += 1
        return json.loads(data)

    async def set(
        self,
        key: str,
        value: dict | list,
        ttl: int | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """Persist *value* under *key* with an optional TTL (seconds) and tags."""
        await self._write(key, json.dumps(value, default=str), ttl, tuple(tags))

    async def delete(self, key: str) -> None:
        await self._remove(key)

    async def flush_tag(self, tag: str) -> None:
        raise NotImplementedError

    async def flush(self) -> None:
        raise NotImplementedError

    async def _read(self, key: str) -> str | None:
        raise NotImplementedError

    async def _write(self, key: str, data: str, ttl: int | None, tags: tuple[str, ...]) -> None:
        raise NotImplementedError

    async def _remove(self, key: str) -> None:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Domain-level invalidation helpers
    # ------------------------------------------------------------------

    async def invalidate_articles(self) -> None:
        """
        Invalidate every cache entry derived from articles or comments.

        The stats entry is always removed.  Paginated list entries are
        purged as a group through the ``articles_list`` tag; backends that
        cannot track tags fall back to flushing the whole cache, because
        the set of page/page-size keys is not known in advance.
        """
        await self.delete(STATS_CACHE_KEY)
        if self.supports_tags:
            await self.flush_tag(ARTICLE_LIST_TAG)
        else:
            await self.flush()

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    @property
    def stats(self) -> dict:
        """Return a snapshot of hit/miss counters for the stats endpoint."""
        total = self._hits + self._misses
        return {
            "backend": self.backend,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
        }


class RedisCache(CacheManager):
    """
    Cache backed by Redis.

    All public methods are safe to call even when Redis is unavailable:
    read operations miss and write operations are silently skipped, so the
    application degrades gracefully without raising exceptions to callers.

    Tags are tracked with one Redis set per tag (``tag:<name>``) holding
    the keys written under it.
    """

    backend = "redis"
    supports_tags = True

    def __init__(self, url: str | None = None) -> None:
        super().__init__()
        self._url = url or settings.REDIS_URL
        self._redis: redis.Redis | None = None

    async def connect(self) -> None:
        """Open the connection pool.  Called once at application startup."""
        self._redis = redis.from_url(
            self._url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await self._redis.ping()
            logger.info("Redis connected: %s", self._url)
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis ping failed, cache disabled: %s", exc)

    async def disconnect(self) -> None:
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    @staticmethod
    def _tag_key(tag: str) -> str:
        return f"tag:{tag}"

    async def _read(self, key: str) -> str | None:
        if not self._redis:
            return None
        try:
            return await self._redis.get(key)
        except Exception as exc:
            logger.debug("Cache GET error for key=%r: %s", key, exc)
            return None

    async def _write(self, key: str, data: str, ttl: int | None, tags: tuple[str, ...]) -> None:
        if not self._redis:
            return
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(key, data, ex=ttl)
                for tag in tags:
                    pipe.sadd(self._tag_key(tag), key)
                    # Every write refreshes the set, so it outlives the members it lists.
                    if ttl:
                        pipe.expire(self._tag_key(tag), ttl)
                await pipe.execute()
        except Exception as exc:
            logger.debug("Cache SET error for key=%r: %s", key, exc)

    async def _remove(self, key: str) -> None:
        if not self._redis:
            return
        try:
            await self._redis.delete(key)
        except Exception as exc:
            logger.debug("Cache DELETE error for key=%r: %s", key, exc)

    async def flush_tag(self, tag: str) -> None:
        """Delete every key recorded under *tag*, then the tag set itself."""
        if not self._redis:
            return
        tag_key = self._tag_key(tag)
        try:
            keys = await self._redis.smembers(tag_key)
            await self._redis.delete(*keys, tag_key)
            logger.debug("Cache flushed %d key(s) tagged %r", len(keys), tag)
        except Exception as exc:
            logger.debug("Cache FLUSH_TAG error for tag=%r: %s", tag, exc)

    async def flush(self) -> None:
        if not self._redis:
            return
        try:
            await self._redis.flushdb()
        except Exception as exc:
            logger.debug("Cache FLUSH error: %s", exc)


class MemoryCache(CacheManager):
    """
    Process-local cache without tag support.

    Suitable for single-process deployments and tests.  Group invalidation
    falls back to ``flush()``.  *clock* returns monotonic seconds and can be
    replaced to exercise expiry deterministically.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__()
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}

    async def _read(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        data, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return data

    async def _write(self, key: str, data: str, ttl: int | None, tags: tuple[str, ...]) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (data, expires_at)

    async def _remove(self, key: str) -> None:
        self._entries.pop(key, None)

    async def flush_tag(self, tag: str) -> None:
        await self.flush()

    async def flush(self) -> None:
        self._entries.clear()


def build_cache(backend: str | None = None) -> CacheManager:
    backend = backend or settings.CACHE_BACKEND
    if backend == "memory":
        return MemoryCache()
    if backend == "redis":
        return RedisCache()
    raise ValueError(f"Unknown cache backend: {backend!r}")


# Module-level instance shared across all request handlers; services receive
# it through the ``get_cache`` dependency rather than importing it.
cache = build_cache()


def get_cache() -> CacheManager:
    return cache
