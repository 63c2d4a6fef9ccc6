"""In-memory query cache using cachetools.TTLCache.

Fits single-process deployments; the entry count is bounded and every
entry expires after the configured TTL, so a stale query key can only
point at an old artist id for that long (and the id itself keeps
resolving through the store's merge pointers).
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any

import structlog
from cachetools import TTLCache

from artist_resolver.interfaces.cache_provider import ICacheProvider

logger = structlog.get_logger(logger_name=__name__)


class MemoryCacheProvider(ICacheProvider):
    """Query cache backed by ``cachetools.TTLCache``.

    Parameters
    ----------
    max_size:
        Maximum number of query keys before the oldest entry is evicted.
    ttl:
        Time-to-live in seconds for every entry.
    timer:
        Clock used for expiry; injectable for tests.
    """

    def __init__(
        self,
        max_size: int = 10000,
        ttl: int = 86400,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TTLCache[str, Any] = TTLCache(maxsize=max_size, ttl=ttl, timer=timer)
        self._hits = 0
        self._misses = 0

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, int]:
        return {"entries": len(self._cache), "hits": self._hits, "misses": self._misses}

    # ------------------------------------------------------------------
    # ICacheProvider implementation
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any | None:
        value = self._cache.get(key)
        if value is not None:
            self._hits += 1
            logger.debug("query_cache_hit", key=key)
        else:
            self._misses += 1
            logger.debug("query_cache_miss", key=key)
        return value

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key*.

        ``TTLCache`` applies one TTL to every entry, so a per-item *ttl*
        is accepted for interface compatibility and ignored.
        """
        self._cache[key] = value
        logger.debug("query_cache_set", key=key)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def exists(self, key: str) -> bool:
        return key in self._cache
