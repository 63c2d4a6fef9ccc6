"""Query cache providers.

MemoryCacheProvider holds normalized query keys in a process-local TTL
cache.  Several API workers each keep their own copy; entries only point
at store ids, so a stale entry costs one extra store read, never a wrong
answer after a merge.
"""

from artist_resolver.providers.cache.memory_cache import MemoryCacheProvider

__all__ = ["MemoryCacheProvider"]
