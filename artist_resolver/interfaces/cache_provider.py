"""Abstract base class for the resolution query cache.

The cache maps a normalized query key (``"beatles"``) to a small record
of the last confident resolution for it: the canonical artist id, the
confidence and how the match was made.  Artist records themselves are
never cached here; hits are re-read from the canonical store so merges
made after the entry was written are always visible.

Implementations may use an in-memory dict, SQLite, Redis, or any other
storage backend without touching the orchestrator.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ICacheProvider(ABC):
    """Contract for the key-value query cache.

    All operations are async to allow for network-backed stores (e.g. Redis)
    without blocking the event loop.  Values are plain JSON-compatible
    dicts.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Retrieve the value stored under *key*.

        Returns
        -------
        Any or None
            The cached value if present and not expired; ``None`` otherwise.
        """

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store *value* under *key* with an optional time-to-live in seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove the entry stored under *key*; no-op if absent."""

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Return ``True`` if *key* is present in the cache and not expired."""
