"""Canonical artist store implementations.

MemoryArtistStore keeps everything in dicts (tests, CLI, single process);
SQLiteArtistStore persists to ``data/artists.db`` via aiosqlite.  Both
share the merge rules in ``services/record_merger.py``.
"""

from artist_resolver.providers.store.memory_store import MemoryArtistStore
from artist_resolver.providers.store.sqlite_store import SQLiteArtistStore

__all__ = ["MemoryArtistStore", "SQLiteArtistStore"]
