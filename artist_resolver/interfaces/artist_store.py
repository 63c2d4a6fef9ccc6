"""Abstract base class for the canonical artist store.

The store owns every :class:`~artist_resolver.models.artist.Artist`
record and the ``(authority, external_id)`` claim index.  Invariants
every implementation keeps:

- a claim belongs to at most one root entity;
- alias records point directly at a root (at most one hop), never at
  themselves and never in a cycle;
- records are never deleted; merged records stay as aliases.

``merge`` is the only operation that changes identity.  All other
mutations are additive.  Implementations serialize mutations per entity
and raise :class:`~artist_resolver.utils.errors.InvariantViolationError`
without modifying anything when an operation would break an invariant.
"""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod
from typing import Any

from artist_resolver.models.artist import Artist, ArtistAlias


class IArtistStore(ABC):
    """Contract for canonical artist persistence."""

    async def initialize(self) -> None:
        """Prepare storage (create tables, indices).  No-op by default."""

    async def close(self) -> None:
        """Release storage resources.  No-op by default."""

    @abstractmethod
    async def get(self, artist_id: str) -> Artist | None:
        """Return the root entity for *artist_id*, following a merge pointer."""

    @abstractmethod
    async def get_record(self, artist_id: str) -> Artist | None:
        """Return the stored record for *artist_id* exactly as stored."""

    @abstractmethod
    async def get_by_external_id(self, authority: str, external_id: str) -> Artist | None:
        """Return the root entity holding the ``(authority, external_id)`` claim."""

    @abstractmethod
    async def upsert(self, artist: Artist) -> Artist:
        """Insert or replace a root entity and index its claims and names.

        Returns the stored record.  A new entity keeps its own ``updated_at``
        unless that is not later than the store's last write; a replaced
        one is stamped now.

        Raises
        ------
        InvariantViolationError
            If *artist* is an alias record, if its id is currently merged
            into another entity, or if any claim belongs to a different
            entity.
        """

    @abstractmethod
    async def merge(self, source_id: str, into_id: str) -> Artist:
        """Fold *source_id* into the root of *into_id* and return the survivor.

        Raises
        ------
        ArtistNotFoundError
            If either id is unknown.
        InvariantViolationError
            On self-merge, on a merge that would form a cycle, or when the
            survivor would hold two ids for one authority.
        """

    @abstractmethod
    async def find_by_name(self, normalized_name: str) -> list[Artist]:
        """Root entities whose canonical name or an alias normalizes to the key."""

    @abstractmethod
    async def add_alias(self, artist_id: str, alias: ArtistAlias) -> Artist:
        """Attach *alias* to the root of *artist_id* and return the updated root."""

    @abstractmethod
    async def changed_since(self, since: datetime.datetime | None) -> list[Artist]:
        """Every record (roots and aliases) updated after *since*, oldest first.

        Each write is stamped later than every earlier one, so the newest
        ``updated_at`` returned is a cursor that never skips a later write.
        """

    @abstractmethod
    async def stats(self) -> dict[str, Any]:
        """Counts of roots, alias records and claims."""
