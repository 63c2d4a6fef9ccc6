"""In-memory canonical artist store.

Dict-backed implementation of IArtistStore for tests, the CLI and
single-process deployments.  Three indices are kept in step with the
records:

- ``_records``: id -> Artist (roots and alias records)
- ``_claims``:  (authority, external_id) -> root id
- ``_names``:   normalized name -> ids of roots carrying that name
"""

from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any

import structlog

from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.models.artist import Artist, ArtistAlias
from artist_resolver.services import record_merger
from artist_resolver.utils.concurrency import KeyedLock
from artist_resolver.utils.errors import ArtistNotFoundError, InvariantViolationError

logger = structlog.get_logger(logger_name=__name__)


class MemoryArtistStore(IArtistStore):
    """Canonical store held in process memory."""

    def __init__(self) -> None:
        self._records: dict[str, Artist] = {}
        self._claims: dict[tuple[str, str], str] = {}
        self._names: dict[str, set[str]] = defaultdict(set)
        self._children: dict[str, set[str]] = defaultdict(set)
        self._locks = KeyedLock()
        self._clock = record_merger.ChangeClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, artist_id: str) -> Artist | None:
        record = self._records.get(artist_id)
        if record is None or record.canonical_artist_id is None:
            return record
        return self._records.get(record.canonical_artist_id)

    async def get_record(self, artist_id: str) -> Artist | None:
        return self._records.get(artist_id)

    async def get_by_external_id(self, authority: str, external_id: str) -> Artist | None:
        owner = self._claims.get((authority, external_id))
        return await self.get(owner) if owner else None

    async def find_by_name(self, normalized_name: str) -> list[Artist]:
        ids = sorted(self._names.get(normalized_name, ()))
        return [self._records[i] for i in ids if self._records[i].canonical_artist_id is None]

    async def changed_since(self, since: datetime.datetime | None) -> list[Artist]:
        records = [r for r in self._records.values() if since is None or r.updated_at > since]
        return sorted(records, key=lambda r: (r.updated_at, r.id))

    async def stats(self) -> dict[str, Any]:
        aliases = sum(1 for r in self._records.values() if r.canonical_artist_id is not None)
        return {
            "backend": "memory",
            "entities": len(self._records) - aliases,
            "alias_records": aliases,
            "claims": len(self._claims),
        }

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def upsert(self, artist: Artist) -> Artist:
        if artist.canonical_artist_id is not None:
            raise InvariantViolationError(
                f"Upsert of alias record {artist.id}; use merge to change identity"
            )
        claim_locks = [f"claim:{a}:{e}" for a, e in record_merger.claim_keys(artist)]
        async with self._locks.hold(f"artist:{artist.id}", *claim_locks):
            current = self._records.get(artist.id)
            if current is not None and current.canonical_artist_id is not None:
                raise InvariantViolationError(
                    f"Artist {artist.id} was merged into {current.canonical_artist_id}"
                )
            for key in record_merger.claim_keys(artist):
                owner = self._claims.get(key)
                if owner is not None and owner != artist.id:
                    raise InvariantViolationError(
                        f"{key[0]} id {key[1]} is already claimed by {owner}"
                    )

            stored = artist.model_copy(
                update={
                    "created_at": artist.created_at if current is None else current.created_at,
                    "updated_at": self._clock.stamp(artist.updated_at if current is None else None),
                }
            )
            if current is not None:
                self._unindex(current)
            self._records[stored.id] = stored
            self._index(stored)
        logger.debug("artist_upserted", artist_id=stored.id, created=current is None)
        return stored

    async def add_alias(self, artist_id: str, alias: ArtistAlias) -> Artist:
        while True:
            root = await self._require_root(artist_id)
            async with self._locks.hold(f"artist:{root.id}"):
                current = await self._require_root(artist_id)
                if current.id != root.id:
                    continue
                updated = record_merger.extend_artist(current, aliases=[alias], now=self._clock.stamp())
                if updated is not current:
                    self._unindex(current)
                    self._records[updated.id] = updated
                    self._index(updated)
                return updated

    async def merge(self, source_id: str, into_id: str) -> Artist:
        if source_id == into_id:
            raise InvariantViolationError(f"Cannot merge artist {source_id} into itself")
        while True:
            into_root = await self._require_root(into_id)
            async with self._locks.hold(f"artist:{source_id}", f"artist:{into_root.id}"):
                # The target may have been merged away while we waited.
                current_root = await self._require_root(into_id)
                if current_root.id != into_root.id:
                    continue
                return self._merge_locked(source_id, current_root)

    def _merge_locked(self, source_id: str, into_root: Artist) -> Artist:
        source = self._records.get(source_id)
        if source is None:
            raise ArtistNotFoundError(f"Artist {source_id} not found")
        if into_root.id == source_id or into_root.canonical_artist_id == source_id:
            raise InvariantViolationError(
                f"Merging {source_id} into {into_root.id} would create a cycle"
            )
        if source.canonical_artist_id == into_root.id:
            return into_root

        try:
            survivor, retired = record_merger.merge_records(source, into_root, now=self._clock.stamp())
        except InvariantViolationError as exc:
            logger.warning("merge_rejected", source_id=source_id, into_id=into_root.id, error=str(exc))
            raise

        self._unindex(source)
        self._unindex(into_root)
        self._records[survivor.id] = survivor
        self._records[retired.id] = retired
        self._index(survivor)
        self._children[survivor.id].add(retired.id)

        # Path compression: everything that pointed at the source now
        # points at the survivor.
        for child_id in self._children.pop(source_id, set()):
            self._records[child_id] = record_merger.repoint(
                self._records[child_id], survivor.id, retired.updated_at
            )
            self._children[survivor.id].add(child_id)

        logger.info("artists_merged", source_id=source_id, into_id=survivor.id)
        return survivor

    # ------------------------------------------------------------------
    # Index maintenance
    # ------------------------------------------------------------------

    async def _require_root(self, artist_id: str) -> Artist:
        root = await self.get(artist_id)
        if root is None:
            raise ArtistNotFoundError(f"Artist {artist_id} not found")
        return root

    def _index(self, artist: Artist) -> None:
        for key in record_merger.claim_keys(artist):
            self._claims[key] = artist.id
        for name in artist.name_keys():
            self._names[name].add(artist.id)

    def _unindex(self, artist: Artist) -> None:
        for key in record_merger.claim_keys(artist):
            if self._claims.get(key) == artist.id:
                del self._claims[key]
        for name in artist.name_keys():
            ids = self._names.get(name)
            if ids is not None:
                ids.discard(artist.id)
                if not ids:
                    del self._names[name]
