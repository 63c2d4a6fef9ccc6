"""SQLite-backed canonical artist store.

Persists canonical records to a local SQLite database at
``data/artists.db`` using ``aiosqlite`` for async I/O.  Aliases,
external ids and metadata are JSON columns on the ``artists`` row; two
side tables index them:

- ``artist_claims``  (authority, external_id) primary key -> root id.
  The primary key makes a double claim impossible at the storage level.
- ``artist_names``   normalized name -> root id, for find_by_name.

Merge semantics come from :mod:`artist_resolver.services.record_merger`
so this backend behaves exactly like the in-memory one.
"""

from __future__ import annotations

import asyncio
import datetime
import json
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.models.artist import Artist, ArtistAlias
from artist_resolver.services import record_merger
from artist_resolver.utils.concurrency import KeyedLock
from artist_resolver.utils.errors import ArtistNotFoundError, InvariantViolationError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/artists.db")

_CREATE_ARTISTS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS artists (
    id                  TEXT PRIMARY KEY,
    canonical_name      TEXT NOT NULL,
    canonical_artist_id TEXT REFERENCES artists(id),
    external_ids        TEXT NOT NULL DEFAULT '{}',
    aliases             TEXT NOT NULL DEFAULT '[]',
    metadata            TEXT NOT NULL DEFAULT '{}',
    created_at          TEXT NOT NULL,
    updated_at          TEXT NOT NULL
);
"""

_CREATE_CLAIMS_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS artist_claims (
    authority   TEXT NOT NULL,
    external_id TEXT NOT NULL,
    artist_id   TEXT NOT NULL REFERENCES artists(id),
    PRIMARY KEY (authority, external_id)
);
"""

_CREATE_NAMES_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS artist_names (
    name_key  TEXT NOT NULL,
    artist_id TEXT NOT NULL REFERENCES artists(id),
    PRIMARY KEY (name_key, artist_id)
);
"""

_CREATE_INDICES_SQL = [
    "CREATE INDEX IF NOT EXISTS idx_artists_canonical ON artists(canonical_artist_id);",
    "CREATE INDEX IF NOT EXISTS idx_artists_updated ON artists(updated_at);",
    "CREATE INDEX IF NOT EXISTS idx_claims_artist ON artist_claims(artist_id);",
    "CREATE INDEX IF NOT EXISTS idx_names_artist ON artist_names(artist_id);",
]

_UPSERT_ARTIST_SQL = """\
INSERT INTO artists (
    id, canonical_name, canonical_artist_id, external_ids, aliases, metadata, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    canonical_name = excluded.canonical_name,
    canonical_artist_id = excluded.canonical_artist_id,
    external_ids = excluded.external_ids,
    aliases = excluded.aliases,
    metadata = excluded.metadata,
    updated_at = excluded.updated_at;
"""

_SELECT_ARTIST_SQL = "SELECT * FROM artists WHERE id = ?;"

_SELECT_CLAIM_OWNER_SQL = """\
SELECT artist_id FROM artist_claims WHERE authority = ? AND external_id = ?;
"""

_SELECT_BY_NAME_SQL = """\
SELECT a.* FROM artist_names n
JOIN artists a ON a.id = n.artist_id
WHERE n.name_key = ? AND a.canonical_artist_id IS NULL
ORDER BY a.id;
"""

_REPOINT_CHILDREN_SQL = """\
UPDATE artists SET canonical_artist_id = ?, updated_at = ?
WHERE canonical_artist_id = ?;
"""

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _format_ts(value: datetime.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)  # noqa: UP017
    return value.astimezone(datetime.timezone.utc).strftime(_TIMESTAMP_FORMAT)  # noqa: UP017


def _parse_ts(value: str) -> datetime.datetime:
    return datetime.datetime.strptime(value, _TIMESTAMP_FORMAT).replace(
        tzinfo=datetime.timezone.utc  # noqa: UP017
    )


class SQLiteArtistStore(IArtistStore):
    """SQLite-backed canonical artist persistence."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)
        self._locks = KeyedLock()
        self._clock = record_merger.ChangeClock()
        # Stamp and commit happen under one lock so commits land in stamp order.
        self._commit_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the artists, artist_claims and artist_names tables and indices."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(str(self._db_path)) as db:
            await db.execute(_CREATE_ARTISTS_TABLE_SQL)
            await db.execute(_CREATE_CLAIMS_TABLE_SQL)
            await db.execute(_CREATE_NAMES_TABLE_SQL)
            for idx_sql in _CREATE_INDICES_SQL:
                await db.execute(idx_sql)
            await db.commit()
            cursor = await db.execute("SELECT MAX(updated_at) FROM artists;")
            (latest,) = await cursor.fetchone()
        if latest:
            self._clock.observe(_parse_ts(latest))
        logger.info("artist_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, artist_id: str) -> Artist | None:
        async with self._connect() as db:
            return await self._root(db, artist_id)

    async def get_record(self, artist_id: str) -> Artist | None:
        async with self._connect() as db:
            return await self._fetch(db, artist_id)

    async def get_by_external_id(self, authority: str, external_id: str) -> Artist | None:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_CLAIM_OWNER_SQL, (authority, external_id))
            row = await cursor.fetchone()
            if row is None:
                return None
            return await self._root(db, row["artist_id"])

    async def find_by_name(self, normalized_name: str) -> list[Artist]:
        async with self._connect() as db:
            cursor = await db.execute(_SELECT_BY_NAME_SQL, (normalized_name,))
            rows = await cursor.fetchall()
        return [self._row_to_artist(row) for row in rows]

    async def changed_since(self, since: datetime.datetime | None) -> list[Artist]:
        async with self._connect() as db:
            if since is None:
                cursor = await db.execute("SELECT * FROM artists ORDER BY updated_at, id;")
            else:
                cursor = await db.execute(
                    "SELECT * FROM artists WHERE updated_at > ? ORDER BY updated_at, id;",
                    (_format_ts(since),),
                )
            rows = await cursor.fetchall()
        return [self._row_to_artist(row) for row in rows]

    async def stats(self) -> dict[str, Any]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT "
                "SUM(CASE WHEN canonical_artist_id IS NULL THEN 1 ELSE 0 END) AS entities, "
                "SUM(CASE WHEN canonical_artist_id IS NOT NULL THEN 1 ELSE 0 END) AS alias_records "
                "FROM artists;"
            )
            counts = await cursor.fetchone()
            cursor = await db.execute("SELECT COUNT(*) AS claims FROM artist_claims;")
            claims = await cursor.fetchone()
        return {
            "backend": "sqlite",
            "entities": counts["entities"] or 0,
            "alias_records": counts["alias_records"] or 0,
            "claims": claims["claims"],
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
        async with self._locks.hold(f"artist:{artist.id}", *claim_locks), self._connect() as db:
            current = await self._fetch(db, artist.id)
            if current is not None and current.canonical_artist_id is not None:
                raise InvariantViolationError(
                    f"Artist {artist.id} was merged into {current.canonical_artist_id}"
                )
            for authority, external_id in record_merger.claim_keys(artist):
                cursor = await db.execute(_SELECT_CLAIM_OWNER_SQL, (authority, external_id))
                row = await cursor.fetchone()
                if row is not None and row["artist_id"] != artist.id:
                    raise InvariantViolationError(
                        f"{authority} id {external_id} is already claimed by {row['artist_id']}"
                    )

            async with self._commit_lock:
                stored = artist.model_copy(
                    update={
                        "created_at": artist.created_at if current is None else current.created_at,
                        "updated_at": self._clock.stamp(artist.updated_at if current is None else None),
                    }
                )
                await self._write(db, stored)
                await db.commit()
        logger.debug("artist_upserted", artist_id=stored.id, created=current is None)
        return stored

    async def add_alias(self, artist_id: str, alias: ArtistAlias) -> Artist:
        while True:
            root = await self._require_root(artist_id)
            async with self._locks.hold(f"artist:{root.id}"), self._connect() as db:
                current = await self._root(db, artist_id)
                if current is None or current.id != root.id:
                    continue
                async with self._commit_lock:
                    updated = record_merger.extend_artist(current, aliases=[alias], now=self._clock.stamp())
                    if updated is not current:
                        await self._write(db, updated)
                        await db.commit()
                return updated

    async def merge(self, source_id: str, into_id: str) -> Artist:
        if source_id == into_id:
            raise InvariantViolationError(f"Cannot merge artist {source_id} into itself")
        while True:
            into_root = await self._require_root(into_id)
            async with self._locks.hold(f"artist:{source_id}", f"artist:{into_root.id}"), self._connect() as db:
                current_root = await self._root(db, into_id)
                if current_root is None or current_root.id != into_root.id:
                    continue
                return await self._merge_locked(db, source_id, current_root)

    async def _merge_locked(self, db: aiosqlite.Connection, source_id: str, into_root: Artist) -> Artist:
        source = await self._fetch(db, source_id)
        if source is None:
            raise ArtistNotFoundError(f"Artist {source_id} not found")
        if into_root.id == source_id:
            raise InvariantViolationError(
                f"Merging {source_id} into {into_root.id} would create a cycle"
            )
        if source.canonical_artist_id == into_root.id:
            return into_root

        async with self._commit_lock:
            try:
                survivor, retired = record_merger.merge_records(source, into_root, now=self._clock.stamp())
            except InvariantViolationError as exc:
                logger.warning(
                    "merge_rejected", source_id=source_id, into_id=into_root.id, error=str(exc)
                )
                raise

            # Claims move before the survivor row is written so the primary key
            # on artist_claims never sees the same claim twice.
            await db.execute("DELETE FROM artist_claims WHERE artist_id = ?;", (source_id,))
            await self._write(db, retired)
            await self._write(db, survivor)
            await db.execute(
                _REPOINT_CHILDREN_SQL,
                (survivor.id, _format_ts(retired.updated_at), source_id),
            )
            await db.commit()
        logger.info("artists_merged", source_id=source_id, into_id=survivor.id)
        return survivor

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        async with aiosqlite.connect(str(self._db_path)) as db:
            db.row_factory = aiosqlite.Row
            yield db

    async def _require_root(self, artist_id: str) -> Artist:
        root = await self.get(artist_id)
        if root is None:
            raise ArtistNotFoundError(f"Artist {artist_id} not found")
        return root

    async def _fetch(self, db: aiosqlite.Connection, artist_id: str) -> Artist | None:
        cursor = await db.execute(_SELECT_ARTIST_SQL, (artist_id,))
        row = await cursor.fetchone()
        return self._row_to_artist(row) if row is not None else None

    async def _root(self, db: aiosqlite.Connection, artist_id: str) -> Artist | None:
        record = await self._fetch(db, artist_id)
        if record is None or record.canonical_artist_id is None:
            return record
        return await self._fetch(db, record.canonical_artist_id)

    async def _write(self, db: aiosqlite.Connection, artist: Artist) -> None:
        """Write the row and rebuild its claim and name index entries."""
        await db.execute(
            _UPSERT_ARTIST_SQL,
            (
                artist.id,
                artist.canonical_name,
                artist.canonical_artist_id,
                json.dumps(artist.external_ids),
                json.dumps([a.model_dump(mode="json") for a in artist.aliases]),
                json.dumps(artist.metadata, default=str),
                _format_ts(artist.created_at),
                _format_ts(artist.updated_at),
            ),
        )
        await db.execute("DELETE FROM artist_claims WHERE artist_id = ?;", (artist.id,))
        await db.execute("DELETE FROM artist_names WHERE artist_id = ?;", (artist.id,))
        if artist.canonical_artist_id is not None:
            return
        try:
            await db.executemany(
                "INSERT INTO artist_claims (authority, external_id, artist_id) VALUES (?, ?, ?);",
                [(a, e, artist.id) for a, e in record_merger.claim_keys(artist)],
            )
        except sqlite3.IntegrityError as exc:
            raise InvariantViolationError(f"Claim conflict writing {artist.id}: {exc}") from exc
        await db.executemany(
            "INSERT OR IGNORE INTO artist_names (name_key, artist_id) VALUES (?, ?);",
            [(name, artist.id) for name in sorted(artist.name_keys())],
        )

    @staticmethod
    def _row_to_artist(row: aiosqlite.Row) -> Artist:
        return Artist.model_validate(
            {
                "id": row["id"],
                "canonical_name": row["canonical_name"],
                "canonical_artist_id": row["canonical_artist_id"],
                "external_ids": json.loads(row["external_ids"]),
                "aliases": json.loads(row["aliases"]),
                "metadata": json.loads(row["metadata"]),
                "created_at": _parse_ts(row["created_at"]),
                "updated_at": _parse_ts(row["updated_at"]),
            }
        )
