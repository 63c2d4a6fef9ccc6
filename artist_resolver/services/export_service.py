"""Export of canonical records for lightweight client-side filters.

Clients keep a local table keyed by artist id and poll with the cursor
from their previous sync.  Every record changed after that cursor is
sent again, alias records included, so a client learns about a merge
when the retired entity arrives with ``canonical_artist_id`` set.
"""

from __future__ import annotations

import datetime

import structlog

from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.models.artist import Artist
from artist_resolver.models.export import ExportAlias, ExportBatch, ExportEntry
from artist_resolver.services.record_merger import utcnow

logger = structlog.get_logger(logger_name=__name__)


class ExportService:
    """Builds update-only export batches from the canonical store."""

    def __init__(self, store: IArtistStore) -> None:
        self._store = store

    async def export(self, since: datetime.datetime | None = None) -> ExportBatch:
        """Return every record updated after *since* (everything when ``None``).

        The batch cursor is the latest ``updated_at`` included, or *since*
        itself when nothing changed, so passing it back never skips or
        repeats a record.
        """
        records = await self._store.changed_since(since)
        entries = [self._to_entry(record) for record in records]
        cursor = records[-1].updated_at if records else since
        logger.info(
            "export_generated",
            since=since.isoformat() if since else None,
            entries=len(entries),
        )
        return ExportBatch(entries=entries, cursor=cursor, generated_at=utcnow())

    @staticmethod
    def _to_entry(artist: Artist) -> ExportEntry:
        return ExportEntry(
            id=artist.id,
            canonical_name=artist.canonical_name,
            canonical_artist_id=artist.canonical_artist_id,
            external_ids=dict(artist.external_ids),
            aliases=[
                ExportAlias(name=a.name, source=a.source, confidence=a.confidence)
                for a in artist.aliases
            ],
            updated_at=artist.updated_at,
        )
