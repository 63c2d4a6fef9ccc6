"""Pure functions combining canonical artist records.

Shared by both store implementations so the in-memory and SQLite
backends apply identical merge semantics.  Nothing here performs I/O;
every function takes frozen :class:`Artist` values and returns new ones.

Rules:

- external ids are unioned; one authority holding two different ids is
  an :class:`InvariantViolationError` on merge, and keeps the existing id
  on an additive update;
- aliases are concatenated and deduplicated per (normalized name,
  source), keeping the highest confidence;
- metadata keys are only filled, never overwritten.

:class:`ChangeClock` is the one stateful piece: each store keeps one to
stamp its writes.
"""

from __future__ import annotations

import datetime
from collections.abc import Iterable
from typing import Any

import structlog

from artist_resolver.interfaces.source_client import RawRecord
from artist_resolver.models.artist import AliasTier, Artist, ArtistAlias
from artist_resolver.utils.errors import InvariantViolationError
from artist_resolver.utils.text_normalizer import normalize_name

logger = structlog.get_logger(logger_name=__name__)

MERGE_ALIAS_SOURCE = "merge"

# Trust attached to names reported by an authority, per tier.
_ALIAS_CONFIDENCE: dict[AliasTier, float] = {
    AliasTier.PRIMARY: 0.95,
    AliasTier.CREDITED: 0.9,
    AliasTier.OTHER: 0.8,
}


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)  # noqa: UP017


class ChangeClock:
    """Strictly increasing ``updated_at`` stamps for one store.

    Exports select ``updated_at > cursor``, so no write may carry a stamp
    at or before one a client has already been sent.
    """

    _TICK = datetime.timedelta(microseconds=1)

    def __init__(self) -> None:
        self._last: datetime.datetime | None = None

    def observe(self, value: datetime.datetime) -> None:
        """Account for a stamp already persisted (e.g. on startup)."""
        if self._last is None or value > self._last:
            self._last = value

    def stamp(self, wanted: datetime.datetime | None = None) -> datetime.datetime:
        """*wanted* (default: now), moved past every earlier stamp."""
        value = wanted or utcnow()
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)  # noqa: UP017
        if self._last is not None and value <= self._last:
            value = self._last + self._TICK
        self._last = value
        return value


def conflicting_ids(left: dict[str, str], right: dict[str, str]) -> dict[str, tuple[str, str]]:
    """Authorities for which *left* and *right* hold different ids."""
    return {
        authority: (left[authority], value)
        for authority, value in right.items()
        if authority in left and left[authority] != value
    }


def fill_metadata(existing: dict[str, Any], incoming: dict[str, Any]) -> dict[str, Any]:
    """Add keys from *incoming* that *existing* lacks or holds empty."""
    merged = dict(existing)
    for key, value in incoming.items():
        if merged.get(key) in (None, "", [], {}) and value not in (None, "", [], {}):
            merged[key] = value
    return merged


def union_aliases(existing: Iterable[ArtistAlias], incoming: Iterable[ArtistAlias]) -> list[ArtistAlias]:
    # Deduplication happens in the Artist validator.
    return [*existing, *incoming]


def extend_artist(
    artist: Artist,
    *,
    aliases: Iterable[ArtistAlias] = (),
    external_ids: dict[str, str] | None = None,
    metadata: dict[str, Any] | None = None,
    now: datetime.datetime | None = None,
) -> Artist:
    """Additive update: new aliases, new claims and missing metadata only.

    Claims for an authority the artist already holds under another id are
    dropped and logged; identity changes go through :func:`merge_records`.
    """
    ids = dict(artist.external_ids)
    for authority, value in (external_ids or {}).items():
        if authority in ids and ids[authority] != value:
            logger.warning(
                "external_id_conflict_ignored",
                artist_id=artist.id,
                authority=authority,
                kept=ids[authority],
                ignored=value,
            )
            continue
        ids[authority] = value

    updated = artist.model_copy(
        update={
            "external_ids": ids,
            "aliases": union_aliases(artist.aliases, aliases),
            "metadata": fill_metadata(artist.metadata, metadata or {}),
        }
    )
    # model_copy skips validation; rebuild so alias dedup runs.
    rebuilt = Artist.model_validate(updated.model_dump())
    if rebuilt == artist:
        return artist
    return rebuilt.model_copy(update={"updated_at": now or utcnow()})


def check_merge(source: Artist, into_root: Artist) -> None:
    """Reject merges that would break identity invariants.

    *into_root* must already be the root of the merge target.
    """
    if source.id == into_root.id:
        raise InvariantViolationError(f"Cannot merge artist {source.id} into itself")
    if into_root.canonical_artist_id is not None:
        raise InvariantViolationError(f"Merge target {into_root.id} is not a root entity")
    if source.canonical_artist_id is not None and source.canonical_artist_id != into_root.id:
        raise InvariantViolationError(
            f"Artist {source.id} is already merged into {source.canonical_artist_id}"
        )
    conflicts = conflicting_ids(into_root.external_ids, source.external_ids)
    if conflicts:
        detail = ", ".join(f"{a}: {kept} vs {other}" for a, (kept, other) in sorted(conflicts.items()))
        raise InvariantViolationError(
            f"Merging {source.id} into {into_root.id} would double-claim ({detail})"
        )


def merge_records(
    source: Artist,
    into_root: Artist,
    now: datetime.datetime | None = None,
) -> tuple[Artist, Artist]:
    """Fold *source* into *into_root*.

    Returns
    -------
    tuple[Artist, Artist]
        ``(survivor, retired_source)``.  The survivor gains the source's
        claims, aliases, missing metadata and its canonical name as an
        alias; the retired source points at the survivor and holds no
        claims.
    """
    check_merge(source, into_root)
    now = now or utcnow()

    carried = list(source.aliases)
    if normalize_name(source.canonical_name) != normalize_name(into_root.canonical_name):
        carried.append(
            ArtistAlias(
                name=source.canonical_name,
                source=MERGE_ALIAS_SOURCE,
                confidence=1.0,
                tier=AliasTier.OTHER,
            )
        )

    survivor = Artist.model_validate(
        {
            **into_root.model_dump(),
            "external_ids": {**source.external_ids, **into_root.external_ids},
            "aliases": [a.model_dump() for a in union_aliases(into_root.aliases, carried)],
            "metadata": fill_metadata(into_root.metadata, source.metadata),
            "updated_at": now,
        }
    )
    retired = source.model_copy(
        update={"canonical_artist_id": survivor.id, "external_ids": {}, "updated_at": now}
    )
    return survivor, retired


def repoint(record: Artist, root_id: str, now: datetime.datetime | None = None) -> Artist:
    """Point an alias record straight at *root_id* (path compression)."""
    if record.canonical_artist_id == root_id:
        return record
    return record.model_copy(update={"canonical_artist_id": root_id, "updated_at": now or utcnow()})


def claim_keys(artist: Artist) -> list[tuple[str, str]]:
    return sorted(artist.external_ids.items())


def aliases_from_record(record: RawRecord) -> list[ArtistAlias]:
    """Every name *record* carries, as aliases sourced from its authority.

    The record's own primary name is fully trusted; reported aliases get
    the confidence of their tier.
    """
    aliases = [
        ArtistAlias(name=record.name, source=record.authority, confidence=1.0, tier=AliasTier.PRIMARY)
    ]
    aliases.extend(
        ArtistAlias(
            name=alias.name,
            source=record.authority,
            confidence=_ALIAS_CONFIDENCE[alias.tier],
            tier=alias.tier,
            locale=alias.locale,
        )
        for alias in record.aliases
    )
    return aliases
