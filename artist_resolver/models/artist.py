"""Canonical artist entity models.

An :class:`Artist` is the single authoritative record for a real-world
artist.  Records are frozen pydantic models; every mutation in the store
produces a new copy via ``model_copy(update={...})`` so readers always see
a consistent snapshot.

Key relationships:
    - ``canonical_artist_id`` points an alias record at the entity it was
      merged into.  Stores keep this a forest with at most one hop.
    - ``external_ids`` maps an authority name to that authority's id.  Only
      root (non-alias) records hold claims; merged records are emptied.
    - ``aliases`` is an ordered set keyed on (normalized name, source).
"""

from __future__ import annotations

import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from artist_resolver.utils.text_normalizer import normalize_name


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(tz=datetime.timezone.utc)  # noqa: UP017


class Authority(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Authorities the resolver knows how to query or cross-reference.

    ``external_ids`` keys are plain strings so collaborators can add
    platform ids for authorities the engine never queries itself
    (e.g. ``"tidal"``); these values cover the ones it does.
    """

    MUSICBRAINZ = "musicbrainz"
    DISCOGS = "discogs"
    ISNI = "isni"
    SPOTIFY = "spotify"
    APPLE_MUSIC = "apple_music"
    DEEZER = "deezer"
    TIDAL = "tidal"
    YOUTUBE_MUSIC = "youtube_music"


class AliasTier(str, Enum):  # noqa: UP042
    """What kind of name an alias is.

    The tier drives the static weight applied by the matching engine:
    an official name is trusted more than a credit variation, which is
    trusted more than an informal or transliterated spelling.
    """

    PRIMARY = "PRIMARY"       # Official / primary name at an authority
    CREDITED = "CREDITED"     # Name as credited on releases ("Artist name" alias, ANV)
    OTHER = "OTHER"           # Legal name, search hint, romanization, nickname


class ArtistAlias(BaseModel):
    """An alternative name for an artist, tagged with where it came from."""

    model_config = ConfigDict(frozen=True)

    name: str
    source: str                                          # Authority name or "manual"
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    tier: AliasTier = AliasTier.OTHER
    locale: str | None = None

    @property
    def normalized_name(self) -> str:
        return normalize_name(self.name)

    @property
    def dedup_key(self) -> tuple[str, str]:
        return (self.normalized_name, self.source)


class Artist(BaseModel):
    """The canonical artist entity.

    Created on the first successful external resolution, then grown by
    alias additions, metadata enrichment and merges.  Never deleted: a
    merged record stays in the store as an alias of its survivor so that
    historical references to its id keep resolving.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    canonical_name: str = Field(min_length=1)
    canonical_artist_id: str | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)
    aliases: list[ArtistAlias] = Field(default_factory=list)
    # Enrichment only (images, genres, country, formed_year, isrc codes...).
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=_utcnow)
    updated_at: datetime.datetime = Field(default_factory=_utcnow)

    @field_validator("aliases")
    @classmethod
    def _dedupe_aliases(cls, aliases: list[ArtistAlias]) -> list[ArtistAlias]:
        # One entry per (normalized name, source); the most confident wins
        # but keeps the position of the first occurrence.
        positions: dict[tuple[str, str], int] = {}
        result: list[ArtistAlias] = []
        for alias in aliases:
            key = alias.dedup_key
            if key not in positions:
                positions[key] = len(result)
                result.append(alias)
            elif alias.confidence > result[positions[key]].confidence:
                result[positions[key]] = alias
        return result

    @model_validator(mode="after")
    def _no_self_reference(self) -> Artist:
        if self.canonical_artist_id is not None and self.canonical_artist_id == self.id:
            raise ValueError("an artist cannot be an alias of itself")
        return self

    @property
    def is_alias(self) -> bool:
        """``True`` when this record has been merged into another entity."""
        return self.canonical_artist_id is not None

    @property
    def root_id(self) -> str:
        return self.canonical_artist_id or self.id

    def name_keys(self) -> set[str]:
        """Normalized keys of the canonical name and every alias."""
        keys = {normalize_name(self.canonical_name)}
        keys.update(alias.normalized_name for alias in self.aliases)
        keys.discard("")
        return keys

    def populated_metadata_count(self) -> int:
        return sum(1 for value in self.metadata.values() if value not in (None, "", [], {}))
