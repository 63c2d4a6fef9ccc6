"""MusicBrainz authority client implementing ISourceClient.

Uses the musicbrainzngs library against the MusicBrainz WS/2 API.  The
library is synchronous, so every call runs in a worker thread via
``asyncio.to_thread``.  musicbrainzngs' own global throttle is switched
off: pacing is done by the per-authority rate limiter in
:mod:`artist_resolver.providers.sources.guarded`.

MusicBrainz is the primary authority: it carries typed aliases and URL
relations that link an artist to its Discogs, Spotify and ISNI entries.
"""

from __future__ import annotations

import asyncio
from typing import Any

import musicbrainzngs
import structlog

from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.source_client import ISourceClient, RawAlias, RawRecord
from artist_resolver.models.artist import AliasTier
from artist_resolver.utils.errors import (
    PAYLOAD_ERRORS,
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)
from artist_resolver.utils.external_urls import cross_ids_from_urls, normalize_isni

logger = structlog.get_logger(logger_name=__name__)

_LOOKUP_INCLUDES = ["aliases", "url-rels", "tags"]
_MAX_GENRES = 5


class MusicBrainzClient(ISourceClient):
    """MusicBrainz artist search and lookup.

    No API key is required, but clients must identify themselves with a
    ``app/version (contact)`` user-agent.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        musicbrainzngs.set_useragent(
            settings.musicbrainz_app_name,
            settings.musicbrainz_app_version,
            settings.musicbrainz_contact or None,
        )
        musicbrainzngs.set_rate_limit(False)
        logger.info(
            "musicbrainz_client_initialized",
            app_name=settings.musicbrainz_app_name,
            app_version=settings.musicbrainz_app_version,
        )

    # ------------------------------------------------------------------
    # ISourceClient implementation
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        """Search MusicBrainz for artists matching *query*."""
        try:
            response = await asyncio.to_thread(
                musicbrainzngs.search_artists, artist=query, limit=limit
            )
        except musicbrainzngs.WebServiceError as exc:
            raise self._translate(exc, f"artist search for '{query}'") from exc

        artists = response.get("artist-list") if isinstance(response, dict) else None
        if not isinstance(artists, list):
            raise MalformedResponseError(
                message="Search response has no artist-list",
                provider_name=self.get_authority_name(),
            )

        records = [r for r in (self._to_record(a) for a in artists) if r is not None]
        logger.debug("musicbrainz_search", query=query, result_count=len(records))
        return records

    async def lookup(self, external_id: str) -> RawRecord | None:
        """Fetch one artist by MBID, including aliases, URL relations and tags."""
        try:
            response = await asyncio.to_thread(
                musicbrainzngs.get_artist_by_id, external_id, includes=_LOOKUP_INCLUDES
            )
        except musicbrainzngs.ResponseError as exc:
            if _status_code(exc) == 404:
                return None
            raise self._translate(exc, f"lookup of '{external_id}'") from exc
        except musicbrainzngs.WebServiceError as exc:
            raise self._translate(exc, f"lookup of '{external_id}'") from exc

        artist = response.get("artist") if isinstance(response, dict) else None
        if not isinstance(artist, dict):
            raise MalformedResponseError(
                message=f"Lookup response for '{external_id}' has no artist",
                provider_name=self.get_authority_name(),
            )
        return self._to_record(artist)

    def get_authority_name(self) -> str:
        return "musicbrainz"

    def is_available(self) -> bool:
        """MusicBrainz needs no credentials; always available."""
        return True

    # ------------------------------------------------------------------
    # Payload conversion
    # ------------------------------------------------------------------

    def _to_record(self, artist: Any) -> RawRecord | None:
        if not isinstance(artist, dict) or not artist.get("id") or not artist.get("name"):
            logger.debug("musicbrainz_record_skipped", reason="missing id or name")
            return None
        try:
            return self._convert(artist)
        except PAYLOAD_ERRORS as exc:
            raise MalformedResponseError(
                message=f"Unreadable artist {artist.get('id')!r}: {exc}",
                provider_name=self.get_authority_name(),
            ) from exc

    def _convert(self, artist: dict[str, Any]) -> RawRecord:
        mbid = artist["id"]
        name = artist["name"]
        if not isinstance(name, str):
            raise TypeError(f"name is {type(name).__name__}, not str")

        aliases: list[RawAlias] = []
        for alias in artist.get("alias-list", []):
            alias_name = alias.get("alias")
            if not alias_name:
                continue
            aliases.append(
                RawAlias(name=alias_name, tier=_alias_tier(alias), locale=alias.get("locale"))
            )

        urls = [
            rel.get("target", "")
            for rel in artist.get("url-relation-list", [])
            if isinstance(rel, dict)
        ]
        cross_ids = cross_ids_from_urls(urls, exclude=self.get_authority_name())
        isnis = artist.get("isni-list") or []
        if isnis and "isni" not in cross_ids:
            cross_ids["isni"] = normalize_isni(isnis[0])

        return RawRecord(
            authority=self.get_authority_name(),
            external_id=mbid,
            name=name,
            aliases=tuple(aliases),
            cross_ids=cross_ids,
            metadata=_metadata(artist),
        )

    def _translate(self, exc: musicbrainzngs.WebServiceError, what: str) -> Exception:
        authority = self.get_authority_name()
        if isinstance(exc, musicbrainzngs.NetworkError):
            return SourceUnavailableError(
                message=f"MusicBrainz {what} failed: {exc}", provider_name=authority
            )
        code = _status_code(exc)
        if code == 429:
            return RateLimitError(message=f"MusicBrainz {what} throttled", provider_name=authority)
        if code is None or code >= 500:
            return SourceUnavailableError(
                message=f"MusicBrainz {what} failed: {exc}", provider_name=authority
            )
        return MalformedResponseError(
            message=f"MusicBrainz {what} rejected with HTTP {code}", provider_name=authority
        )


def _status_code(exc: musicbrainzngs.WebServiceError) -> int | None:
    cause = getattr(exc, "cause", None)
    code = getattr(cause, "code", None)
    return code if isinstance(code, int) else None


def _alias_tier(alias: dict[str, Any]) -> AliasTier:
    if alias.get("primary") in ("primary", True, "true"):
        return AliasTier.PRIMARY
    if alias.get("type") == "Artist name":
        return AliasTier.CREDITED
    return AliasTier.OTHER


def _metadata(artist: dict[str, Any]) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    area = artist.get("area")
    if isinstance(area, dict) and area.get("name"):
        metadata["country"] = area["name"]
    elif artist.get("country"):
        metadata["country"] = artist["country"]

    begin = (artist.get("life-span") or {}).get("begin")
    if begin and begin[:4].isdigit():
        metadata["formed_year"] = int(begin[:4])

    tags = sorted(
        artist.get("tag-list", []),
        key=lambda t: int(t.get("count", 0) or 0),
        reverse=True,
    )
    genres = [t["name"] for t in tags if t.get("name")][:_MAX_GENRES]
    if genres:
        metadata["genres"] = genres

    for key in ("type", "disambiguation"):
        if artist.get(key):
            metadata[key] = artist[key]
    return metadata
