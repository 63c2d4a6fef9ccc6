"""Discogs authority client using python3-discogs-client.

The Discogs client is synchronous and lazily fetches resources on
attribute access, so all work happens inside ``_*_sync`` helpers run via
``asyncio.to_thread``; only plain ``data`` dicts cross back to the event
loop.

Discogs names map to tiers as follows:

- ``name``              -> primary name of the record
- ``namevariations``    -> CREDITED (ANVs: the name as printed on a credit)
- ``aliases``/``realname`` -> OTHER
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable
from typing import Any

import discogs_client
from discogs_client.exceptions import DiscogsAPIError, HTTPError

from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.source_client import ISourceClient, RawAlias, RawRecord
from artist_resolver.models.artist import AliasTier
from artist_resolver.utils.errors import (
    PAYLOAD_ERRORS,
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)
from artist_resolver.utils.external_urls import cross_ids_from_urls
from artist_resolver.utils.logging import get_logger

_USER_AGENT = "artist-resolver/0.1.0"
# Discogs disambiguates homonyms with a numeric suffix: "Nirvana (2)".
_DISAMBIGUATION_SUFFIX = re.compile(r"\s+\(\d+\)$")


class DiscogsClient(ISourceClient):
    """Artist search and lookup via the authenticated Discogs API."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client: discogs_client.Client | None = None
        self._logger = get_logger(__name__)

    # -- Private helpers -------------------------------------------------------

    def _get_client(self) -> discogs_client.Client:
        """Lazily initialize and return the Discogs API client."""
        if self._client is None:
            self._client = discogs_client.Client(
                _USER_AGENT, user_token=self._settings.discogs_user_token
            )
            # 429 handling belongs to the guarded wrapper, not the library.
            self._client.backoff_enabled = False
        return self._client

    def _search_sync(self, query: str, limit: int) -> list[dict[str, Any]]:
        results = self._get_client().search(query, type="artist")
        items: list[dict[str, Any]] = []
        for item in results:
            if len(items) >= limit:
                break
            items.append(dict(item.data))
        return items

    def _lookup_sync(self, artist_id: int) -> dict[str, Any]:
        artist = self._get_client().artist(artist_id)
        # The first attribute access triggers the HTTP fetch.
        artist.refresh()
        return dict(artist.data)

    def _translate(self, exc: Exception, what: str) -> Exception:
        authority = self.get_authority_name()
        code = getattr(exc, "status_code", None)
        if code == 429:
            return RateLimitError(message=f"Discogs {what} throttled", provider_name=authority)
        if isinstance(exc, HTTPError) and code is not None and 400 <= code < 500 and code not in (401, 403):
            return MalformedResponseError(
                message=f"Discogs {what} rejected with HTTP {code}", provider_name=authority
            )
        return SourceUnavailableError(message=f"Discogs {what} failed: {exc}", provider_name=authority)

    # -- ISourceClient implementation ------------------------------------------

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        try:
            items = await asyncio.to_thread(self._search_sync, query, limit)
        except (DiscogsAPIError, OSError) as exc:
            raise self._translate(exc, f"artist search for '{query}'") from exc

        records: list[RawRecord] = []
        for item in items:
            if item.get("id") is None or not item.get("title"):
                continue
            records.append(self._guard_conversion(str(item["id"]), self._search_record, item))
        self._logger.debug("discogs_search", query=query, result_count=len(records))
        return records

    async def lookup(self, external_id: str) -> RawRecord | None:
        if not external_id.isdigit():
            raise MalformedResponseError(
                message=f"Discogs artist ids are numeric, got '{external_id}'",
                provider_name=self.get_authority_name(),
            )
        try:
            data = await asyncio.to_thread(self._lookup_sync, int(external_id))
        except HTTPError as exc:
            if exc.status_code == 404:
                return None
            raise self._translate(exc, f"lookup of '{external_id}'") from exc
        except (DiscogsAPIError, OSError) as exc:
            raise self._translate(exc, f"lookup of '{external_id}'") from exc

        if not data.get("name"):
            raise MalformedResponseError(
                message=f"Discogs artist '{external_id}' has no name",
                provider_name=self.get_authority_name(),
            )
        return self._guard_conversion(external_id, self._to_record, external_id, data)

    def get_authority_name(self) -> str:
        return "discogs"

    def is_available(self) -> bool:
        """Return ``True`` when a Discogs user token is configured."""
        return bool(self._settings.discogs_user_token)

    # -- Payload conversion ----------------------------------------------------

    def _guard_conversion(
        self, external_id: str, convert: Callable[..., RawRecord], *args: Any
    ) -> RawRecord:
        try:
            return convert(*args)
        except PAYLOAD_ERRORS as exc:
            raise MalformedResponseError(
                message=f"Unreadable Discogs artist '{external_id}': {exc}",
                provider_name=self.get_authority_name(),
            ) from exc

    def _search_record(self, item: dict[str, Any]) -> RawRecord:
        metadata = {"image_url": item["cover_image"]} if item.get("cover_image") else {}
        return RawRecord(
            authority=self.get_authority_name(),
            external_id=str(item["id"]),
            name=_clean_name(item["title"]),
            metadata=metadata,
        )

    def _to_record(self, external_id: str, data: dict[str, Any]) -> RawRecord:
        aliases: list[RawAlias] = [
            RawAlias(name=variation, tier=AliasTier.CREDITED)
            for variation in data.get("namevariations") or []
            if variation
        ]
        aliases.extend(
            RawAlias(name=_clean_name(alias["name"]), tier=AliasTier.OTHER)
            for alias in data.get("aliases") or []
            if isinstance(alias, dict) and alias.get("name")
        )
        if data.get("realname"):
            aliases.append(RawAlias(name=data["realname"], tier=AliasTier.OTHER))

        metadata: dict[str, Any] = {}
        images = data.get("images") or []
        if images and images[0].get("uri"):
            metadata["image_url"] = images[0]["uri"]
        if data.get("profile"):
            metadata["profile"] = data["profile"]

        return RawRecord(
            authority=self.get_authority_name(),
            external_id=external_id,
            name=_clean_name(data["name"]),
            aliases=tuple(aliases),
            cross_ids=cross_ids_from_urls(data.get("urls") or [], exclude=self.get_authority_name()),
            metadata=metadata,
        )


def _clean_name(name: str) -> str:
    return _DISAMBIGUATION_SUFFIX.sub("", name).strip()
