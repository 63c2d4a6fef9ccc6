"""Spotify authority client over the Spotify Web API.

Authentication is owned by an external collaborator: every request asks
the injected :class:`ICredentialProvider` for headers.  Spotify exposes a
single name per artist, so records carry no aliases; genres, popularity
and the first image are kept as enrichment metadata.
"""

from __future__ import annotations

from typing import Any

import httpx

from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.credential_provider import ICredentialProvider
from artist_resolver.interfaces.source_client import ISourceClient, RawRecord
from artist_resolver.providers.sources.http_status import send
from artist_resolver.utils.errors import PAYLOAD_ERRORS, MalformedResponseError
from artist_resolver.utils.logging import get_logger


class SpotifyClient(ISourceClient):
    """Spotify artist search and lookup."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        credentials: ICredentialProvider,
    ) -> None:
        self._base_url = settings.spotify_base_url.rstrip("/")
        self._http = http_client
        self._credentials = credentials
        self._logger = get_logger(__name__)

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        payload = await self._get_json(
            "/search", params={"q": query, "type": "artist", "limit": str(min(limit, 50))}
        )
        artists = (payload or {}).get("artists")
        items = artists.get("items") if isinstance(artists, dict) else None
        if not isinstance(items, list):
            raise MalformedResponseError(
                message="Search response has no artists.items",
                provider_name=self.get_authority_name(),
            )
        records = [r for r in (self._to_record(item) for item in items) if r is not None]
        self._logger.debug("spotify_search", query=query, result_count=len(records))
        return records

    async def lookup(self, external_id: str) -> RawRecord | None:
        payload = await self._get_json(f"/artists/{external_id}")
        if payload is None:
            return None
        return self._to_record(payload)

    def get_authority_name(self) -> str:
        return "spotify"

    def is_available(self) -> bool:
        return bool(self._base_url)

    # ------------------------------------------------------------------

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> dict[str, Any] | None:
        headers = await self._credentials.get_headers(self.get_authority_name())
        response = await send(
            self._http.get(f"{self._base_url}{path}", params=params, headers=headers),
            self.get_authority_name(),
        )
        if response.status_code == 404:
            return None
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                message=f"Invalid JSON from {path}", provider_name=self.get_authority_name()
            ) from exc
        if not isinstance(payload, dict):
            raise MalformedResponseError(
                message=f"Unexpected payload from {path}", provider_name=self.get_authority_name()
            )
        return payload

    def _to_record(self, item: Any) -> RawRecord | None:
        if not isinstance(item, dict) or not item.get("id") or not item.get("name"):
            return None
        try:
            return self._convert(item)
        except PAYLOAD_ERRORS as exc:
            raise MalformedResponseError(
                message=f"Unreadable artist item {item.get('id')!r}: {exc}",
                provider_name=self.get_authority_name(),
            ) from exc

    def _convert(self, item: dict[str, Any]) -> RawRecord:
        if not isinstance(item["name"], str):
            raise TypeError(f"name is {type(item['name']).__name__}, not str")
        metadata: dict[str, Any] = {}
        if item.get("genres"):
            metadata["genres"] = list(item["genres"])
        if item.get("popularity") is not None:
            metadata["popularity"] = int(item["popularity"])
        images = item.get("images") or []
        if images and images[0].get("url"):
            metadata["image_url"] = images[0]["url"]
        return RawRecord(
            authority=self.get_authority_name(),
            external_id=str(item["id"]),
            name=item["name"],
            metadata=metadata,
        )
