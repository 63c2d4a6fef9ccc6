"""ISNI authority client over the OCLC SRU endpoint.

ISNI (International Standard Name Identifier) is a bibliographic
registry.  It has no JSON API; records come back as ``isni-b`` XML from
an SRU ``searchRetrieve`` operation, parsed here with ElementTree.

Names are queried with CQL ``pica.na`` and ISNI numbers with
``pica.isn``.  An organisation's main name (or a person's
forename + surname) becomes the record name; every variant becomes an
OTHER alias.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET

import httpx

from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.source_client import ISourceClient, RawAlias, RawRecord
from artist_resolver.models.artist import AliasTier
from artist_resolver.providers.sources.http_status import send
from artist_resolver.utils.errors import MalformedResponseError
from artist_resolver.utils.external_urls import cross_ids_from_urls, normalize_isni
from artist_resolver.utils.logging import get_logger

_MAX_RECORDS = 50


class IsniClient(ISourceClient):
    """ISNI SRU search and lookup using an injected ``httpx.AsyncClient``."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient) -> None:
        self._base_url = settings.isni_base_url
        self._http = http_client
        self._logger = get_logger(__name__)

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        escaped = query.replace('"', " ")
        records = await self._search_retrieve(f'pica.na="{escaped}"', min(limit, _MAX_RECORDS))
        self._logger.debug("isni_search", query=query, result_count=len(records))
        return records

    async def lookup(self, external_id: str) -> RawRecord | None:
        isni = normalize_isni(external_id)
        records = await self._search_retrieve(f'pica.isn="{isni}"', 1)
        return records[0] if records else None

    def get_authority_name(self) -> str:
        return "isni"

    def is_available(self) -> bool:
        return bool(self._base_url)

    # ------------------------------------------------------------------

    async def _search_retrieve(self, cql: str, limit: int) -> list[RawRecord]:
        params = {
            "query": cql,
            "operation": "searchRetrieve",
            "recordSchema": "isni-b",
            "maximumRecords": str(limit),
        }
        response = await send(self._http.get(self._base_url, params=params), self.get_authority_name())
        if response.status_code == 404:
            return []
        try:
            root = ET.fromstring(response.content)
        except ET.ParseError as exc:
            raise MalformedResponseError(
                message=f"Unparseable SRU response: {exc}",
                provider_name=self.get_authority_name(),
            ) from exc
        return [r for r in (self._to_record(el) for el in root.iter("{*}responseRecord")) if r]

    def _to_record(self, element: ET.Element) -> RawRecord | None:
        isni_text = element.findtext(".//{*}isniUnformatted")
        if not isni_text:
            return None

        names = _organisation_names(element) or _personal_names(element)
        if not names:
            return None

        urls = [uri.text for uri in element.iter("{*}URI") if uri.text]
        return RawRecord(
            authority=self.get_authority_name(),
            external_id=normalize_isni(isni_text),
            name=names[0],
            aliases=tuple(RawAlias(name=n, tier=AliasTier.OTHER) for n in names[1:]),
            cross_ids=cross_ids_from_urls(urls, exclude=self.get_authority_name()),
        )


def _organisation_names(element: ET.Element) -> list[str]:
    names: list[str] = []
    for tag in ("organisationName", "organisationNameVariant"):
        for node in element.iter("{*}" + tag):
            main = (node.findtext("{*}mainName") or "").strip()
            if main and main not in names:
                names.append(main)
    return names


def _personal_names(element: ET.Element) -> list[str]:
    names: list[str] = []
    for tag in ("personalName", "personalNameVariant"):
        for node in element.iter("{*}" + tag):
            forename = (node.findtext("{*}forename") or "").strip()
            surname = (node.findtext("{*}surname") or "").strip()
            full = " ".join(part for part in (forename, surname) if part)
            if full and full not in names:
                names.append(full)
    return names
