"""Abstract base class for external artist authorities.

Defines the contract every authority client (MusicBrainz, Discogs, ISNI,
Spotify...) implements.  Authority-specific payloads are converted into
the common :class:`RawRecord` shape inside the client, immediately on
receipt, so the matching engine never sees provider-specific data.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from artist_resolver.models.artist import AliasTier


@dataclass(frozen=True)
class RawAlias:
    """A name an authority reports for an artist.

    Attributes
    ----------
    name:
        The name as the authority spells it.
    tier:
        What kind of name it is (official, credited, other).
    locale:
        Optional locale tag (``"ja"``, ``"en_US"``) for transliterations.
    """

    name: str
    tier: AliasTier = AliasTier.OTHER
    locale: str | None = None


@dataclass(frozen=True)
class RawRecord:
    """One authority's view of one artist.

    Attributes
    ----------
    authority:
        Name of the authority that produced the record (``"musicbrainz"``).
    external_id:
        The authority's own identifier for the artist.
    name:
        The authority's primary name for the artist.
    aliases:
        Further names, each tagged with its tier.
    cross_ids:
        Identifiers for the same artist at *other* authorities, as reported
        by this one (e.g. a Discogs id found in MusicBrainz URL relations).
    metadata:
        Enrichment-only attributes; never used for identity.
    """

    authority: str
    external_id: str
    name: str
    aliases: tuple[RawAlias, ...] = ()
    cross_ids: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    def all_ids(self) -> dict[str, str]:
        """Own id plus cross-ids, keyed by authority."""
        ids = dict(self.cross_ids)
        ids[self.authority] = self.external_id
        return ids

    def populated_metadata_count(self) -> int:
        return sum(1 for value in self.metadata.values() if value not in (None, "", [], {}))


class ISourceClient(ABC):
    """Contract for an external artist authority.

    Implementations raise :class:`~artist_resolver.utils.errors.SourceUnavailableError`
    for network errors, timeouts and 5xx responses,
    :class:`~artist_resolver.utils.errors.RateLimitError` for 429s and
    :class:`~artist_resolver.utils.errors.MalformedResponseError` for
    payloads they cannot read.  Breakers and rate limiters are applied by
    the wrapper in :mod:`artist_resolver.providers.sources.guarded`, not here.
    """

    @abstractmethod
    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        """Search the authority for artists matching *query*.

        Parameters
        ----------
        query:
            Free-text artist name as typed by the caller.
        limit:
            Maximum number of records to return.

        Returns
        -------
        list[RawRecord]
            Zero or more records in the authority's relevance order.
        """

    @abstractmethod
    async def lookup(self, external_id: str) -> RawRecord | None:
        """Fetch a single artist by the authority's own identifier.

        Returns
        -------
        RawRecord or None
            ``None`` when the authority does not know *external_id*.
        """

    @abstractmethod
    def get_authority_name(self) -> str:
        """Return the authority identifier, e.g. ``"musicbrainz"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the client is configured (keys present, etc.).

        This is a configuration check only; reachability is the circuit
        breaker's concern.
        """
