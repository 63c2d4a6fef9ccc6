"""Abstract contracts for everything the resolver talks to.

Concrete adapters live in ``artist_resolver/providers/`` and are injected
by ``artist_resolver.main.build_resolver``; tests inject fakes.

    Interface              Concrete implementations
    ISourceClient          MusicBrainzClient, DiscogsClient, SpotifyClient,
                           IsniClient (each wrapped in GuardedSourceClient)
    IArtistStore           MemoryArtistStore, SQLiteArtistStore
    ICacheProvider         MemoryCacheProvider
    ICredentialProvider    StaticCredentialProvider
"""

from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.interfaces.cache_provider import ICacheProvider
from artist_resolver.interfaces.credential_provider import (
    ICredentialProvider,
    StaticCredentialProvider,
)
from artist_resolver.interfaces.source_client import ISourceClient, RawAlias, RawRecord

__all__ = [
    "IArtistStore",
    "ICacheProvider",
    "ICredentialProvider",
    "ISourceClient",
    "RawAlias",
    "RawRecord",
    "StaticCredentialProvider",
]
