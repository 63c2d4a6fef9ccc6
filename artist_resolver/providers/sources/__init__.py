"""Authority client implementations.

One ISourceClient per authority, tried in the configured priority order
by the resolution orchestrator:

    1. MusicBrainzClient, MusicBrainz WS/2 (no key; 1 req/s).  Primary:
       typed aliases and URL relations linking Discogs, Spotify and ISNI.
    2. DiscogsClient, Discogs API (user token; 60 req/min).  Name
       variations as credited names.
    3. SpotifyClient, Spotify Web API (headers from ICredentialProvider).
    4. IsniClient, ISNI SRU XML endpoint (no key).

GuardedSourceClient wraps each of them with its own circuit breaker, rate
limiter and timeout.  Each client converts authority payloads into
RawRecord at its boundary.
"""

from artist_resolver.providers.sources.discogs_provider import DiscogsClient
from artist_resolver.providers.sources.guarded import GuardedSourceClient
from artist_resolver.providers.sources.isni_provider import IsniClient
from artist_resolver.providers.sources.musicbrainz_provider import MusicBrainzClient
from artist_resolver.providers.sources.spotify_provider import SpotifyClient

__all__ = [
    "DiscogsClient",
    "GuardedSourceClient",
    "IsniClient",
    "MusicBrainzClient",
    "SpotifyClient",
]
