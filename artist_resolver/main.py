"""Artist resolver FastAPI application entry point.

Wires together the authority clients, the guarded call path, the query
cache, the canonical store and the services via dependency injection.
Loads configuration from ``config/config.yaml`` and ``.env`` and
configures structured logging.

``build_resolver`` is also used by the CLI and by tests to assemble the
same component graph outside the web server.
"""

from __future__ import annotations

from collections.abc import Sequence
from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from artist_resolver.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from artist_resolver.api.routes import API_VERSION
from artist_resolver.api.routes import router as api_router
from artist_resolver.config.loader import load_settings
from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.interfaces.credential_provider import (
    ICredentialProvider,
    StaticCredentialProvider,
)
from artist_resolver.interfaces.source_client import ISourceClient
from artist_resolver.providers.cache.memory_cache import MemoryCacheProvider
from artist_resolver.providers.sources.discogs_provider import DiscogsClient
from artist_resolver.providers.sources.guarded import GuardedSourceClient
from artist_resolver.providers.sources.isni_provider import IsniClient
from artist_resolver.providers.sources.musicbrainz_provider import MusicBrainzClient
from artist_resolver.providers.sources.spotify_provider import SpotifyClient
from artist_resolver.providers.store.memory_store import MemoryArtistStore
from artist_resolver.providers.store.sqlite_store import SQLiteArtistStore
from artist_resolver.services.export_service import ExportService
from artist_resolver.services.matching_engine import MatchingEngine
from artist_resolver.services.resolution_orchestrator import ResolutionOrchestrator
from artist_resolver.utils.circuit_breaker import BreakerConfig, CircuitBreaker
from artist_resolver.utils.concurrency import RateLimiter
from artist_resolver.utils.errors import ConfigurationError
from artist_resolver.utils.logging import configure_logging, get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Component assembly
# ---------------------------------------------------------------------------


def _build_client(
    authority: str,
    app_settings: Settings,
    http_client: httpx.AsyncClient,
    credentials: ICredentialProvider,
) -> ISourceClient:
    if authority == "musicbrainz":
        return MusicBrainzClient(settings=app_settings)
    if authority == "discogs":
        return DiscogsClient(settings=app_settings)
    if authority == "isni":
        return IsniClient(settings=app_settings, http_client=http_client)
    if authority == "spotify":
        return SpotifyClient(settings=app_settings, http_client=http_client, credentials=credentials)
    raise ConfigurationError(f"Unknown authority in authority_priority: {authority}")


def guard(client: ISourceClient, app_settings: Settings) -> GuardedSourceClient:
    """Wrap *client* with its own breaker and rate limiter."""
    authority = client.get_authority_name()
    return GuardedSourceClient(
        client,
        breaker=CircuitBreaker(authority, BreakerConfig.from_settings(app_settings)),
        limiter=RateLimiter(rate=app_settings.rate_limit_for(authority)),
        timeout_seconds=app_settings.source_timeout_seconds,
        rate_limit_retries=app_settings.rate_limit_retries,
        max_backoff_seconds=app_settings.rate_limit_max_backoff_seconds,
    )


def _build_store(app_settings: Settings) -> IArtistStore:
    if app_settings.store_backend == "sqlite":
        return SQLiteArtistStore(db_path=app_settings.store_db_path)
    return MemoryArtistStore()


def build_resolver(
    app_settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
    credentials: ICredentialProvider | None = None,
    clients: Sequence[ISourceClient] | None = None,
    store: IArtistStore | None = None,
) -> dict[str, Any]:
    """Construct every component of the resolver.

    Parameters
    ----------
    app_settings:
        Validated settings.
    http_client:
        Shared client for the HTTP authorities; created when omitted.
    credentials:
        Credential provider; defaults to the static tokens in settings.
    clients:
        Raw authority clients to use instead of the configured ones,
        in priority order.  Each is still wrapped in its own guard.
    store:
        Canonical store to use instead of the configured backend.

    Returns
    -------
    dict[str, Any]
        Flat mapping of named components, stored on ``app.state``.
    """
    http_client = http_client or httpx.AsyncClient(timeout=app_settings.source_timeout_seconds)
    credentials = credentials or StaticCredentialProvider(
        {"spotify": app_settings.spotify_access_token}
    )

    if clients is None:
        clients = [
            _build_client(authority, app_settings, http_client, credentials)
            for authority in app_settings.authority_priority
        ]
    sources = [guard(client, app_settings) for client in clients]

    store = store or _build_store(app_settings)
    cache = MemoryCacheProvider(
        max_size=app_settings.query_cache_max_size,
        ttl=app_settings.query_cache_ttl_seconds,
    )
    matcher = MatchingEngine.from_settings(app_settings)
    orchestrator = ResolutionOrchestrator(
        sources=sources,
        store=store,
        cache=cache,
        matcher=matcher,
        settings=app_settings,
    )

    return {
        "settings": app_settings,
        "http_client": http_client,
        "sources": sources,
        "store": store,
        "cache": cache,
        "matcher": matcher,
        "orchestrator": orchestrator,
        "export_service": ExportService(store),
    }


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app(
    app_settings: Settings | None = None,
    components: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and configure the FastAPI application.

    *components* (from :func:`build_resolver`) is built from settings at
    startup when omitted.
    """

    @asynccontextmanager
    async def _lifespan(application: FastAPI):  # noqa: ANN202
        settings = app_settings or load_settings()
        built = components or build_resolver(settings)
        for key, value in built.items():
            setattr(application.state, key, value)

        await built["store"].initialize()
        _logger.info(
            "app_startup",
            version=API_VERSION,
            environment=settings.app_env,
            authorities=[s.get_authority_name() for s in built["sources"]],
            store_backend=type(built["store"]).__name__,
        )

        yield

        await built["store"].close()
        http_client: httpx.AsyncClient = built["http_client"]
        await http_client.aclose()
        _logger.info("app_shutdown", message="Store and HTTP client closed")

    application = FastAPI(
        title="Artist Resolver API",
        version=API_VERSION,
        description=(
            "Resolve free-text artist names and platform artist ids to one "
            "canonical artist record, backed by MusicBrainz, Discogs, ISNI "
            "and Spotify."
        ),
        lifespan=_lifespan,
    )

    # Order matters: last added = first executed.
    application.add_middleware(ErrorHandlingMiddleware)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


def main() -> None:
    settings = load_settings()
    configure_logging(
        log_level=settings.log_level,
        json_output=(settings.app_env == "production"),
    )
    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
    )


if __name__ == "__main__":
    main()
