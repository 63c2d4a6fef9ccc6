"""Shared pytest fixtures for the artist resolver test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx
import pytest
import structlog

from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.interfaces.source_client import ISourceClient, RawAlias, RawRecord
from artist_resolver.models.artist import AliasTier

MB_BEATLES = "b10bbbfc-cf9e-42e0-be17-e2c3e1d2600d"
DISCOGS_BEATLES = "82730"
SPOTIFY_BEATLES = "3WrFJ7ztbogyGnTHbHJFl2"

# Loggers are resolved on every call so capture_logs can intercept them.
structlog.configure(cache_logger_on_first_use=False)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def make_settings(**overrides: Any) -> Settings:
    """Settings for tests: no .env, fast rate limits, short timeouts."""
    defaults: dict[str, Any] = {
        "musicbrainz_rate_limit": 1000.0,
        "discogs_rate_limit": 1000.0,
        "spotify_rate_limit": 1000.0,
        "isni_rate_limit": 1000.0,
        "source_timeout_seconds": 2.0,
        "fanout_timeout_seconds": 2.0,
        "musicbrainz_app_name": "artist-resolver-test",
        "musicbrainz_contact": "test@example.com",
        "discogs_user_token": "test-token",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


@pytest.fixture(autouse=True)
def captured_logs():
    """Route structlog events into a list instead of stdout."""
    with structlog.testing.capture_logs() as logs:
        yield logs


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).parent.parent


# ---------------------------------------------------------------------------
# Authority records and fake clients
# ---------------------------------------------------------------------------


def make_record(
    authority: str,
    external_id: str,
    name: str,
    aliases: Sequence[tuple[str, AliasTier]] = (),
    cross_ids: dict[str, str] | None = None,
    metadata: dict[str, Any] | None = None,
) -> RawRecord:
    return RawRecord(
        authority=authority,
        external_id=external_id,
        name=name,
        aliases=tuple(RawAlias(name=n, tier=t) for n, t in aliases),
        cross_ids=dict(cross_ids or {}),
        metadata=dict(metadata or {}),
    )


class FakeSource(ISourceClient):
    """Scriptable authority client.

    ``search`` returns ``records``; ``lookup`` finds a record by its own id
    in ``records`` or ``lookups``.  ``error`` is raised by both when set,
    after ``delay`` seconds.
    """

    def __init__(
        self,
        authority: str,
        records: Sequence[RawRecord] = (),
        *,
        lookups: Sequence[RawRecord] = (),
        error: Exception | None = None,
        delay: float = 0.0,
        available: bool = True,
    ) -> None:
        self.authority = authority
        self.records = list(records)
        self.lookups = {r.external_id: r for r in lookups}
        self.error = error
        self.delay = delay
        self.available = available
        self.search_calls: list[str] = []
        self.lookup_calls: list[str] = []
        self.cancelled = 0

    async def _pause(self) -> None:
        if not self.delay:
            return
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        self.search_calls.append(query)
        await self._pause()
        if self.error is not None:
            raise self.error
        return self.records[:limit]

    async def lookup(self, external_id: str) -> RawRecord | None:
        self.lookup_calls.append(external_id)
        await self._pause()
        if self.error is not None:
            raise self.error
        for record in self.records:
            if record.external_id == external_id:
                return record
        return self.lookups.get(external_id)

    def get_authority_name(self) -> str:
        return self.authority

    def is_available(self) -> bool:
        return self.available


@pytest.fixture
def beatles_mb() -> RawRecord:
    return make_record(
        "musicbrainz",
        MB_BEATLES,
        "The Beatles",
        aliases=[("Beatles", AliasTier.PRIMARY), ("Fab Four", AliasTier.OTHER)],
        cross_ids={"discogs": DISCOGS_BEATLES, "spotify": SPOTIFY_BEATLES},
        metadata={"country": "United Kingdom", "formed_year": 1960},
    )


@pytest.fixture
def beatles_discogs() -> RawRecord:
    return make_record(
        "discogs",
        DISCOGS_BEATLES,
        "The Beatles",
        aliases=[("Beatles, The", AliasTier.CREDITED)],
        metadata={"profile": "British rock band"},
    )


@pytest.fixture
def beatles_spotify() -> RawRecord:
    return make_record(
        "spotify",
        SPOTIFY_BEATLES,
        "The Beatles",
        metadata={"genres": ["british invasion"], "popularity": 86},
    )


# ---------------------------------------------------------------------------
# Component assembly
# ---------------------------------------------------------------------------


def build_components(
    clients: Sequence[ISourceClient],
    app_settings: Settings | None = None,
    store: IArtistStore | None = None,
) -> dict[str, Any]:
    """Full resolver graph around fake clients (each still guarded)."""
    from artist_resolver.main import build_resolver

    return build_resolver(
        app_settings or make_settings(),
        http_client=httpx.AsyncClient(),
        clients=clients,
        store=store,
    )
