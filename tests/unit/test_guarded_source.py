"""Unit tests for GuardedSourceClient: breaker, rate limit and timeout wrapping."""

from __future__ import annotations

import asyncio

import pytest

from artist_resolver.interfaces.source_client import RawRecord
from artist_resolver.providers.sources.guarded import GuardedSourceClient
from artist_resolver.utils.circuit_breaker import BreakerConfig, BreakerState, CircuitBreaker
from artist_resolver.utils.concurrency import RateLimiter
from artist_resolver.utils.errors import (
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)
from tests.conftest import FakeSource, make_record


class FakeTime:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def _guard(
    client,
    time: FakeTime | None = None,
    threshold: int = 3,
    timeout: float = 1.0,
    retries: int = 2,
    max_backoff: float = 5.0,
) -> GuardedSourceClient:
    time = time or FakeTime()
    return GuardedSourceClient(
        client,
        breaker=CircuitBreaker(
            client.get_authority_name(), BreakerConfig(failure_threshold=threshold)
        ),
        limiter=RateLimiter(rate=1000, clock=time.clock, sleep=time.sleep),
        timeout_seconds=timeout,
        rate_limit_retries=retries,
        max_backoff_seconds=max_backoff,
    )


class ThrottledOnce(FakeSource):
    """Answers 429 on the first search, then behaves normally."""

    def __init__(self, records: list[RawRecord], retry_after: float | None = None) -> None:
        super().__init__("discogs", records)
        self._retry_after = retry_after
        self._throttled = False

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        if not self._throttled:
            self._throttled = True
            self.search_calls.append(query)
            raise RateLimitError(provider_name="discogs", retry_after=self._retry_after)
        return await super().search(query, limit)


# ======================================================================
# Pass-through
# ======================================================================


class TestPassThrough:
    @pytest.mark.asyncio
    async def test_search_and_lookup(self, beatles_mb) -> None:
        guarded = _guard(FakeSource("musicbrainz", [beatles_mb]))

        assert await guarded.search("The Beatles") == [beatles_mb]
        assert await guarded.lookup(beatles_mb.external_id) == beatles_mb
        assert await guarded.lookup("unknown") is None
        assert guarded.get_authority_name() == "musicbrainz"
        assert guarded.is_available() is True

    @pytest.mark.asyncio
    async def test_limit_forwarded(self) -> None:
        records = [make_record("spotify", str(i), f"Artist {i}") for i in range(5)]
        guarded = _guard(FakeSource("spotify", records))
        assert len(await guarded.search("artist", limit=2)) == 2

    def test_exposes_inner_and_breaker(self) -> None:
        source = FakeSource("isni")
        guarded = _guard(source)
        assert guarded.inner is source
        assert guarded.breaker.name == "isni"


# ======================================================================
# Failure handling
# ======================================================================


class TestFailures:
    @pytest.mark.asyncio
    async def test_unavailable_counts_and_opens_breaker(self) -> None:
        source = FakeSource(
            "musicbrainz", error=SourceUnavailableError("503", provider_name="musicbrainz")
        )
        guarded = _guard(source, threshold=2)

        for _ in range(2):
            with pytest.raises(SourceUnavailableError):
                await guarded.search("x")
        assert guarded.breaker.state is BreakerState.OPEN

        with pytest.raises(SourceUnavailableError) as exc_info:
            await guarded.search("x")
        assert exc_info.value.breaker_open is True
        assert len(source.search_calls) == 2

    @pytest.mark.asyncio
    async def test_timeout_becomes_unavailable(self) -> None:
        source = FakeSource("spotify", delay=1.0)
        guarded = _guard(source, timeout=0.05)

        with pytest.raises(SourceUnavailableError):
            await guarded.search("slow")
        assert source.cancelled == 1
        assert guarded.breaker.snapshot()["recent_failures"] == 1

    @pytest.mark.asyncio
    async def test_malformed_is_a_non_match(self) -> None:
        source = FakeSource("isni", error=MalformedResponseError(provider_name="isni"))
        guarded = _guard(source)

        assert await guarded.search("garbled") == []
        assert await guarded.lookup("garbled") is None
        assert guarded.breaker.state is BreakerState.CLOSED
        assert guarded.breaker.snapshot()["recent_failures"] == 0


# ======================================================================
# Rate limiting
# ======================================================================


class TestRateLimit:
    @pytest.mark.asyncio
    async def test_retries_after_backoff(self, beatles_discogs) -> None:
        time = FakeTime()
        source = ThrottledOnce([beatles_discogs])
        guarded = _guard(source, time=time)

        assert await guarded.search("The Beatles") == [beatles_discogs]
        assert time.sleeps == [pytest.approx(1.0)]
        assert len(source.search_calls) == 2

    @pytest.mark.asyncio
    async def test_retry_after_is_capped(self, beatles_discogs) -> None:
        time = FakeTime()
        guarded = _guard(ThrottledOnce([beatles_discogs], retry_after=120), time=time, max_backoff=5.0)

        await guarded.search("The Beatles")
        assert time.sleeps == [pytest.approx(5.0)]

    @pytest.mark.asyncio
    async def test_exhausted_retries_do_not_trip_breaker(self) -> None:
        time = FakeTime()
        source = FakeSource("discogs", error=RateLimitError(provider_name="discogs"))
        guarded = _guard(source, time=time, retries=2, threshold=1)

        with pytest.raises(SourceUnavailableError) as exc_info:
            await guarded.search("busy")

        assert exc_info.value.breaker_open is False
        assert len(source.search_calls) == 3
        assert time.sleeps == [pytest.approx(1.0), pytest.approx(2.0)]
        assert guarded.breaker.state is BreakerState.CLOSED
