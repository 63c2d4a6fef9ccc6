"""Unit tests for the per-authority circuit breaker."""

from __future__ import annotations

import asyncio

import pytest

from artist_resolver.utils.circuit_breaker import BreakerConfig, BreakerState, CircuitBreaker
from artist_resolver.utils.errors import (
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _breaker(clock: FakeClock, **overrides) -> CircuitBreaker:
    config = BreakerConfig(
        **{
            "failure_threshold": 3,
            "window_seconds": 60.0,
            "open_timeout_seconds": 30.0,
            "backoff_multiplier": 2.0,
            "max_open_timeout_seconds": 100.0,
            **overrides,
        }
    )
    return CircuitBreaker("musicbrainz", config, clock=clock)


async def _ok() -> str:
    return "ok"


async def _down() -> str:
    raise SourceUnavailableError("connection refused", provider_name="musicbrainz")


async def _fail(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(SourceUnavailableError):
            await breaker.call(_down)


# ======================================================================
# CLOSED -> OPEN
# ======================================================================


class TestOpening:
    @pytest.mark.asyncio
    async def test_successful_call_passes_through(self) -> None:
        breaker = _breaker(FakeClock())
        assert await breaker.call(_ok) == "ok"
        assert breaker.state is BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self) -> None:
        breaker = _breaker(FakeClock())
        await _fail(breaker, 2)
        assert breaker.state is BreakerState.CLOSED
        await _fail(breaker, 1)
        assert breaker.state is BreakerState.OPEN
        assert breaker.is_open() is True

    @pytest.mark.asyncio
    async def test_open_breaker_rejects_without_calling(self) -> None:
        breaker = _breaker(FakeClock())
        await _fail(breaker, 3)
        called = False

        async def operation() -> str:
            nonlocal called
            called = True
            return "ok"

        with pytest.raises(SourceUnavailableError) as exc_info:
            await breaker.call(operation)
        assert exc_info.value.breaker_open is True
        assert called is False
        assert breaker.snapshot()["blocked_calls"] == 1

    @pytest.mark.asyncio
    async def test_failures_outside_window_expire(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock)
        await _fail(breaker, 2)
        clock.advance(61)
        await _fail(breaker, 2)
        assert breaker.state is BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_rate_limit_is_neutral(self) -> None:
        breaker = _breaker(FakeClock())

        async def throttled() -> str:
            raise RateLimitError(provider_name="musicbrainz")

        for _ in range(5):
            with pytest.raises(RateLimitError):
                await breaker.call(throttled)
        assert breaker.state is BreakerState.CLOSED
        assert breaker.snapshot()["recent_failures"] == 0

    @pytest.mark.asyncio
    async def test_malformed_response_counts_as_reachable(self) -> None:
        breaker = _breaker(FakeClock())
        await _fail(breaker, 2)

        async def garbled() -> str:
            raise MalformedResponseError(provider_name="musicbrainz")

        with pytest.raises(MalformedResponseError):
            await breaker.call(garbled)
        await _fail(breaker, 2)
        assert breaker.state is BreakerState.CLOSED


# ======================================================================
# OPEN -> HALF_OPEN -> CLOSED / OPEN
# ======================================================================


class TestRecovery:
    @pytest.mark.asyncio
    async def test_probe_success_closes(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock)
        await _fail(breaker, 3)
        clock.advance(30)
        assert breaker.is_open() is False

        assert await breaker.call(_ok) == "ok"
        assert breaker.state is BreakerState.CLOSED
        assert breaker.open_timeout == 30.0

    @pytest.mark.asyncio
    async def test_probe_failure_reopens_with_backoff(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock)
        await _fail(breaker, 3)
        clock.advance(30)

        await _fail(breaker, 1)
        assert breaker.state is BreakerState.OPEN
        assert breaker.open_timeout == 60.0

        clock.advance(59)
        assert breaker.is_open() is True
        clock.advance(1)
        await _fail(breaker, 1)
        # 120 capped at the configured maximum.
        assert breaker.open_timeout == 100.0

    @pytest.mark.asyncio
    async def test_half_open_admits_a_single_probe(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock)
        await _fail(breaker, 3)
        clock.advance(30)

        release = asyncio.Event()

        async def slow_probe() -> str:
            await release.wait()
            return "ok"

        probe = asyncio.create_task(breaker.call(slow_probe))
        await asyncio.sleep(0)
        assert breaker.state is BreakerState.HALF_OPEN

        with pytest.raises(SourceUnavailableError) as exc_info:
            await breaker.call(_ok)
        assert exc_info.value.breaker_open is True

        release.set()
        assert await probe == "ok"
        assert breaker.state is BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_cancelled_probe_frees_the_slot(self) -> None:
        clock = FakeClock()
        breaker = _breaker(clock)
        await _fail(breaker, 3)
        clock.advance(30)

        async def hang() -> str:
            await asyncio.sleep(10)
            return "never"

        probe = asyncio.create_task(breaker.call(hang))
        await asyncio.sleep(0)
        probe.cancel()
        with pytest.raises(asyncio.CancelledError):
            await probe

        assert await breaker.call(_ok) == "ok"
        assert breaker.state is BreakerState.CLOSED


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_snapshot_and_reset(self) -> None:
        breaker = _breaker(FakeClock())
        await _fail(breaker, 3)
        snap = breaker.snapshot()
        assert snap["authority"] == "musicbrainz"
        assert snap["state"] == "open"
        assert snap["trips"] == 1

        breaker.reset()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.is_open() is False

    def test_config_from_settings(self, settings) -> None:
        config = BreakerConfig.from_settings(settings)
        assert config.failure_threshold == settings.breaker_failure_threshold
        assert config.max_open_timeout_seconds == settings.breaker_max_open_timeout_seconds
