"""Breaker, rate limit and timeout wrapper around any ISourceClient.

Every authority call made by the orchestrator goes through a
:class:`GuardedSourceClient`.  One call runs as::

    breaker.call(
        limiter.acquire()
        wait_for(client.search(...), source_timeout)
    )

Outcomes:

- success                 -> result returned, breaker success recorded
- SourceUnavailableError  -> counted by the breaker, re-raised
- timeout                 -> converted to SourceUnavailableError
- RateLimitError          -> limiter penalized by ``Retry-After`` (or an
                             exponential backoff), call retried up to
                             ``rate_limit_retries`` times; exhaustion is
                             reported as SourceUnavailableError for this
                             request only and never reaches the breaker
- MalformedResponseError  -> logged, treated as a non-match (``[]``/``None``)
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from artist_resolver.interfaces.source_client import ISourceClient, RawRecord
from artist_resolver.utils.circuit_breaker import CircuitBreaker
from artist_resolver.utils.concurrency import RateLimiter
from artist_resolver.utils.errors import (
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")


class GuardedSourceClient(ISourceClient):
    """Decorates an authority client with per-authority resilience state.

    Parameters
    ----------
    client:
        The raw authority client.
    breaker:
        This authority's circuit breaker (not shared with other authorities).
    limiter:
        This authority's token bucket.
    timeout_seconds:
        Upper bound for one call, excluding time spent queued on the limiter.
    rate_limit_retries:
        How many times a 429 is retried before giving up.
    max_backoff_seconds:
        Cap on any single rate-limit wait, including server-suggested ones.
    """

    def __init__(
        self,
        client: ISourceClient,
        breaker: CircuitBreaker,
        limiter: RateLimiter,
        timeout_seconds: float = 10.0,
        rate_limit_retries: int = 3,
        max_backoff_seconds: float = 30.0,
    ) -> None:
        self._client = client
        self._breaker = breaker
        self._limiter = limiter
        self._timeout = timeout_seconds
        self._retries = rate_limit_retries
        self._max_backoff = max_backoff_seconds

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def inner(self) -> ISourceClient:
        return self._client

    # ------------------------------------------------------------------
    # ISourceClient implementation
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 10) -> list[RawRecord]:
        return await self._guarded("search", lambda: self._client.search(query, limit), [])

    async def lookup(self, external_id: str) -> RawRecord | None:
        return await self._guarded("lookup", lambda: self._client.lookup(external_id), None)

    def get_authority_name(self) -> str:
        return self._client.get_authority_name()

    def is_available(self) -> bool:
        return self._client.is_available()

    # ------------------------------------------------------------------
    # Guarding
    # ------------------------------------------------------------------

    async def _guarded(
        self,
        operation: str,
        call: Callable[[], Awaitable[_T]],
        on_malformed: _T,
    ) -> _T:
        authority = self.get_authority_name()
        attempt = 0
        while True:
            try:
                return await self._breaker.call(lambda: self._attempt(call))
            except RateLimitError as exc:
                attempt += 1
                if attempt > self._retries:
                    logger.warning(
                        "source_rate_limit_exhausted",
                        authority=authority,
                        operation=operation,
                        attempts=attempt,
                    )
                    raise SourceUnavailableError(
                        message=f"Rate limited after {attempt} attempts",
                        provider_name=authority,
                    ) from exc
                delay = exc.retry_after if exc.retry_after is not None else 2.0 ** (attempt - 1)
                delay = min(delay, self._max_backoff)
                logger.info(
                    "source_rate_limited",
                    authority=authority,
                    operation=operation,
                    attempt=attempt,
                    backoff_seconds=delay,
                )
                self._limiter.penalize(delay)
            except MalformedResponseError as exc:
                logger.warning(
                    "source_malformed_response",
                    authority=authority,
                    operation=operation,
                    error=str(exc),
                )
                return on_malformed

    async def _attempt(self, call: Callable[[], Awaitable[_T]]) -> _T:
        await self._limiter.acquire()
        try:
            return await asyncio.wait_for(call(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise SourceUnavailableError(
                message=f"No answer within {self._timeout:.1f}s",
                provider_name=self.get_authority_name(),
            ) from exc
