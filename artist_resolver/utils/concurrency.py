"""Shared concurrency primitives for the resolution pipeline.

Four building blocks are exposed:

1. **RateLimiter** -- a token bucket per authority.  Callers queue on
   ``acquire()`` instead of being rejected, so bursts are smoothed to the
   authority's published request rate.

2. **SingleFlight** -- collapses concurrent calls that share a key into
   one underlying task.  Every waiter receives the same result (or the
   same exception).  The shared task is cancelled only when its last
   waiter goes away.

3. **KeyedLock** -- per-key ``asyncio.Lock`` registry.  Multi-key holds
   acquire in sorted order so two writers touching overlapping key sets
   cannot deadlock.

4. **throttled_gather** -- ``asyncio.gather`` with a semaphore around
   each awaitable; used for bounded batch resolution.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, TypeVar

import structlog

from artist_resolver.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Token-bucket rate limiter
# ---------------------------------------------------------------------------


class RateLimiter:
    """Token bucket allowing *rate* requests every *per* seconds, bursting to *burst*.

    Waiters are served FIFO: the bucket lock is held while sleeping for the
    next token, so later callers queue behind earlier ones.

    Parameters
    ----------
    rate:
        Requests allowed per window.
    per:
        Window length in seconds (``rate=60, per=60`` is one per second).
    burst:
        Bucket capacity (tokens available after an idle period).
    clock / sleep:
        Injectable time source and sleeper for deterministic tests.
    """

    def __init__(
        self,
        rate: float,
        per: float = 1.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if rate <= 0 or per <= 0:
            raise ValueError("rate and per must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")
        self._rate = rate / per
        self._capacity = float(burst)
        self._tokens = float(burst)
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._blocked_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def rate(self) -> float:
        return self._rate

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            while True:
                now = self._clock()
                if now < self._blocked_until:
                    await self._sleep(self._blocked_until - now)
                    continue
                self._refill(now)
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return
                await self._sleep((1.0 - self._tokens) / self._rate)

    def penalize(self, seconds: float) -> None:
        """Hold every caller back for *seconds* (e.g. a ``Retry-After``)."""
        if seconds <= 0:
            return
        self._blocked_until = max(self._blocked_until, self._clock() + seconds)
        self._tokens = 0.0

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(self._capacity, self._tokens + elapsed * self._rate)
        self._last_refill = now


# ---------------------------------------------------------------------------
# Single-flight request collapsing
# ---------------------------------------------------------------------------


@dataclass
class _Flight:
    task: asyncio.Task
    waiters: int = 0
    abandoned: bool = False


@dataclass
class SingleFlight(Generic[_T]):
    """Deduplicate concurrent work by key.

    >>> flight = SingleFlight()
    >>> await flight.do("beatles", lambda: resolve("beatles"))

    The first caller for a key starts ``fn()`` as a task; callers arriving
    while it runs await the same task.  A cancelled waiter only detaches
    itself; the task is cancelled when no waiter remains.
    """

    _flights: dict[str, _Flight] = field(default_factory=dict)

    def in_flight(self) -> int:
        return sum(1 for f in self._flights.values() if not f.abandoned)

    async def do(self, key: str, fn: Callable[[], Awaitable[_T]]) -> _T:
        flight = self._flights.get(key)
        if flight is None or flight.abandoned:
            task = asyncio.ensure_future(fn())
            flight = _Flight(task=task)
            self._flights[key] = flight
            task.add_done_callback(lambda _t, k=key, f=flight: self._forget(k, f))
        else:
            _logger.debug("single_flight_joined", key=key, waiters=flight.waiters + 1)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                flight.abandoned = True
                flight.task.cancel()

    def _forget(self, key: str, flight: _Flight) -> None:
        if self._flights.get(key) is flight:
            del self._flights[key]
        if not flight.task.cancelled() and flight.task.exception() is not None and flight.waiters == 0:
            # Nobody is left to observe the error; retrieve it so asyncio stays quiet.
            _logger.debug("single_flight_orphan_error", key=key, error=str(flight.task.exception()))


# ---------------------------------------------------------------------------
# Per-key locks
# ---------------------------------------------------------------------------


class KeyedLock:
    """Registry of per-key locks, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, *keys: str) -> AsyncIterator[None]:
        """Hold the locks for all *keys*, acquired in sorted order."""
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._refs[key] = self._refs.get(key, 0) + 1
                try:
                    await lock.acquire()
                except BaseException:
                    self._release_ref(key)
                    raise
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._release_ref(key)

    def _release_ref(self, key: str) -> None:
        self._refs[key] -= 1
        if self._refs[key] == 0:
            del self._refs[key]
            del self._locks[key]


# ---------------------------------------------------------------------------
# Bounded gather
# ---------------------------------------------------------------------------


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Concurrency bound shared by every wrapped awaitable.
    return_exceptions:
        Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    return await asyncio.gather(*(_wrapped(c) for c in coros), return_exceptions=return_exceptions)
