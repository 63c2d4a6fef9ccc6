"""Per-authority circuit breaker.

State machine::

    CLOSED --(threshold failures within window)--> OPEN
    OPEN --(open timeout elapsed, next call)--> HALF_OPEN
    HALF_OPEN --(probe succeeds)--> CLOSED
    HALF_OPEN --(probe fails)--> OPEN   (timeout x backoff, capped)

In HALF_OPEN exactly one probe call is let through; concurrent callers
are rejected until the probe finishes.  Only
:class:`~artist_resolver.utils.errors.SourceUnavailableError` counts as a
failure.  A malformed payload proves the authority is reachable and
counts as a success; a rate-limit answer is neutral.

Every transition happens in plain synchronous code with no ``await`` in
between, so each one is atomic on the event loop and a breaker can be
shared by any number of concurrent resolution tasks.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from artist_resolver.utils.errors import (
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)
from artist_resolver.utils.logging import get_logger

_T = TypeVar("_T")


class BreakerState(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerConfig:
    """Policy parameters for one breaker."""

    failure_threshold: int = 5
    window_seconds: float = 60.0
    open_timeout_seconds: float = 30.0
    backoff_multiplier: float = 2.0
    max_open_timeout_seconds: float = 300.0

    @classmethod
    def from_settings(cls, settings: Any) -> BreakerConfig:
        return cls(
            failure_threshold=settings.breaker_failure_threshold,
            window_seconds=settings.breaker_window_seconds,
            open_timeout_seconds=settings.breaker_open_timeout_seconds,
            backoff_multiplier=settings.breaker_backoff_multiplier,
            max_open_timeout_seconds=settings.breaker_max_open_timeout_seconds,
        )


class CircuitBreaker:
    """Failure isolation for a single authority.

    Parameters
    ----------
    name:
        Authority name, used in logs and error messages.
    config:
        Threshold, window and timeout policy.
    clock:
        Monotonic time source in seconds; injectable for tests.
    """

    def __init__(
        self,
        name: str,
        config: BreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._config = config or BreakerConfig()
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_at: float | None = None
        self._open_timeout = self._config.open_timeout_seconds
        self._probe_in_flight = False
        self._trips = 0
        self._blocked = 0
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> BreakerState:
        """Stored state; an OPEN breaker whose timeout elapsed still reads OPEN
        until the next call moves it to HALF_OPEN."""
        return self._state

    @property
    def open_timeout(self) -> float:
        return self._open_timeout

    def is_open(self) -> bool:
        """``True`` if a call made now would be rejected without a probe."""
        if self._state == BreakerState.OPEN:
            return not self._timeout_elapsed(self._clock())
        if self._state == BreakerState.HALF_OPEN:
            return self._probe_in_flight
        return False

    def snapshot(self) -> dict[str, Any]:
        return {
            "authority": self._name,
            "state": self._state.value,
            "recent_failures": len(self._failures),
            "open_timeout_seconds": self._open_timeout,
            "trips": self._trips,
            "blocked_calls": self._blocked,
        }

    def reset(self) -> None:
        """Force the breaker back to CLOSED with a clean history."""
        self._state = BreakerState.CLOSED
        self._failures.clear()
        self._opened_at = None
        self._open_timeout = self._config.open_timeout_seconds
        self._probe_in_flight = False

    # ------------------------------------------------------------------
    # Guarded execution
    # ------------------------------------------------------------------

    async def call(self, operation: Callable[[], Awaitable[_T]]) -> _T:
        """Run *operation* under breaker protection.

        Raises
        ------
        SourceUnavailableError
            With ``breaker_open=True`` when the call is rejected without
            contacting the authority; otherwise whatever *operation* raised.
        """
        is_probe = self._before_call()
        try:
            result = await operation()
        except SourceUnavailableError:
            self._on_failure(is_probe)
            raise
        except MalformedResponseError:
            self._on_success(is_probe)
            raise
        except RateLimitError:
            self._on_neutral(is_probe)
            raise
        except BaseException:
            # Cancellation or an unexpected bug says nothing about availability.
            self._on_neutral(is_probe)
            raise
        self._on_success(is_probe)
        return result

    def _before_call(self) -> bool:
        now = self._clock()
        if self._state == BreakerState.OPEN:
            if not self._timeout_elapsed(now):
                self._blocked += 1
                raise SourceUnavailableError(
                    message=f"Circuit breaker open; retry after {self._open_timeout:.0f}s",
                    provider_name=self._name,
                    breaker_open=True,
                )
            self._state = BreakerState.HALF_OPEN
            self._probe_in_flight = False
            self._logger.info("breaker_half_open", authority=self._name)

        if self._state == BreakerState.HALF_OPEN:
            if self._probe_in_flight:
                self._blocked += 1
                raise SourceUnavailableError(
                    message="Circuit breaker half-open; probe already in flight",
                    provider_name=self._name,
                    breaker_open=True,
                )
            self._probe_in_flight = True
            return True
        return False

    def _on_success(self, is_probe: bool) -> None:
        if is_probe:
            self._logger.info("breaker_closed", authority=self._name)
            self.reset()
            return
        if self._state == BreakerState.CLOSED:
            self._failures.clear()

    def _on_failure(self, is_probe: bool) -> None:
        now = self._clock()
        if is_probe:
            self._probe_in_flight = False
            self._open_timeout = min(
                self._open_timeout * self._config.backoff_multiplier,
                self._config.max_open_timeout_seconds,
            )
            self._open(now, reason="probe_failed")
            return
        if self._state != BreakerState.CLOSED:
            # A call admitted while CLOSED finished after the breaker opened.
            return
        self._failures.append(now)
        horizon = now - self._config.window_seconds
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()
        if len(self._failures) >= self._config.failure_threshold:
            self._open(now, reason="threshold_reached")

    def _on_neutral(self, is_probe: bool) -> None:
        if is_probe:
            self._probe_in_flight = False

    def _open(self, now: float, reason: str) -> None:
        self._state = BreakerState.OPEN
        self._opened_at = now
        self._failures.clear()
        self._trips += 1
        self._logger.warning(
            "breaker_opened",
            authority=self._name,
            reason=reason,
            open_timeout_seconds=self._open_timeout,
        )

    def _timeout_elapsed(self, now: float) -> bool:
        return self._opened_at is not None and now - self._opened_at >= self._open_timeout
