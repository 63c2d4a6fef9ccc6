"""Utility modules for the artist resolver.

- **circuit_breaker** -- per-authority CLOSED/OPEN/HALF_OPEN breaker.
- **concurrency** -- token-bucket rate limiter, single-flight request
  coalescing, keyed locks and throttled gathering.
- **confidence** -- confidence clamping and weighting.
- **errors** -- exception hierarchy rooted at ResolverError.
- **external_urls** (not re-exported here) -- authority URL parsing for
  cross-ids.
- **logging** -- structlog setup, console in development, JSON in
  production.
- **text_normalizer** -- name normalization and similarity.
"""

from artist_resolver.utils.circuit_breaker import BreakerConfig, BreakerState, CircuitBreaker
from artist_resolver.utils.concurrency import KeyedLock, RateLimiter, SingleFlight, throttled_gather
from artist_resolver.utils.confidence import (
    ConfidenceLevel,
    clamp_confidence,
    confidence_to_level,
    weighted_confidence,
)
from artist_resolver.utils.errors import (
    ArtistNotFoundError,
    ConfigurationError,
    InvariantViolationError,
    MalformedResponseError,
    RateLimitError,
    ResolverError,
    SourceUnavailableError,
)
from artist_resolver.utils.logging import configure_logging, get_logger
from artist_resolver.utils.text_normalizer import (
    NormalizedQuery,
    name_similarity,
    normalize_name,
    normalize_query,
)

__all__ = [
    "ArtistNotFoundError",
    "BreakerConfig",
    "BreakerState",
    "CircuitBreaker",
    "ConfidenceLevel",
    "ConfigurationError",
    "InvariantViolationError",
    "KeyedLock",
    "MalformedResponseError",
    "NormalizedQuery",
    "RateLimitError",
    "RateLimiter",
    "ResolverError",
    "SingleFlight",
    "SourceUnavailableError",
    "clamp_confidence",
    "confidence_to_level",
    "configure_logging",
    "get_logger",
    "name_similarity",
    "normalize_name",
    "normalize_query",
    "throttled_gather",
    "weighted_confidence",
]
