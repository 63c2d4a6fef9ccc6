"""Custom exception hierarchy for the artist resolver.

All application exceptions inherit from :class:`ResolverError`, which
carries an optional ``provider_name`` so handlers can tell which external
authority (e.g. "musicbrainz", "discogs", "isni") caused the failure.

    ResolverError  (base -- catch-all for any resolver error)
    +-- SourceUnavailableError   (breaker open, network error, timeout, 5xx)
    +-- RateLimitError           (authority answered 429 / quota exhausted)
    +-- MalformedResponseError   (payload could not be read as an artist record)
    +-- InvariantViolationError  (merge would create a cycle or double claim)
    +-- ArtistNotFoundError      (store lookup by id found nothing)
    +-- ConfigurationError       (startup / invalid policy parameters)

Only ``SourceUnavailableError`` counts against an authority's circuit
breaker.  ``RateLimitError`` is backed off and retried by the guarded
client; ``MalformedResponseError`` is logged and treated as a non-match.
"""


class ResolverError(Exception):
    """Base exception for all resolver errors.

    The ``__str__`` method prefixes the provider name in brackets for
    structured log output, e.g. ``[musicbrainz] Request timed out``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# External authority errors
# ---------------------------------------------------------------------------

class SourceUnavailableError(ResolverError):
    """Raised when an authority cannot be reached or its breaker is open.

    The orchestrator catches this to fall back to the next authority in
    the configured priority order.
    """

    def __init__(
        self,
        message: str = "External authority is unavailable",
        provider_name: str | None = None,
        breaker_open: bool = False,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._breaker_open = breaker_open

    @property
    def breaker_open(self) -> bool:
        """``True`` when the call was rejected without contacting the authority."""
        return self._breaker_open


class RateLimitError(ResolverError):
    """Raised when an authority reports its rate limit was exceeded.

    ``retry_after`` holds the server-suggested wait in seconds, if any.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._retry_after = retry_after

    @property
    def retry_after(self) -> float | None:
        return self._retry_after


class MalformedResponseError(ResolverError):
    """Raised when an authority returns data that cannot be parsed."""

    def __init__(
        self,
        message: str = "Malformed response from authority",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# What reading an unexpected payload shape raises; clients re-raise these
# as MalformedResponseError.
PAYLOAD_ERRORS: tuple[type[Exception], ...] = (AttributeError, KeyError, TypeError, ValueError)


# ---------------------------------------------------------------------------
# Canonical store errors
# ---------------------------------------------------------------------------

class InvariantViolationError(ResolverError):
    """Raised when a store mutation would break a canonical-record invariant.

    The store leaves every record untouched when this is raised.
    """

    def __init__(
        self,
        message: str = "Canonical record invariant violated",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ArtistNotFoundError(ResolverError):
    """Raised when an operation references an artist id the store does not hold."""

    def __init__(
        self,
        message: str = "Artist not found",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------

class ConfigurationError(ResolverError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
