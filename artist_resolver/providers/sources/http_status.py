"""Translate httpx outcomes into the resolver's error hierarchy.

Shared by the authorities reached over plain HTTP (ISNI, Spotify):

- transport errors and timeouts   -> SourceUnavailableError
- 429                             -> RateLimitError (``Retry-After`` honoured)
- 5xx, 401, 403                   -> SourceUnavailableError
- other 4xx                       -> MalformedResponseError
"""

from __future__ import annotations

from collections.abc import Awaitable

import httpx

from artist_resolver.utils.errors import (
    MalformedResponseError,
    RateLimitError,
    SourceUnavailableError,
)


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a ``Retry-After`` header; HTTP-date forms are ignored."""
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


async def send(request: Awaitable[httpx.Response], authority: str) -> httpx.Response:
    """Await *request* and map failures; 404 responses are returned as-is."""
    try:
        response = await request
    except httpx.TimeoutException as exc:
        raise SourceUnavailableError(
            message=f"Request timed out: {exc}", provider_name=authority
        ) from exc
    except httpx.HTTPError as exc:
        raise SourceUnavailableError(
            message=f"Request failed: {exc}", provider_name=authority
        ) from exc

    status = response.status_code
    if status == 429:
        raise RateLimitError(
            message="Rate limit exceeded",
            provider_name=authority,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
        )
    if status >= 500 or status in (401, 403):
        raise SourceUnavailableError(
            message=f"HTTP {status} from authority", provider_name=authority
        )
    if status >= 400 and status != 404:
        raise MalformedResponseError(
            message=f"HTTP {status} for request", provider_name=authority
        )
    return response
