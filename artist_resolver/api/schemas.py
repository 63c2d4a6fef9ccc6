"""Pydantic request/response schemas for the artist resolver API.

Convention: request schemas end with "Request", response schemas end
with "Response".  Domain models (:class:`Artist`, :class:`ExportBatch`)
are returned as-is where their shape is already the public contract.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from artist_resolver.models.artist import Artist
from artist_resolver.models.resolution import (
    MatchedVia,
    ResolutionOutcome,
    ResolutionQuery,
    ResolutionResult,
    Suggestion,
    Unresolved,
)
from artist_resolver.utils.confidence import confidence_to_level


class ResolveRequest(BaseModel):
    """One reference to resolve: free text, a platform id, or both."""

    raw_text: str | None = Field(default=None, max_length=500)
    external_id: str | None = Field(default=None, max_length=200)
    authority_hint: str | None = Field(default=None, max_length=50)

    def to_query(self) -> ResolutionQuery:
        return ResolutionQuery(
            raw_text=self.raw_text,
            external_id=self.external_id,
            authority_hint=self.authority_hint,
        )


class BatchResolveRequest(BaseModel):
    queries: list[ResolveRequest] = Field(..., min_length=1, max_length=100)


class ResolveResponse(BaseModel):
    """Outcome of one resolution.

    ``resolved`` tells the two shapes apart: a match fills ``artist``,
    ``confidence`` and ``matched_via``; a miss fills ``reason``,
    ``message`` and ``suggestions``.
    """

    resolved: bool
    query_key: str = ""
    artist: Artist | None = None
    confidence: float | None = None
    confidence_level: str | None = None
    matched_via: MatchedVia | None = None
    from_cache: bool = False
    reason: str | None = None
    message: str | None = None
    suggestions: list[Suggestion] = Field(default_factory=list)

    @classmethod
    def from_outcome(cls, outcome: ResolutionOutcome) -> ResolveResponse:
        if isinstance(outcome, ResolutionResult):
            return cls(
                resolved=True,
                query_key=outcome.query_key,
                artist=outcome.artist,
                confidence=outcome.confidence,
                confidence_level=confidence_to_level(outcome.confidence).value,
                matched_via=outcome.matched_via,
                from_cache=outcome.from_cache,
            )
        assert isinstance(outcome, Unresolved)
        return cls(
            resolved=False,
            query_key=outcome.query_key,
            reason=outcome.reason.value,
            message=outcome.message,
            suggestions=list(outcome.suggestions),
        )


class BatchResolveResponse(BaseModel):
    results: list[ResolveResponse]


class MergeRequest(BaseModel):
    """Merge the path artist into ``into_id``."""

    into_id: str = Field(..., min_length=1)


class HealthResponse(BaseModel):
    """Application health check response."""

    status: str
    version: str
    breakers: list[dict[str, Any]]
    store: dict[str, Any]


class ErrorResponse(BaseModel):
    """Standard error response body."""

    error: str
    detail: str | None = None
    suggestions: list[Suggestion] = Field(default_factory=list)
