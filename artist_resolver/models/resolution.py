"""Resolution request/response models.

A caller hands the orchestrator a :class:`ResolutionQuery` and gets back
either a :class:`ResolutionResult` (a confident match) or an
:class:`Unresolved` value explaining why no match is returned.  Failing
to resolve is an ordinary outcome, not an exception.
"""

from __future__ import annotations

from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from artist_resolver.models.artist import Artist


class MatchRule(str, Enum):  # noqa: UP042 — StrEnum requires Python 3.11+
    """Which rule produced a match."""

    EXTERNAL_ID = "EXTERNAL_ID"       # Query id equals the candidate's id
    PRIMARY_NAME = "PRIMARY_NAME"     # Matched the authority's official name
    CREDITED_NAME = "CREDITED_NAME"   # Matched a credited-artist name variation
    ALIAS_NAME = "ALIAS_NAME"         # Matched any other alias


class UnresolvedReason(str, Enum):  # noqa: UP042
    NO_CONFIDENT_MATCH = "NO_CONFIDENT_MATCH"
    SOURCES_UNAVAILABLE = "SOURCES_UNAVAILABLE"
    INVALID_QUERY = "INVALID_QUERY"


class ResolutionPhase(str, Enum):  # noqa: UP042
    """Per-request state machine.

        RECEIVED -> CACHE_CHECK -> (hit) DONE
                                -> QUERY_PRIMARY -> (confident) ENRICH
                                                 -> QUERY_SECONDARY -> SCORE_AND_MERGE
                                -> ENRICH -> WRITE_CACHE -> DONE
    """

    RECEIVED = "RECEIVED"
    CACHE_CHECK = "CACHE_CHECK"
    QUERY_PRIMARY = "QUERY_PRIMARY"
    QUERY_SECONDARY = "QUERY_SECONDARY"
    SCORE_AND_MERGE = "SCORE_AND_MERGE"
    ENRICH = "ENRICH"
    WRITE_CACHE = "WRITE_CACHE"
    DONE = "DONE"


class ResolutionQuery(BaseModel):
    """A reference to resolve: free text, a platform id, or both.

    ``external_id`` needs ``authority_hint`` to mean anything.  When both
    ``raw_text`` and ``external_id`` are given, the id is used as an
    exact-identity override during scoring.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    raw_text: str | None = None
    external_id: str | None = None
    authority_hint: str | None = None

    @model_validator(mode="after")
    def _check_reference(self) -> ResolutionQuery:
        if not self.raw_text and not self.external_id:
            raise ValueError("either raw_text or external_id is required")
        if self.external_id and not self.authority_hint:
            raise ValueError("external_id requires authority_hint")
        return self


class MatchedVia(BaseModel):
    """Provenance of a match: which authority and which rule."""

    model_config = ConfigDict(frozen=True)

    authority: str
    rule: MatchRule


class ResolutionResult(BaseModel):
    """A confident resolution of a query to a canonical artist."""

    model_config = ConfigDict(frozen=True)

    artist: Artist
    confidence: float = Field(ge=0.0, le=1.0)
    matched_via: MatchedVia
    query_key: str = ""
    from_cache: bool = False

    @property
    def resolved(self) -> bool:
        return True


class Suggestion(BaseModel):
    """A below-threshold candidate returned alongside an unresolved outcome."""

    model_config = ConfigDict(frozen=True)

    name: str
    authority: str
    external_id: str
    confidence: float = Field(ge=0.0, le=1.0)


class Unresolved(BaseModel):
    """No confident match for a query."""

    model_config = ConfigDict(frozen=True)

    reason: UnresolvedReason
    query_key: str = ""
    suggestions: list[Suggestion] = Field(default_factory=list)

    @property
    def resolved(self) -> bool:
        return False

    @property
    def message(self) -> str:
        """User-facing text; never exposes transport details."""
        if self.reason == UnresolvedReason.SOURCES_UNAVAILABLE:
            return "Artist lookup is temporarily unavailable, please try again shortly"
        if self.reason == UnresolvedReason.INVALID_QUERY:
            return "Enter an artist name or a platform artist id"
        return "Artist not found, try a more specific name"


ResolutionOutcome = Union[ResolutionResult, Unresolved]  # noqa: UP007
