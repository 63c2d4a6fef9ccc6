"""Artist resolver domain models, re-exported for convenience.

    - artist.py      canonical Artist records, aliases and tiers
    - resolution.py  queries, results, unresolved outcomes and phases
    - export.py      update-only export batches for client-side filters
"""

from __future__ import annotations

from artist_resolver.models.artist import AliasTier, Artist, ArtistAlias, Authority
from artist_resolver.models.export import ExportAlias, ExportBatch, ExportEntry
from artist_resolver.models.resolution import (
    MatchedVia,
    MatchRule,
    ResolutionOutcome,
    ResolutionPhase,
    ResolutionQuery,
    ResolutionResult,
    Suggestion,
    Unresolved,
    UnresolvedReason,
)

__all__ = [
    # artist
    "AliasTier",
    "Artist",
    "ArtistAlias",
    "Authority",
    # export
    "ExportAlias",
    "ExportBatch",
    "ExportEntry",
    # resolution
    "MatchRule",
    "MatchedVia",
    "ResolutionOutcome",
    "ResolutionPhase",
    "ResolutionQuery",
    "ResolutionResult",
    "Suggestion",
    "Unresolved",
    "UnresolvedReason",
]
