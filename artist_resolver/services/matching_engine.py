"""Matching and confidence scoring of authority candidates.

Given a normalized query and the :class:`RawRecord` candidates returned
by the authorities, the engine scores every candidate and ranks them.

Scoring per candidate
---------------------
- Every name the candidate carries (its primary name and each alias) is
  normalized and compared to the query key with a normalized Levenshtein
  similarity.  The qualifier-stripped forms are compared as well, at a
  small discount so a fallback match never outranks an exact one.
- The similarity is multiplied by the static weight of the tier of the
  name that matched (official > credited > other).  The best weighted
  name wins and decides the match rule.
- An external id supplied with the query that equals the candidate's
  own id or one of its cross-ids for the hinted authority forces the
  confidence to 1.0 (rule ``EXTERNAL_ID``).

Ranking
-------
Higher confidence first; ties go to the authority listed earlier in the
configured priority, then to the record with more populated metadata,
then to input order.

A canonical artist already in the store is scored from its own aliases
(:meth:`MatchingEngine.score_stored`): the name that equals the query key
decides the rule, and its stored confidence is capped by the tier weight.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from artist_resolver.interfaces.source_client import RawRecord
from artist_resolver.models.artist import AliasTier, Artist
from artist_resolver.models.resolution import MatchRule, Suggestion
from artist_resolver.utils.confidence import clamp_confidence, weighted_confidence
from artist_resolver.utils.text_normalizer import (
    NormalizedQuery,
    name_similarity,
    normalize_name,
    strip_qualifier,
)

# Discount for matches found only through the qualifier-stripped forms.
_STRIPPED_MATCH_FACTOR = 0.95

_RULE_FOR_TIER: dict[AliasTier, MatchRule] = {
    AliasTier.PRIMARY: MatchRule.PRIMARY_NAME,
    AliasTier.CREDITED: MatchRule.CREDITED_NAME,
    AliasTier.OTHER: MatchRule.ALIAS_NAME,
}


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate record with its score and how it was obtained."""

    record: RawRecord
    confidence: float
    similarity: float
    rule: MatchRule
    matched_name: str
    position: int = 0

    @property
    def authority(self) -> str:
        return self.record.authority


@dataclass(frozen=True)
class StoredMatch:
    """A canonical artist found through the store's name index."""

    artist: Artist
    confidence: float
    rule: MatchRule
    authority: str


class MatchingEngine:
    """Scores and ranks authority candidates against a normalized query.

    Parameters
    ----------
    tier_weights:
        Static weight per alias tier, each in [0, 1].
    authority_priority:
        Authority names, most trusted first; used for tie-breaking.
    min_confidence:
        Acceptance threshold for :meth:`is_confident`.
    """

    def __init__(
        self,
        tier_weights: dict[AliasTier, float],
        authority_priority: Sequence[str],
        min_confidence: float = 0.7,
    ) -> None:
        self._weights = {tier: clamp_confidence(w) for tier, w in tier_weights.items()}
        self._priority = {name: index for index, name in enumerate(authority_priority)}
        self._min_confidence = min_confidence

    @classmethod
    def from_settings(cls, settings) -> MatchingEngine:
        return cls(
            tier_weights=settings.tier_weights(),
            authority_priority=settings.authority_priority,
            min_confidence=settings.min_confidence,
        )

    @property
    def min_confidence(self) -> float:
        return self._min_confidence

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        query: NormalizedQuery,
        record: RawRecord,
        external_id: str | None = None,
        authority_hint: str | None = None,
        position: int = 0,
    ) -> ScoredCandidate:
        """Score one candidate; the result's confidence is always in [0, 1]."""
        if external_id and authority_hint and record.all_ids().get(authority_hint) == external_id:
            return ScoredCandidate(
                record=record,
                confidence=1.0,
                similarity=1.0,
                rule=MatchRule.EXTERNAL_ID,
                matched_name=record.name,
                position=position,
            )

        names: list[tuple[str, AliasTier]] = [(record.name, AliasTier.PRIMARY)]
        names.extend((alias.name, alias.tier) for alias in record.aliases)

        best = ScoredCandidate(
            record=record,
            confidence=0.0,
            similarity=0.0,
            rule=MatchRule.PRIMARY_NAME,
            matched_name=record.name,
            position=position,
        )
        for name, tier in names:
            similarity = self._name_similarity(query, name)
            confidence = weighted_confidence(similarity, self._weights.get(tier, 0.0))
            if confidence > best.confidence:
                best = ScoredCandidate(
                    record=record,
                    confidence=confidence,
                    similarity=similarity,
                    rule=_RULE_FOR_TIER[tier],
                    matched_name=name,
                    position=position,
                )
        return best

    @staticmethod
    def _name_similarity(query: NormalizedQuery, name: str) -> float:
        key = normalize_name(name)
        similarity = name_similarity(query.key, key)
        stripped_key = strip_qualifier(key)
        if query.has_fallback or stripped_key != key:
            stripped = name_similarity(query.stripped, stripped_key) * _STRIPPED_MATCH_FACTOR
            similarity = max(similarity, stripped)
        return clamp_confidence(similarity)

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    def rank(
        self,
        query: NormalizedQuery,
        records: Sequence[RawRecord],
        external_id: str | None = None,
        authority_hint: str | None = None,
    ) -> list[ScoredCandidate]:
        """Score *records* and return them best first."""
        scored = [
            self.score(query, record, external_id, authority_hint, position=index)
            for index, record in enumerate(records)
        ]
        return sorted(scored, key=self._sort_key)

    def _sort_key(self, candidate: ScoredCandidate) -> tuple[float, int, int, int]:
        return (
            -candidate.confidence,
            self._priority.get(candidate.authority, len(self._priority)),
            -candidate.record.populated_metadata_count(),
            candidate.position,
        )

    def is_confident(self, candidate: ScoredCandidate | None) -> bool:
        return candidate is not None and candidate.confidence >= self._min_confidence

    @staticmethod
    def suggestions(ranked: Sequence[ScoredCandidate], limit: int) -> list[Suggestion]:
        """Distinct best-scoring candidates, for an unresolved outcome."""
        seen: set[tuple[str, str]] = set()
        result: list[Suggestion] = []
        for candidate in ranked:
            if len(result) >= limit:
                break
            key = (candidate.authority, candidate.record.external_id)
            if candidate.confidence <= 0.0 or key in seen:
                continue
            seen.add(key)
            result.append(
                Suggestion(
                    name=candidate.record.name,
                    authority=candidate.authority,
                    external_id=candidate.record.external_id,
                    confidence=candidate.confidence,
                )
            )
        return result

    # ------------------------------------------------------------------
    # Stored artists
    # ------------------------------------------------------------------

    def score_stored(self, artist: Artist, name_key: str, stripped: bool = False) -> StoredMatch:
        """Score a stored artist whose names include *name_key*.

        *stripped* marks a hit on the qualifier-stripped key, discounted
        like a stripped match against an authority candidate.
        """
        factor = _STRIPPED_MATCH_FACTOR if stripped else 1.0
        owner = min(
            artist.external_ids,
            key=lambda authority: self._priority.get(authority, len(self._priority)),
            default="store",
        )
        best = StoredMatch(artist=artist, confidence=0.0, rule=MatchRule.PRIMARY_NAME, authority=owner)
        if normalize_name(artist.canonical_name) == name_key:
            best = StoredMatch(
                artist=artist,
                confidence=clamp_confidence(self._weights.get(AliasTier.PRIMARY, 0.0) * factor),
                rule=MatchRule.PRIMARY_NAME,
                authority=owner,
            )
        for alias in artist.aliases:
            if alias.normalized_name != name_key:
                continue
            weight = min(self._weights.get(alias.tier, 0.0), alias.confidence)
            confidence = clamp_confidence(weight * factor)
            if confidence > best.confidence:
                best = StoredMatch(
                    artist=artist,
                    confidence=confidence,
                    rule=_RULE_FOR_TIER[alias.tier],
                    authority=alias.source,
                )
        return best
