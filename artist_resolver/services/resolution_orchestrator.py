"""Resolution orchestrator: free text or platform id -> canonical artist.

Per-request phases (each transition logged with the query key)::

    RECEIVED -> CACHE_CHECK --hit--> DONE
                     |
                QUERY_PRIMARY --confident--> ENRICH
                     |                          |
                QUERY_SECONDARY                 |
                     |                          |
                SCORE_AND_MERGE --confident--> ENRICH -> WRITE_CACHE -> DONE
                     |
                 unresolved -> DONE

- **Cache check**: an external id is looked up in the canonical store
  first (exact identity); an id query that misses goes straight to the
  authorities.  A name query tries the query cache for the normalized
  key and then the qualifier-stripped key, and then the store's name
  index, which answers when exactly one entity carries the name.
- **Primary**: an id query first asks the hinted authority for the id;
  that record, when found, is the primary candidate.  Otherwise sources
  are searched by name in priority order; an open breaker or a failing
  source falls through to the next.  The first source that answers is
  the primary.  A confident best candidate is accepted without
  contacting anyone else.  An id query only ever accepts a candidate
  holding the queried id.
- **Secondary fan-out**: the remaining sources run as independent tasks
  joined with ``fanout_timeout``, either until all complete or until the
  first confident candidate (``fanout_mode``).  Losing tasks are
  cancelled.
- **Enrichment**: cross-ids of the accepted record drive ``lookup``
  calls on other authorities.  Best effort; never changes the match.
- **Write-back**: the accepted record becomes a canonical artist.  A
  stored entity already claiming one of its ids is reused; two stored
  entities claiming its ids are merged (older survives).

Concurrent requests for the same key share one resolution through
:class:`SingleFlight`.  No source failure ever escapes :meth:`resolve`;
it always returns a :class:`ResolutionResult` or an :class:`Unresolved`.
A write-back that keeps losing to concurrent merges is reported as
``SOURCES_UNAVAILABLE``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Any

import structlog

from artist_resolver.config.settings import Settings
from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.interfaces.cache_provider import ICacheProvider
from artist_resolver.interfaces.source_client import ISourceClient, RawRecord
from artist_resolver.models.artist import Artist
from artist_resolver.models.resolution import (
    MatchedVia,
    MatchRule,
    ResolutionOutcome,
    ResolutionPhase,
    ResolutionQuery,
    ResolutionResult,
    Unresolved,
    UnresolvedReason,
)
from artist_resolver.providers.sources.guarded import GuardedSourceClient
from artist_resolver.services import record_merger
from artist_resolver.services.matching_engine import MatchingEngine, ScoredCandidate
from artist_resolver.utils.concurrency import SingleFlight, throttled_gather
from artist_resolver.utils.errors import (
    ArtistNotFoundError,
    InvariantViolationError,
    ResolverError,
    SourceUnavailableError,
)
from artist_resolver.utils.text_normalizer import NormalizedQuery, normalize_query

logger = structlog.get_logger(logger_name=__name__)

_WRITE_BACK_ATTEMPTS = 3


class ResolutionOrchestrator:
    """Resolves artist references against the store, the cache and the authorities.

    Parameters
    ----------
    sources:
        Authority clients in priority order, normally each wrapped in a
        :class:`GuardedSourceClient` with its own breaker and limiter.
    store:
        Canonical artist store.
    cache:
        Query cache mapping normalized keys to resolved artist ids.
    matcher:
        Scoring and ranking policy.
    settings:
        Orchestration knobs (fan-out mode and timeout, search limit,
        enrichment switch, batch concurrency, suggestion count).
    """

    def __init__(
        self,
        sources: Sequence[ISourceClient],
        store: IArtistStore,
        cache: ICacheProvider,
        matcher: MatchingEngine,
        settings: Settings,
    ) -> None:
        self._sources = list(sources)
        self._store = store
        self._cache = cache
        self._matcher = matcher
        self._settings = settings
        self._flights: SingleFlight[ResolutionOutcome] = SingleFlight()

    @property
    def sources(self) -> list[ISourceClient]:
        return list(self._sources)

    @property
    def store(self) -> IArtistStore:
        return self._store

    def breaker_states(self) -> list[dict[str, Any]]:
        """Snapshot of every guarded source's circuit breaker."""
        return [s.breaker.snapshot() for s in self._sources if isinstance(s, GuardedSourceClient)]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def resolve(self, query: ResolutionQuery) -> ResolutionOutcome:
        """Resolve one query.  Never raises for source failures."""
        normalized = normalize_query(query.raw_text or "")
        if not normalized.key and not query.external_id:
            logger.info("resolution_invalid_query", raw_text=query.raw_text)
            return Unresolved(reason=UnresolvedReason.INVALID_QUERY)

        flight_key = self._flight_key(query, normalized)
        return await self._flights.do(flight_key, lambda: self._resolve(query, normalized))

    async def resolve_many(self, queries: Sequence[ResolutionQuery]) -> list[ResolutionOutcome]:
        """Resolve a batch with bounded concurrency; results keep input order."""
        semaphore = asyncio.Semaphore(self._settings.batch_concurrency)
        results = await throttled_gather(
            [self.resolve(q) for q in queries], semaphore, return_exceptions=False
        )
        return list(results)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _resolve(self, query: ResolutionQuery, normalized: NormalizedQuery) -> ResolutionOutcome:
        log = logger.bind(query_key=normalized.key or f"{query.authority_hint}:{query.external_id}")
        self._enter(log, ResolutionPhase.RECEIVED)

        self._enter(log, ResolutionPhase.CACHE_CHECK)
        cached = await self._check_cache(query, normalized, log)
        if cached is not None:
            log.info("resolution_cache_hit", artist_id=cached.artist.id, rule=cached.matched_via.rule.value)
            self._enter(log, ResolutionPhase.DONE)
            return cached

        answered = 0
        ranked: list[ScoredCandidate] = []
        records: list[RawRecord] = []

        self._enter(log, ResolutionPhase.QUERY_PRIMARY)
        if query.external_id:
            pinned, answered = await self._lookup_pinned(query, log)
            if pinned is not None:
                records.append(pinned)
                ranked = self._rank(normalized, query, records)
        accepted = self._accepted(query, ranked)

        remaining = self._search_sources(query) if accepted is None else []
        while remaining:
            source = remaining.pop(0)
            try:
                found = await source.search(query.raw_text or "", limit=self._settings.search_limit)
            except SourceUnavailableError as exc:
                log.warning(
                    "source_search_failed",
                    authority=source.get_authority_name(),
                    breaker_open=exc.breaker_open,
                    error=str(exc),
                )
                continue
            answered += 1
            records.extend(found)
            ranked = self._rank(normalized, query, records)
            accepted = self._accepted(query, ranked)
            break

        if accepted is None and remaining:
            self._enter(log, ResolutionPhase.QUERY_SECONDARY)
            secondary, secondary_answered = await self._fan_out(remaining, query, normalized, log)
            answered += secondary_answered
            records.extend(secondary)

            self._enter(log, ResolutionPhase.SCORE_AND_MERGE)
            ranked = self._rank(normalized, query, records)
            accepted = self._accepted(query, ranked)

        if accepted is None:
            reason = (
                UnresolvedReason.SOURCES_UNAVAILABLE
                if answered == 0
                else UnresolvedReason.NO_CONFIDENT_MATCH
            )
            log.info("resolution_unresolved", reason=reason.value, candidates=len(ranked))
            self._enter(log, ResolutionPhase.DONE)
            return Unresolved(
                reason=reason,
                query_key=normalized.key,
                suggestions=self._matcher.suggestions(ranked, self._settings.suggestion_count),
            )

        contributors = self._corroborating(accepted.record, records)
        if self._settings.enrichment_enabled:
            self._enter(log, ResolutionPhase.ENRICH)
            contributors.extend(await self._enrich(contributors, log))

        self._enter(log, ResolutionPhase.WRITE_CACHE)
        try:
            artist = await self._write_back(contributors, log)
        except (InvariantViolationError, ArtistNotFoundError):
            self._enter(log, ResolutionPhase.DONE)
            return Unresolved(reason=UnresolvedReason.SOURCES_UNAVAILABLE, query_key=normalized.key)

        confidence = accepted.confidence
        result = ResolutionResult(
            artist=artist,
            confidence=confidence,
            matched_via=MatchedVia(authority=accepted.authority, rule=accepted.rule),
            query_key=normalized.key,
        )
        # An id-pinned answer is not what the bare name means.
        if normalized.key and not query.external_id:
            await self._remember(normalized.key, artist.id, confidence, accepted.authority, accepted.rule)
        log.info(
            "resolution_accepted",
            artist_id=artist.id,
            authority=accepted.authority,
            rule=accepted.rule.value,
            confidence=round(confidence, 4),
        )
        self._enter(log, ResolutionPhase.DONE)
        return result

    @staticmethod
    def _enter(log: structlog.BoundLogger, phase: ResolutionPhase) -> None:
        log.debug("resolution_phase", phase=phase.value)

    @staticmethod
    def _flight_key(query: ResolutionQuery, normalized: NormalizedQuery) -> str:
        if query.external_id:
            return f"id:{query.authority_hint}:{query.external_id}|{normalized.key}"
        return f"text:{normalized.key}"

    def _accepted(self, query: ResolutionQuery, ranked: Sequence[ScoredCandidate]) -> ScoredCandidate | None:
        """The best candidate *query* may accept, if it is confident.

        A query carrying an external id only accepts a candidate holding
        that id, so the result always owns the identifier asked about.
        """
        if query.external_id:
            ranked = [c for c in ranked if c.rule is MatchRule.EXTERNAL_ID]
        best = ranked[0] if ranked else None
        return best if self._matcher.is_confident(best) else None

    async def _remember(
        self, key: str, artist_id: str, confidence: float, authority: str, rule: MatchRule
    ) -> None:
        await self._cache.set(
            key,
            {
                "artist_id": artist_id,
                "confidence": confidence,
                "authority": authority,
                "rule": rule.value,
            },
        )

    # ------------------------------------------------------------------
    # Cache check
    # ------------------------------------------------------------------

    async def _check_cache(
        self, query: ResolutionQuery, normalized: NormalizedQuery, log: structlog.BoundLogger
    ) -> ResolutionResult | None:
        if query.external_id:
            # Only the entity owning the id may answer an id query.
            artist = await self._store.get_by_external_id(query.authority_hint or "", query.external_id)
            if artist is None:
                return None
            return ResolutionResult(
                artist=artist,
                confidence=1.0,
                matched_via=MatchedVia(authority=query.authority_hint or "", rule=MatchRule.EXTERNAL_ID),
                query_key=normalized.key,
                from_cache=True,
            )

        if not normalized.key:
            return None
        for variant in normalized.variants():
            entry = await self._cache.get(variant)
            if not entry:
                continue
            artist = await self._store.get(entry["artist_id"])
            if artist is None:
                await self._cache.delete(variant)
                continue
            return ResolutionResult(
                artist=artist,
                confidence=entry["confidence"],
                matched_via=MatchedVia(authority=entry["authority"], rule=MatchRule(entry["rule"])),
                query_key=normalized.key,
                from_cache=True,
            )
        return await self._check_store_names(normalized, log)

    async def _check_store_names(
        self, normalized: NormalizedQuery, log: structlog.BoundLogger
    ) -> ResolutionResult | None:
        """Answer from the store's name index when exactly one entity carries the name."""
        for variant in normalized.variants():
            roots = await self._store.find_by_name(variant)
            if not roots:
                continue
            if len(roots) > 1:
                log.debug("store_name_ambiguous", name_key=variant, artists=len(roots))
                return None
            match = self._matcher.score_stored(roots[0], variant, stripped=variant != normalized.key)
            if match.confidence < self._matcher.min_confidence:
                return None
            await self._remember(normalized.key, match.artist.id, match.confidence, match.authority, match.rule)
            return ResolutionResult(
                artist=match.artist,
                confidence=match.confidence,
                matched_via=MatchedVia(authority=match.authority, rule=match.rule),
                query_key=normalized.key,
                from_cache=True,
            )
        return None

    # ------------------------------------------------------------------
    # Source queries
    # ------------------------------------------------------------------

    async def _lookup_pinned(
        self, query: ResolutionQuery, log: structlog.BoundLogger
    ) -> tuple[RawRecord | None, int]:
        """Ask the hinted authority for the queried id.

        Returns the record (``None`` when unknown or unreachable) and how
        many authorities answered (0 or 1).
        """
        source = next(
            (
                s
                for s in self._sources
                if s.is_available() and s.get_authority_name() == query.authority_hint
            ),
            None,
        )
        if source is None or not query.external_id:
            return None, 0
        try:
            record = await source.lookup(query.external_id)
        except SourceUnavailableError as exc:
            log.warning(
                "source_lookup_failed",
                authority=source.get_authority_name(),
                breaker_open=exc.breaker_open,
                error=str(exc),
            )
            return None, 0
        return record, 1

    def _search_sources(self, query: ResolutionQuery) -> list[ISourceClient]:
        """Sources to search by name, in priority order.

        The hinted authority of an id query has already been asked for
        the id itself; an id-only query searches nothing.
        """
        if not query.raw_text:
            return []
        return [
            s
            for s in self._sources
            if s.is_available() and not (query.external_id and s.get_authority_name() == query.authority_hint)
        ]

    def _rank(
        self, normalized: NormalizedQuery, query: ResolutionQuery, records: Sequence[RawRecord]
    ) -> list[ScoredCandidate]:
        return self._matcher.rank(normalized, records, query.external_id, query.authority_hint)

    async def _fan_out(
        self,
        sources: Sequence[ISourceClient],
        query: ResolutionQuery,
        normalized: NormalizedQuery,
        log: structlog.BoundLogger,
    ) -> tuple[list[RawRecord], int]:
        """Query *sources* concurrently under the fan-out timeout.

        Returns the records gathered in priority order and how many
        sources answered.
        """
        tasks = {
            asyncio.create_task(source.search(query.raw_text or "", limit=self._settings.search_limit)): index
            for index, source in enumerate(sources)
        }
        results: dict[int, list[RawRecord]] = {}
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.fanout_timeout_seconds
        first_confident = self._settings.fanout_mode == "first_confident"
        pending = set(tasks)

        try:
            while pending:
                timeout = deadline - loop.time()
                if timeout <= 0:
                    break
                done, pending = await asyncio.wait(
                    pending,
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED if first_confident else asyncio.ALL_COMPLETED,
                )
                confident = False
                for task in done:
                    index = tasks[task]
                    authority = sources[index].get_authority_name()
                    exc = task.exception()
                    if exc is None:
                        results[index] = task.result()
                        confident = confident or (
                            self._accepted(query, self._rank(normalized, query, results[index])) is not None
                        )
                    elif isinstance(exc, ResolverError):
                        log.warning("source_search_failed", authority=authority, error=str(exc))
                    else:
                        raise exc
                if first_confident and confident:
                    break
        finally:
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                log.info(
                    "fanout_cancelled",
                    authorities=sorted(sources[tasks[t]].get_authority_name() for t in pending),
                )

        records = [record for index in sorted(results) for record in results[index]]
        return records, len(results)

    # ------------------------------------------------------------------
    # Enrichment
    # ------------------------------------------------------------------

    @staticmethod
    def _corroborating(accepted: RawRecord, records: Sequence[RawRecord]) -> list[RawRecord]:
        """The accepted record plus other candidates sharing one of its ids."""
        contributors = [accepted]
        known = {(a, e) for a, e in accepted.all_ids().items()}
        seen_authorities = {accepted.authority}
        for record in records:
            if record is accepted or record.authority in seen_authorities:
                continue
            ids = set(record.all_ids().items())
            if ids & known:
                contributors.append(record)
                seen_authorities.add(record.authority)
                known |= ids
        return contributors

    async def _enrich(
        self, contributors: Sequence[RawRecord], log: structlog.BoundLogger
    ) -> list[RawRecord]:
        """Look up cross-ids on authorities that have not contributed yet."""
        represented = {r.authority for r in contributors}
        targets: dict[str, str] = {}
        for record in contributors:
            for authority, external_id in record.cross_ids.items():
                if authority not in represented and authority not in targets:
                    targets[authority] = external_id

        by_name = {s.get_authority_name(): s for s in self._sources if s.is_available()}
        lookups = [
            (authority, by_name[authority], external_id)
            for authority, external_id in targets.items()
            if authority in by_name
        ]
        if not lookups:
            return []

        try:
            outcomes = await asyncio.wait_for(
                asyncio.gather(
                    *(source.lookup(external_id) for _, source, external_id in lookups),
                    return_exceptions=True,
                ),
                timeout=self._settings.fanout_timeout_seconds,
            )
        except asyncio.TimeoutError:
            log.warning("enrichment_timed_out", authorities=[a for a, _, _ in lookups])
            return []

        enriched: list[RawRecord] = []
        for (authority, _, external_id), outcome in zip(lookups, outcomes):
            if isinstance(outcome, ResolverError):
                log.warning("enrichment_failed", authority=authority, external_id=external_id, error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            elif outcome is not None:
                enriched.append(outcome)
        log.debug("enrichment_completed", records=len(enriched), attempted=len(lookups))
        return enriched

    # ------------------------------------------------------------------
    # Write-back
    # ------------------------------------------------------------------

    async def _write_back(self, contributors: Sequence[RawRecord], log: structlog.BoundLogger) -> Artist:
        """Upsert the accepted record, reusing or merging stored entities."""
        primary = contributors[0]
        claims: dict[str, str] = {}
        aliases = []
        metadata: dict[str, Any] = {}
        for record in contributors:
            for authority, external_id in record.all_ids().items():
                claims.setdefault(authority, external_id)
            aliases.extend(record_merger.aliases_from_record(record))
            metadata = record_merger.fill_metadata(metadata, record.metadata)

        last_error: ResolverError | None = None
        for _ in range(_WRITE_BACK_ATTEMPTS):
            try:
                owners = await self._claim_owners(claims)
                if not owners:
                    return await self._store.upsert(
                        Artist(
                            canonical_name=primary.name,
                            external_ids=claims,
                            aliases=aliases,
                            metadata=metadata,
                        )
                    )

                survivor = owners[0]
                for other in owners[1:]:
                    try:
                        survivor = await self._store.merge(other.id, survivor.id)
                    except InvariantViolationError as exc:
                        log.warning("merge_rejected", source_id=other.id, into_id=survivor.id, error=str(exc))
                        for authority, external_id in other.external_ids.items():
                            if claims.get(authority) == external_id:
                                claims.pop(authority)

                updated = record_merger.extend_artist(
                    survivor, aliases=aliases, external_ids=claims, metadata=metadata
                )
                if updated is survivor:
                    return survivor
                return await self._store.upsert(updated)
            except (InvariantViolationError, ArtistNotFoundError) as exc:
                # Another request changed the same entities; re-read and retry.
                last_error = exc
                log.info("write_back_retry", error=str(exc))

        log.error("write_back_failed", error=str(last_error))
        raise last_error  # type: ignore[misc]

    async def _claim_owners(self, claims: dict[str, str]) -> list[Artist]:
        """Distinct stored roots holding any of *claims*, oldest first."""
        owners: dict[str, Artist] = {}
        for authority, external_id in sorted(claims.items()):
            artist = await self._store.get_by_external_id(authority, external_id)
            if artist is not None:
                owners.setdefault(artist.id, artist)
        return sorted(owners.values(), key=lambda a: (a.created_at, a.id))
