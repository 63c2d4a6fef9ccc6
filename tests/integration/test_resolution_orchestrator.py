"""End-to-end resolution through the orchestrator with scripted authorities.

Every fake client is still wrapped in its own guard (breaker + limiter)
by ``build_components``, so these tests exercise the same call path as
production minus the network.
"""

from __future__ import annotations

import asyncio
import datetime
from unittest.mock import AsyncMock

import httpx
import pytest

from artist_resolver.interfaces.credential_provider import StaticCredentialProvider
from artist_resolver.models.artist import AliasTier, Artist
from artist_resolver.models.resolution import (
    MatchRule,
    ResolutionQuery,
    ResolutionResult,
    Unresolved,
    UnresolvedReason,
)
from artist_resolver.providers.sources.spotify_provider import SpotifyClient
from artist_resolver.providers.store.memory_store import MemoryArtistStore
from artist_resolver.utils.errors import (
    InvariantViolationError,
    MalformedResponseError,
    SourceUnavailableError,
)
from tests.conftest import (
    DISCOGS_BEATLES,
    MB_BEATLES,
    SPOTIFY_BEATLES,
    FakeSource,
    build_components,
    make_record,
    make_settings,
)


def _events(logs: list[dict]) -> list[str]:
    return [entry["event"] for entry in logs]


def _query(text: str) -> ResolutionQuery:
    return ResolutionQuery(raw_text=text)


# ======================================================================
# Happy path, cache and enrichment
# ======================================================================


class TestResolve:
    @pytest.mark.asyncio
    async def test_primary_match_is_enriched_and_cached(
        self, beatles_mb, beatles_discogs, beatles_spotify
    ) -> None:
        mb = FakeSource("musicbrainz", [beatles_mb])
        discogs = FakeSource("discogs", lookups=[beatles_discogs])
        spotify = FakeSource("spotify", lookups=[beatles_spotify])
        components = build_components([mb, discogs, spotify])
        orchestrator = components["orchestrator"]

        result = await orchestrator.resolve(_query("The Beatles"))

        assert isinstance(result, ResolutionResult)
        assert result.confidence == 1.0
        assert result.matched_via.authority == "musicbrainz"
        assert result.matched_via.rule is MatchRule.PRIMARY_NAME
        assert result.from_cache is False
        assert result.query_key == "beatles"
        assert result.artist.canonical_name == "The Beatles"
        assert result.artist.external_ids == {
            "musicbrainz": MB_BEATLES,
            "discogs": DISCOGS_BEATLES,
            "spotify": SPOTIFY_BEATLES,
        }
        assert result.artist.metadata["country"] == "United Kingdom"
        assert result.artist.metadata["profile"] == "British rock band"
        assert {a.name for a in result.artist.aliases} >= {"Fab Four", "Beatles, The"}

        # Confident primary: no secondary searches, only enrichment lookups.
        assert discogs.search_calls == []
        assert spotify.search_calls == []
        assert discogs.lookup_calls == [DISCOGS_BEATLES]
        assert spotify.lookup_calls == [SPOTIFY_BEATLES]

        again = await orchestrator.resolve(_query("the   BEATLES"))
        assert again.from_cache is True
        assert again.artist.id == result.artist.id
        assert again.confidence == result.confidence
        assert mb.search_calls == ["The Beatles"]

    @pytest.mark.asyncio
    async def test_stored_record_is_reused(self, beatles_mb) -> None:
        components = build_components([FakeSource("musicbrainz", [beatles_mb])])
        stored = await components["store"].upsert(
            Artist(canonical_name="Fab Four Archive", external_ids={"musicbrainz": MB_BEATLES})
        )

        result = await components["orchestrator"].resolve(_query("The Beatles"))

        assert result.from_cache is False
        assert result.artist.id == stored.id
        assert result.artist.external_ids["discogs"] == DISCOGS_BEATLES
        stats = await components["store"].stats()
        assert stats["entities"] == 1

    @pytest.mark.asyncio
    async def test_fresh_cache_is_answered_from_the_store(self, beatles_mb) -> None:
        mb = FakeSource("musicbrainz", [beatles_mb])
        first = build_components([mb])
        seeded = await first["orchestrator"].resolve(_query("The Beatles"))

        # Same store behind an empty cache, as after a restart.
        restarted = build_components([mb], store=first["store"])["orchestrator"]
        result = await restarted.resolve(_query("the beatles"))
        alias = await restarted.resolve(_query("Fab Four"))

        assert result.from_cache is True
        assert result.artist.id == seeded.artist.id
        assert result.confidence == 1.0
        assert result.matched_via.authority == "musicbrainz"
        assert result.matched_via.rule is MatchRule.PRIMARY_NAME
        assert alias.artist.id == seeded.artist.id
        assert alias.matched_via.rule is MatchRule.ALIAS_NAME
        assert alias.confidence == pytest.approx(0.8)
        assert mb.search_calls == ["The Beatles"]

    @pytest.mark.asyncio
    async def test_shared_name_in_the_store_goes_to_the_authorities(self, beatles_mb) -> None:
        components = build_components([FakeSource("musicbrainz", [beatles_mb])])
        for artist_id in ("tribute", "cover-band"):
            await components["store"].upsert(Artist(id=artist_id, canonical_name="The Beatles"))

        result = await components["orchestrator"].resolve(_query("The Beatles"))

        assert result.from_cache is False
        assert result.artist.id not in {"tribute", "cover-band"}

    @pytest.mark.asyncio
    async def test_qualifier_falls_back_to_stripped_cache_key(self, beatles_mb) -> None:
        mb = FakeSource("musicbrainz", [beatles_mb])
        orchestrator = build_components([mb])["orchestrator"]

        first = await orchestrator.resolve(_query("The Beatles"))
        fallback = await orchestrator.resolve(_query("The Beatles Band"))

        assert fallback.from_cache is True
        assert fallback.artist.id == first.artist.id
        assert len(mb.search_calls) == 1

    @pytest.mark.asyncio
    async def test_enrichment_can_be_disabled(self, beatles_mb, beatles_discogs) -> None:
        discogs = FakeSource("discogs", lookups=[beatles_discogs])
        components = build_components(
            [FakeSource("musicbrainz", [beatles_mb]), discogs],
            app_settings=make_settings(enrichment_enabled=False),
        )

        result = await components["orchestrator"].resolve(_query("The Beatles"))

        assert discogs.lookup_calls == []
        assert "profile" not in result.artist.metadata
        # Cross-ids of the accepted record are still claimed.
        assert result.artist.external_ids["discogs"] == DISCOGS_BEATLES

    @pytest.mark.asyncio
    async def test_enrichment_failure_does_not_change_the_match(self, beatles_mb, captured_logs) -> None:
        discogs = FakeSource("discogs", error=MalformedResponseError("bad json", provider_name="discogs"))
        spotify = FakeSource("spotify", error=SourceUnavailableError("down", provider_name="spotify"))
        orchestrator = build_components(
            [FakeSource("musicbrainz", [beatles_mb]), discogs, spotify]
        )["orchestrator"]

        result = await orchestrator.resolve(_query("The Beatles"))

        assert isinstance(result, ResolutionResult)
        assert result.matched_via.authority == "musicbrainz"
        assert "enrichment_failed" in _events(captured_logs)


# ======================================================================
# External ids
# ======================================================================


class TestExternalIds:
    @pytest.mark.asyncio
    async def test_external_id_overrides_name_similarity(self, beatles_mb) -> None:
        orchestrator = build_components([FakeSource("musicbrainz", [beatles_mb])])["orchestrator"]

        result = await orchestrator.resolve(
            ResolutionQuery(
                raw_text="Fab Four Tribute Act",
                external_id=DISCOGS_BEATLES,
                authority_hint="discogs",
            )
        )

        assert isinstance(result, ResolutionResult)
        assert result.confidence == 1.0
        assert result.matched_via.rule is MatchRule.EXTERNAL_ID

    @pytest.mark.asyncio
    async def test_id_only_query_asks_the_hinted_authority(self, beatles_spotify) -> None:
        mb = FakeSource("musicbrainz", [])
        spotify = FakeSource("spotify", lookups=[beatles_spotify])
        orchestrator = build_components([mb, spotify])["orchestrator"]

        result = await orchestrator.resolve(
            ResolutionQuery(external_id=SPOTIFY_BEATLES, authority_hint="spotify")
        )

        assert isinstance(result, ResolutionResult)
        assert result.matched_via.authority == "spotify"
        assert result.matched_via.rule is MatchRule.EXTERNAL_ID
        assert result.query_key == ""
        assert mb.search_calls == []
        assert mb.lookup_calls == []
        assert spotify.lookup_calls == [SPOTIFY_BEATLES]

    @pytest.mark.asyncio
    async def test_known_external_id_is_answered_from_the_store(self, beatles_mb) -> None:
        mb = FakeSource("musicbrainz", [beatles_mb])
        orchestrator = build_components([mb])["orchestrator"]
        first = await orchestrator.resolve(_query("The Beatles"))

        result = await orchestrator.resolve(
            ResolutionQuery(external_id=MB_BEATLES, authority_hint="musicbrainz")
        )

        assert result.from_cache is True
        assert result.artist.id == first.artist.id
        assert result.matched_via.rule is MatchRule.EXTERNAL_ID
        assert mb.lookup_calls == []

    @pytest.mark.asyncio
    async def test_unknown_id_is_no_confident_match(self) -> None:
        orchestrator = build_components([FakeSource("discogs", [])])["orchestrator"]

        outcome = await orchestrator.resolve(ResolutionQuery(external_id="999", authority_hint="discogs"))

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.NO_CONFIDENT_MATCH

    @pytest.mark.asyncio
    async def test_external_id_pins_one_of_two_same_named_acts(self) -> None:
        mb = FakeSource("musicbrainz", [make_record("musicbrainz", "mb-us", "Nirvana")])
        spotify = FakeSource("spotify", lookups=[make_record("spotify", "sp-uk", "Nirvana")])
        components = build_components([mb, spotify])

        result = await components["orchestrator"].resolve(
            ResolutionQuery(raw_text="Nirvana", external_id="sp-uk", authority_hint="spotify")
        )

        assert isinstance(result, ResolutionResult)
        assert result.matched_via.authority == "spotify"
        assert result.matched_via.rule is MatchRule.EXTERNAL_ID
        assert result.artist.external_ids == {"spotify": "sp-uk"}
        assert spotify.lookup_calls == ["sp-uk"]
        assert mb.search_calls == []
        owner = await components["store"].get_by_external_id("spotify", "sp-uk")
        assert owner is not None and owner.id == result.artist.id

    @pytest.mark.asyncio
    async def test_cached_name_does_not_answer_an_id_query(self) -> None:
        mb = FakeSource("musicbrainz", [make_record("musicbrainz", "mb-us", "Nirvana")])
        spotify = FakeSource("spotify", lookups=[make_record("spotify", "sp-uk", "Nirvana")])
        orchestrator = build_components([mb, spotify])["orchestrator"]

        plain = await orchestrator.resolve(_query("Nirvana"))
        pinned = await orchestrator.resolve(
            ResolutionQuery(raw_text="Nirvana", external_id="sp-uk", authority_hint="spotify")
        )
        again = await orchestrator.resolve(_query("Nirvana"))

        assert plain.artist.external_ids == {"musicbrainz": "mb-us"}
        assert pinned.from_cache is False
        assert pinned.artist.id != plain.artist.id
        assert pinned.artist.external_ids == {"spotify": "sp-uk"}
        # The id-pinned answer is not remembered under the bare name.
        assert again.from_cache is True
        assert again.artist.id == plain.artist.id

    @pytest.mark.asyncio
    async def test_name_match_without_the_id_is_not_accepted(self) -> None:
        mb = FakeSource("musicbrainz", [make_record("musicbrainz", "mb-us", "Nirvana")])
        spotify = FakeSource("spotify")
        orchestrator = build_components([mb, spotify])["orchestrator"]

        outcome = await orchestrator.resolve(
            ResolutionQuery(raw_text="Nirvana", external_id="sp-gone", authority_hint="spotify")
        )

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.NO_CONFIDENT_MATCH
        assert [s.name for s in outcome.suggestions] == ["Nirvana"]
        assert spotify.lookup_calls == ["sp-gone"]
        assert spotify.search_calls == []
        assert mb.search_calls == ["Nirvana"]


# ======================================================================
# Fallback and fan-out
# ======================================================================


class TestFallback:
    @pytest.mark.asyncio
    async def test_failing_primary_falls_through(self, beatles_discogs) -> None:
        mb = FakeSource("musicbrainz", error=SourceUnavailableError("503", provider_name="musicbrainz"))
        discogs = FakeSource("discogs", [beatles_discogs])
        spotify = FakeSource("spotify", [])
        orchestrator = build_components([mb, discogs, spotify])["orchestrator"]

        result = await orchestrator.resolve(_query("The Beatles"))

        assert isinstance(result, ResolutionResult)
        assert result.matched_via.authority == "discogs"
        assert spotify.search_calls == []

    @pytest.mark.asyncio
    async def test_unconfident_primary_fans_out(self, beatles_discogs, beatles_spotify) -> None:
        mb = FakeSource("musicbrainz", [])
        discogs = FakeSource("discogs", [beatles_discogs])
        spotify = FakeSource("spotify", [beatles_spotify], delay=0.01)
        orchestrator = build_components([mb, discogs, spotify])["orchestrator"]

        result = await orchestrator.resolve(_query("The Beatles"))

        assert isinstance(result, ResolutionResult)
        # Equal confidence: priority beats the richer spotify metadata.
        assert result.matched_via.authority == "discogs"
        assert spotify.search_calls == ["The Beatles"]
        assert spotify.cancelled == 0

    @pytest.mark.asyncio
    async def test_first_confident_cancels_the_rest(self, beatles_discogs, captured_logs) -> None:
        discogs = FakeSource("discogs", [beatles_discogs])
        slow = FakeSource("spotify", [], delay=5.0)
        orchestrator = build_components(
            [FakeSource("musicbrainz", []), discogs, slow],
            app_settings=make_settings(fanout_mode="first_confident", source_timeout_seconds=10.0),
        )["orchestrator"]

        result = await asyncio.wait_for(orchestrator.resolve(_query("The Beatles")), timeout=2.0)

        assert result.matched_via.authority == "discogs"
        assert slow.cancelled == 1
        cancelled = [e for e in captured_logs if e["event"] == "fanout_cancelled"]
        assert cancelled and cancelled[0]["authorities"] == ["spotify"]

    @pytest.mark.asyncio
    async def test_fanout_timeout_keeps_partial_answers(self) -> None:
        slow = FakeSource("spotify", [], delay=5.0)
        outcome = await build_components(
            [FakeSource("musicbrainz", []), FakeSource("discogs", []), slow],
            app_settings=make_settings(fanout_timeout_seconds=0.05, source_timeout_seconds=10.0),
        )["orchestrator"].resolve(_query("Nobody Here"))

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.NO_CONFIDENT_MATCH
        assert slow.cancelled == 1

    @pytest.mark.asyncio
    async def test_malformed_answer_counts_as_no_candidates(self, beatles_discogs) -> None:
        mb = FakeSource("musicbrainz", error=MalformedResponseError("truncated", provider_name="musicbrainz"))
        components = build_components([mb, FakeSource("discogs", [beatles_discogs])])

        result = await components["orchestrator"].resolve(_query("The Beatles"))

        assert result.matched_via.authority == "discogs"
        states = {b["authority"]: b["state"] for b in components["orchestrator"].breaker_states()}
        assert states["musicbrainz"] == "closed"


# ======================================================================
# Unresolved outcomes
# ======================================================================


class TestUnresolved:
    @pytest.mark.asyncio
    async def test_all_sources_down(self) -> None:
        clients = [
            FakeSource(name, error=SourceUnavailableError("down", provider_name=name))
            for name in ("musicbrainz", "discogs", "spotify")
        ]
        orchestrator = build_components(
            clients, app_settings=make_settings(breaker_failure_threshold=1)
        )["orchestrator"]

        outcome = await orchestrator.resolve(_query("The Beatles"))
        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.SOURCES_UNAVAILABLE

        # Breakers are open now: the second request never reaches the clients.
        again = await orchestrator.resolve(_query("Kraftwerk"))
        assert again.reason is UnresolvedReason.SOURCES_UNAVAILABLE
        assert [len(c.search_calls) for c in clients] == [1, 1, 1]
        assert {b["state"] for b in orchestrator.breaker_states()} == {"open"}

    @pytest.mark.asyncio
    async def test_near_miss_returns_suggestions(self) -> None:
        megadeth = make_record("musicbrainz", "mb-megadeth", "Megadeth")
        orchestrator = build_components([FakeSource("musicbrainz", [megadeth])])["orchestrator"]

        outcome = await orchestrator.resolve(_query("Metallica"))

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.NO_CONFIDENT_MATCH
        assert outcome.query_key == "metallica"
        assert [s.name for s in outcome.suggestions] == ["Megadeth"]
        assert 0 < outcome.suggestions[0].confidence < 0.7

    @pytest.mark.asyncio
    async def test_unresolved_is_not_cached(self) -> None:
        mb = FakeSource("musicbrainz", [])
        orchestrator = build_components([mb])["orchestrator"]

        await orchestrator.resolve(_query("Metallica"))
        await orchestrator.resolve(_query("Metallica"))

        assert len(mb.search_calls) == 2

    @pytest.mark.asyncio
    async def test_punctuation_only_is_invalid(self) -> None:
        mb = FakeSource("musicbrainz", [])
        orchestrator = build_components([mb])["orchestrator"]

        outcome = await orchestrator.resolve(_query("!!!"))

        assert outcome.reason is UnresolvedReason.INVALID_QUERY
        assert mb.search_calls == []

    @pytest.mark.asyncio
    async def test_unreadable_payload_is_a_non_match(self, captured_logs) -> None:
        item = {"id": SPOTIFY_BEATLES, "name": "Beatles", "images": ["oops"]}
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"artists": {"items": [item]}})
            )
        )
        spotify = SpotifyClient(
            settings=make_settings(),
            http_client=http,
            credentials=StaticCredentialProvider({"spotify": "tok"}),
        )
        orchestrator = build_components([spotify])["orchestrator"]

        outcome = await orchestrator.resolve(_query("Beatles"))

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.NO_CONFIDENT_MATCH
        assert "source_malformed_response" in _events(captured_logs)
        assert {b["state"] for b in orchestrator.breaker_states()} == {"closed"}

    @pytest.mark.asyncio
    async def test_write_back_conflicts_become_unresolved(self, beatles_mb, captured_logs) -> None:
        store = MemoryArtistStore()
        store.upsert = AsyncMock(side_effect=InvariantViolationError("claimed concurrently"))
        orchestrator = build_components(
            [FakeSource("musicbrainz", [beatles_mb])], store=store
        )["orchestrator"]

        outcome = await orchestrator.resolve(_query("The Beatles"))

        assert isinstance(outcome, Unresolved)
        assert outcome.reason is UnresolvedReason.SOURCES_UNAVAILABLE
        assert store.upsert.await_count == 3
        assert "write_back_failed" in _events(captured_logs)


# ======================================================================
# Concurrency and write-back
# ======================================================================


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_identical_concurrent_queries_share_one_search(self, beatles_mb) -> None:
        mb = FakeSource("musicbrainz", [beatles_mb], delay=0.05)
        orchestrator = build_components([mb])["orchestrator"]

        spellings = ["The Beatles", "the beatles", "BEATLES", "Beatles "]
        results = await asyncio.gather(
            *(orchestrator.resolve(_query(spellings[i % len(spellings)])) for i in range(50))
        )

        assert len(mb.search_calls) == 1
        assert len({r.artist.id for r in results}) == 1

    @pytest.mark.asyncio
    async def test_concurrent_fan_out_asks_each_source_once(
        self, beatles_discogs, beatles_spotify
    ) -> None:
        weak = make_record("musicbrainz", "mb-beatallica", "Beatallica")
        mb = FakeSource("musicbrainz", [weak], delay=0.02)
        discogs = FakeSource("discogs", [beatles_discogs], delay=0.02)
        spotify = FakeSource("spotify", [beatles_spotify], delay=0.02)
        orchestrator = build_components([mb, discogs, spotify])["orchestrator"]

        results = await asyncio.gather(*(orchestrator.resolve(_query("The Beatles")) for _ in range(50)))

        assert all(isinstance(r, ResolutionResult) for r in results)
        assert len({r.artist.id for r in results}) == 1
        assert len(mb.search_calls) == 1
        for source in (mb, discogs, spotify):
            assert len(source.search_calls) <= 1
            assert len(source.lookup_calls) <= 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_leaves_the_others_served(self, beatles_mb) -> None:
        mb = FakeSource("musicbrainz", [beatles_mb], delay=0.05)
        orchestrator = build_components([mb])["orchestrator"]

        waiters = [asyncio.ensure_future(orchestrator.resolve(_query("The Beatles"))) for _ in range(3)]
        await asyncio.sleep(0.01)
        waiters[0].cancel()
        results = await asyncio.gather(*waiters[1:])

        assert waiters[0].cancelled()
        assert [r.artist.canonical_name for r in results] == ["The Beatles", "The Beatles"]
        assert results[0].artist.id == results[1].artist.id
        assert len(mb.search_calls) == 1
        assert mb.cancelled == 0

    @pytest.mark.asyncio
    async def test_write_back_merges_entities_sharing_ids(self, beatles_mb) -> None:
        components = build_components([FakeSource("musicbrainz", [beatles_mb])])
        store = components["store"]
        older = await store.upsert(
            Artist(
                id="older",
                canonical_name="Beatles",
                external_ids={"musicbrainz": MB_BEATLES},
                created_at=datetime.datetime(2019, 1, 1, tzinfo=datetime.timezone.utc),  # noqa: UP017
            )
        )
        await store.upsert(
            Artist(
                id="newer",
                canonical_name="The Beatles",
                external_ids={"discogs": DISCOGS_BEATLES},
                created_at=datetime.datetime(2020, 1, 1, tzinfo=datetime.timezone.utc),  # noqa: UP017
            )
        )

        result = await components["orchestrator"].resolve(_query("The Beatles"))

        assert result.artist.id == older.id
        assert result.artist.external_ids == {
            "musicbrainz": MB_BEATLES,
            "discogs": DISCOGS_BEATLES,
            "spotify": SPOTIFY_BEATLES,
        }
        assert (await store.get("newer")).id == older.id
        assert (await store.get_record("newer")).canonical_artist_id == older.id

    @pytest.mark.asyncio
    async def test_resolve_many_keeps_input_order(self, beatles_mb) -> None:
        orchestrator = build_components(
            [FakeSource("musicbrainz", [beatles_mb])],
            app_settings=make_settings(batch_concurrency=2),
        )["orchestrator"]

        outcomes = await orchestrator.resolve_many(
            [_query("Metallica"), _query("The Beatles"), _query("???"), _query("Fab Four")]
        )

        assert [o.resolved for o in outcomes] == [False, True, False, True]
        assert outcomes[0].reason is UnresolvedReason.NO_CONFIDENT_MATCH
        assert outcomes[2].reason is UnresolvedReason.INVALID_QUERY
        assert outcomes[3].matched_via.rule is MatchRule.ALIAS_NAME
        assert outcomes[1].artist.id == outcomes[3].artist.id

    @pytest.mark.asyncio
    async def test_alias_tiers_follow_the_authority(self) -> None:
        record = make_record(
            "musicbrainz",
            "mb-prince",
            "Prince",
            aliases=[("The Artist Formerly Known as Prince", AliasTier.CREDITED)],
        )
        orchestrator = build_components([FakeSource("musicbrainz", [record])])["orchestrator"]

        result = await orchestrator.resolve(_query("Artist Formerly Known as Prince"))

        assert result.matched_via.rule is MatchRule.CREDITED_NAME
        assert result.confidence == pytest.approx(0.9)
