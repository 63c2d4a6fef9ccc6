"""FastAPI routes for the artist resolver.

Service dependencies are resolved from ``app.state`` via FastAPI's
``Depends`` using the ``Annotated`` pattern; ``main`` populates the
state at startup.

Endpoint                                        Method  Description
/api/v1/resolve                                 POST    Resolve one reference
/api/v1/resolve/batch                           POST    Resolve up to 100 references
/api/v1/artists                                 GET     Find roots by name
/api/v1/artists/{artist_id}                     GET     Canonical root for an id
/api/v1/artists/by-external/{authority}/{eid}   GET     Root holding a platform id
/api/v1/artists/{artist_id}/merge               POST    Merge an artist into another
/api/v1/export                                  GET     Records changed since a cursor
/api/v1/health                                  GET     Breaker and store status
"""

from __future__ import annotations

import datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from artist_resolver.api.schemas import (
    BatchResolveRequest,
    BatchResolveResponse,
    ErrorResponse,
    HealthResponse,
    MergeRequest,
    ResolveRequest,
    ResolveResponse,
)
from artist_resolver.interfaces.artist_store import IArtistStore
from artist_resolver.models.artist import Artist
from artist_resolver.models.export import ExportBatch
from artist_resolver.models.resolution import ResolutionQuery, UnresolvedReason
from artist_resolver.services.export_service import ExportService
from artist_resolver.services.resolution_orchestrator import ResolutionOrchestrator
from artist_resolver.utils.circuit_breaker import BreakerState
from artist_resolver.utils.logging import get_logger
from artist_resolver.utils.text_normalizer import normalize_name

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

API_VERSION = "0.1.0"

_STATUS_FOR_REASON = {
    UnresolvedReason.NO_CONFIDENT_MATCH: 404,
    UnresolvedReason.SOURCES_UNAVAILABLE: 503,
    UnresolvedReason.INVALID_QUERY: 422,
}


# ---------------------------------------------------------------------------
# Dependency injection helpers: resolve singletons from app.state
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> ResolutionOrchestrator:
    return request.app.state.orchestrator


def _get_store(request: Request) -> IArtistStore:
    return request.app.state.store


def _get_export_service(request: Request) -> ExportService:
    return request.app.state.export_service


OrchestratorDep = Annotated[ResolutionOrchestrator, Depends(_get_orchestrator)]
StoreDep = Annotated[IArtistStore, Depends(_get_store)]
ExportDep = Annotated[ExportService, Depends(_get_export_service)]


def _to_query(body: ResolveRequest) -> ResolutionQuery:
    try:
        return body.to_query()
    except ValidationError as exc:
        messages = "; ".join(err["msg"] for err in exc.errors())
        raise HTTPException(status_code=422, detail=messages) from exc


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


@router.post(
    "/resolve",
    response_model=ResolveResponse,
    responses={404: {"model": ResolveResponse}, 503: {"model": ResolveResponse}},
    summary="Resolve an artist reference to its canonical record",
)
async def resolve(body: ResolveRequest, orchestrator: OrchestratorDep) -> JSONResponse:
    """Resolve free text and/or a platform id.

    An unresolved outcome is not an error on the server side, but the
    status code tells the client which kind of miss happened.
    """
    outcome = await orchestrator.resolve(_to_query(body))
    response = ResolveResponse.from_outcome(outcome)
    status = 200
    if not response.resolved:
        status = _STATUS_FOR_REASON[UnresolvedReason(response.reason)]
    return JSONResponse(status_code=status, content=response.model_dump(mode="json"))


@router.post(
    "/resolve/batch",
    response_model=BatchResolveResponse,
    summary="Resolve several artist references",
)
async def resolve_batch(body: BatchResolveRequest, orchestrator: OrchestratorDep) -> BatchResolveResponse:
    queries = [_to_query(item) for item in body.queries]
    outcomes = await orchestrator.resolve_many(queries)
    return BatchResolveResponse(results=[ResolveResponse.from_outcome(o) for o in outcomes])


# ---------------------------------------------------------------------------
# Canonical records
# ---------------------------------------------------------------------------


@router.get("/artists", response_model=list[Artist], summary="Find canonical artists by name")
async def find_artists(store: StoreDep, name: str = Query(..., min_length=1, max_length=500)) -> list[Artist]:
    return await store.find_by_name(normalize_name(name))


@router.get(
    "/artists/by-external/{authority}/{external_id}",
    response_model=Artist,
    responses={404: {"model": ErrorResponse}},
    summary="Canonical artist holding a platform id",
)
async def get_artist_by_external_id(authority: str, external_id: str, store: StoreDep) -> Artist:
    artist = await store.get_by_external_id(authority.lower(), external_id)
    if artist is None:
        raise HTTPException(status_code=404, detail=f"No artist holds {authority}:{external_id}")
    return artist


@router.get(
    "/artists/{artist_id}",
    response_model=Artist,
    responses={404: {"model": ErrorResponse}},
    summary="Canonical artist for an id (merged ids follow to the survivor)",
)
async def get_artist(artist_id: str, store: StoreDep) -> Artist:
    artist = await store.get(artist_id)
    if artist is None:
        raise HTTPException(status_code=404, detail=f"Artist not found: {artist_id}")
    return artist


@router.post(
    "/artists/{artist_id}/merge",
    response_model=Artist,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
    summary="Merge one canonical artist into another",
)
async def merge_artists(artist_id: str, body: MergeRequest, store: StoreDep) -> Artist:
    """Fold *artist_id* into ``into_id``; the survivor is returned.

    Unknown ids surface as 404 and rejected merges as 409 through the
    error handling middleware.
    """
    survivor = await store.merge(artist_id, body.into_id)
    _logger.info("manual_merge", source_id=artist_id, into_id=survivor.id)
    return survivor


# ---------------------------------------------------------------------------
# Export and health
# ---------------------------------------------------------------------------


@router.get("/export", response_model=ExportBatch, summary="Records changed since a cursor")
async def export(exporter: ExportDep, since: datetime.datetime | None = None) -> ExportBatch:
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=datetime.timezone.utc)  # noqa: UP017
    return await exporter.export(since)


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(orchestrator: OrchestratorDep) -> HealthResponse:
    breakers = orchestrator.breaker_states()
    stats = await orchestrator.store.stats()
    all_open = bool(breakers) and all(b["state"] == BreakerState.OPEN.value for b in breakers)
    return HealthResponse(
        status="degraded" if all_open else "healthy",
        version=API_VERSION,
        breakers=breakers,
        store=stats,
    )
