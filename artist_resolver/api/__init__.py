"""Artist resolver API layer: routes, schemas, and middleware."""

from artist_resolver.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from artist_resolver.api.routes import router
from artist_resolver.api.schemas import (
    BatchResolveRequest,
    BatchResolveResponse,
    ErrorResponse,
    HealthResponse,
    MergeRequest,
    ResolveRequest,
    ResolveResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "BatchResolveRequest",
    "BatchResolveResponse",
    "ErrorResponse",
    "HealthResponse",
    "MergeRequest",
    "ResolveRequest",
    "ResolveResponse",
]
