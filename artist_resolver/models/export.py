"""Models for the client-side filter export.

Lightweight clients (e.g. a browser extension) build a local lookup
table from periodic exports.  Exports are update-only: an entity merged
server-side after a sync shows up in the next export with its
``canonical_artist_id`` set, and the client folds it then.
"""

from __future__ import annotations

import datetime

from pydantic import BaseModel, ConfigDict, Field


class ExportAlias(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    source: str
    confidence: float = Field(ge=0.0, le=1.0)


class ExportEntry(BaseModel):
    """One artist row in an export batch."""

    model_config = ConfigDict(frozen=True)

    id: str
    canonical_name: str
    canonical_artist_id: str | None = None
    external_ids: dict[str, str] = Field(default_factory=dict)
    aliases: list[ExportAlias] = Field(default_factory=list)
    updated_at: datetime.datetime


class ExportBatch(BaseModel):
    """A page of export entries plus the cursor for the next sync."""

    model_config = ConfigDict(frozen=True)

    entries: list[ExportEntry] = Field(default_factory=list)
    # Pass back as ``since`` on the next call; ``None`` only for an empty first sync.
    cursor: datetime.datetime | None = None
    generated_at: datetime.datetime
