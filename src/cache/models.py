# src/cache/models.py — v2
"""Cache domain models: InputModality, ArtifactRecord, EntityArtifact, lookup results."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter


class InputModality(str, Enum):
    """How the user submitted the input. Drives key normalization."""

    BARCODE = "barcode"
    URL = "url"
    TEXT = "text"
    IMAGE = "image"


CacheKey = str

_JSON_VALUE: TypeAdapter[Any] = TypeAdapter(Any)


def dump_json_value(value: Any) -> str:
    """Serialize an opaque payload or live value as pydantic dumps model fields."""
    return _JSON_VALUE.dump_json(value).decode("utf-8")


class ArtifactRecord(BaseModel):
    """Per-user cached analysis, unique on (owner_id, cache_key)."""

    id: str
    owner_id: str
    cache_key: CacheKey
    modality: InputModality
    input_summary: str
    barcode: str | None = None
    product_url: str | None = None
    artifact_payload: dict[str, Any]
    derived_display_name: str | None = None
    lookup_count: int = Field(default=1, ge=1)
    created_at: datetime
    updated_at: datetime


class DerivedColumns(BaseModel):
    """Queryable columns parsed out of an entity payload at regeneration time."""

    affected_systems: list[str] | None = None
    key_monitoring_markers: list[str] | None = None


class EntityArtifact(BaseModel):
    """Shared analysis attached to a catalog entity.

    live_fields belong to the catalog process; regeneration never writes them.
    """

    entity_id: str
    name: str
    artifact_payload: dict[str, Any] | None = None
    artifact_updated_at: datetime | None = None
    derived_columns: DerivedColumns = Field(default_factory=DerivedColumns)
    live_fields: dict[str, Any] = Field(default_factory=dict)


class LookupRequest(BaseModel):
    """A classified per-user input, as handed over by the request classifier."""

    owner_id: str
    modality: InputModality
    raw_input: str | bytes
    barcode: str | None = None
    product_url: str | None = None


class LookupResult(BaseModel):
    """Outcome of a per-user lookup."""

    record: ArtifactRecord
    was_cache_hit: bool

    @property
    def artifact_payload(self) -> dict[str, Any]:
        return self.record.artifact_payload


class EntityLookupResult(BaseModel):
    """Outcome of a shared entity lookup. artifact_payload has live fields applied."""

    entity: EntityArtifact
    artifact_payload: dict[str, Any]
    was_cache_hit: bool
    was_regenerated: bool = False
