# src/tracking/models.py — v2
"""Tracking domain models: LookupLogEntry, EntityViewEntry, LedgerStats."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel

from analysiscache.cache.models import InputModality


class LookupLogEntry(BaseModel):
    """Append-only record of one orchestrated per-user lookup."""

    entry_id: str
    owner_id: str
    artifact_id: str | None = None
    modality: InputModality
    input_summary: str
    barcode: str | None = None
    product_url: str | None = None
    resolved_display_name: str | None = None
    was_cache_hit: bool
    recorded_at: datetime


class EntityViewEntry(BaseModel):
    """Append-only record of one shared entity artifact read."""

    entry_id: str
    owner_id: str
    entity_id: str
    was_cache_hit: bool
    was_regenerated: bool = False
    recorded_at: datetime


class ModalityStats(BaseModel):
    """Per-modality lookup counts."""

    modality: InputModality
    lookups: int = 0
    hits: int = 0
    misses: int = 0


class LedgerStats(BaseModel):
    """Aggregated view over the lookup ledger."""

    total_lookups: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    failed_lookups: int = 0
    hit_rate: float = 0.0
    unique_owners: int = 0
    by_modality: dict[str, ModalityStats] = {}
    top_display_names: list[tuple[str, int]] = []
    entity_views: int = 0
    entity_view_hits: int = 0
    entity_regenerations: int = 0
    first_recorded_at: datetime | None = None
    last_recorded_at: datetime | None = None
