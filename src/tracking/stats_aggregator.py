# src/tracking/stats_aggregator.py — v2
"""Ledger statistics — hit rate, per-modality counts, popular products.

Computed from the append-only ledger; optionally persisted as a JSON
snapshot for dashboards.
"""

from __future__ import annotations

import logging
from collections import Counter
from pathlib import Path

from analysiscache.cache.models import InputModality
from analysiscache.tracking.models import (
    EntityViewEntry,
    LedgerStats,
    LookupLogEntry,
    ModalityStats,
)

logger = logging.getLogger(__name__)


def aggregate_lookup_stats(
    entries: list[LookupLogEntry],
    views: list[EntityViewEntry] | None = None,
    top_n: int = 10,
) -> LedgerStats:
    """Aggregate ledger entries into LedgerStats.

    Args:
        entries: Per-user lookup entries.
        views: Shared entity view entries.
        top_n: How many display names to keep in top_display_names.

    Returns:
        LedgerStats. A miss without an artifact counts as a failed lookup.
    """
    views = views or []
    by_modality: dict[str, ModalityStats] = {}
    names: Counter[str] = Counter()
    hits = misses = failed = 0

    for entry in entries:
        modality = InputModality(entry.modality)
        stats = by_modality.setdefault(modality.value, ModalityStats(modality=modality))
        stats.lookups += 1
        if entry.was_cache_hit:
            hits += 1
            stats.hits += 1
        else:
            misses += 1
            stats.misses += 1
            if entry.artifact_id is None:
                failed += 1
        if entry.resolved_display_name:
            names[entry.resolved_display_name] += 1

    total = len(entries)
    timestamps = sorted(e.recorded_at for e in entries)
    return LedgerStats(
        total_lookups=total,
        cache_hits=hits,
        cache_misses=misses,
        failed_lookups=failed,
        hit_rate=hits / total if total else 0.0,
        unique_owners=len({e.owner_id for e in entries}),
        by_modality=by_modality,
        top_display_names=names.most_common(top_n),
        entity_views=len(views),
        entity_view_hits=sum(1 for v in views if v.was_cache_hit),
        entity_regenerations=sum(1 for v in views if v.was_regenerated),
        first_recorded_at=timestamps[0] if timestamps else None,
        last_recorded_at=timestamps[-1] if timestamps else None,
    )


def load_ledger_stats(path: Path) -> LedgerStats | None:
    """Load a persisted stats snapshot, or None if absent or unreadable."""
    if not path.exists():
        return None
    try:
        return LedgerStats.model_validate_json(path.read_text(encoding="utf-8"))
    except ValueError as e:
        logger.warning("Failed to load ledger stats from %s: %s", path, e)
        return None


def save_ledger_stats(stats: LedgerStats, path: Path) -> None:
    """Persist a stats snapshot to disk."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(stats.model_dump_json(indent=2), encoding="utf-8")
