# tests/unit/tracking/test_unit_stats_aggregator.py — v2
"""Tests for tracking/stats_aggregator.py."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from analysiscache.cache.models import InputModality
from analysiscache.tracking.models import EntityViewEntry, LedgerStats, LookupLogEntry
from analysiscache.tracking.stats_aggregator import (
    aggregate_lookup_stats,
    load_ledger_stats,
    save_ledger_stats,
)

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _entry(i, owner="u1", modality=InputModality.TEXT, hit=False, artifact="a1", name="Zinc"):
    return LookupLogEntry(
        entry_id=f"e{i}",
        owner_id=owner,
        artifact_id=artifact,
        modality=modality,
        input_summary="x",
        resolved_display_name=name,
        was_cache_hit=hit,
        recorded_at=T0 + timedelta(minutes=i),
    )


class TestAggregateLookupStats:
    def test_empty(self):
        stats = aggregate_lookup_stats([])
        assert stats.total_lookups == 0
        assert stats.hit_rate == 0.0
        assert stats.first_recorded_at is None

    def test_counts(self):
        entries = [
            _entry(0),
            _entry(1, hit=True),
            _entry(2, hit=True),
            _entry(3, owner="u2", modality=InputModality.BARCODE, name="Iron"),
            _entry(4, owner="u2", artifact=None, name=None),
        ]
        views = [
            EntityViewEntry(entry_id="v1", owner_id="u1", entity_id="x", was_cache_hit=True, recorded_at=T0),
            EntityViewEntry(
                entry_id="v2", owner_id="u1", entity_id="x", was_cache_hit=False,
                was_regenerated=True, recorded_at=T0,
            ),
        ]
        stats = aggregate_lookup_stats(entries, views)
        assert stats.total_lookups == 5
        assert stats.cache_hits == 2
        assert stats.cache_misses == 3
        assert stats.failed_lookups == 1
        assert stats.hit_rate == 0.4
        assert stats.unique_owners == 2
        assert stats.by_modality["text"].lookups == 4
        assert stats.by_modality["barcode"].misses == 1
        assert stats.top_display_names[0] == ("Zinc", 3)
        assert stats.entity_views == 2
        assert stats.entity_view_hits == 1
        assert stats.entity_regenerations == 1
        assert stats.first_recorded_at == T0
        assert stats.last_recorded_at == T0 + timedelta(minutes=4)

    def test_top_n(self):
        entries = [_entry(i, name=f"P{i}") for i in range(5)]
        assert len(aggregate_lookup_stats(entries, top_n=2).top_display_names) == 2


class TestPersistence:
    def test_save_and_load(self, tmp_path):
        stats = aggregate_lookup_stats([_entry(0), _entry(1, hit=True)])
        path = tmp_path / "stats" / "ledger.json"
        save_ledger_stats(stats, path)
        loaded = load_ledger_stats(path)
        assert isinstance(loaded, LedgerStats)
        assert loaded.cache_hits == 1
        assert loaded.by_modality["text"].lookups == 2

    def test_load_missing(self, tmp_path):
        assert load_ledger_stats(tmp_path / "none.json") is None

    def test_load_corrupt(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{oops")
        assert load_ledger_stats(path) is None
