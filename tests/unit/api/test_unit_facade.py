# tests/unit/api/test_unit_facade.py — v2
"""Tests for api/facade.py — public entry points."""

from __future__ import annotations

import logging

import pytest

from analysiscache.api.facade import (
    analyze_input,
    create_orchestrator,
    entity_breakdown,
    lookup_stats,
)
from analysiscache.cache.orchestrator import CacheOrchestrator
from analysiscache.cache.sqlite_store import SqliteCacheStore
from analysiscache.config.settings import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(_env_file=None, cache_backend="sqlite", cache_root=tmp_path)


@pytest.fixture
def facade_orchestrator(settings, gateway):
    orch = create_orchestrator(gateway, settings=settings)
    yield orch
    orch._artifacts.close()


class TestCreateOrchestrator:
    def test_from_settings(self, facade_orchestrator):
        assert isinstance(facade_orchestrator, CacheOrchestrator)
        assert isinstance(facade_orchestrator._artifacts, SqliteCacheStore)

    def test_uses_given_store(self, settings, gateway, json_store):
        orch = create_orchestrator(gateway, settings=settings, cache_store=json_store)
        assert orch._artifacts is json_store

    def test_configure_logging(self, settings, gateway, json_store):
        package_logger = logging.getLogger("analysiscache")
        handlers, level = list(package_logger.handlers), package_logger.level
        try:
            create_orchestrator(
                gateway,
                settings=settings.model_copy(update={"log_level": "WARNING"}),
                cache_store=json_store,
                configure_logging=True,
            )
            assert package_logger.level == logging.WARNING
        finally:
            package_logger.handlers[:] = handlers
            package_logger.setLevel(level)


class TestAnalyzeInput:
    @pytest.mark.asyncio
    async def test_miss_then_hit(self, facade_orchestrator, gateway):
        first = await analyze_input(facade_orchestrator, "user-1", "barcode", "0 12345 67890 5")
        second = await analyze_input(facade_orchestrator, "user-1", "barcode", "012345678905")
        assert first.was_cache_hit is False
        assert second.was_cache_hit is True
        assert second.record.lookup_count == 2
        assert gateway.calls == 1

    @pytest.mark.asyncio
    async def test_empty_input(self, facade_orchestrator):
        with pytest.raises(ValueError, match="empty"):
            await analyze_input(facade_orchestrator, "user-1", "text", "   ")

    @pytest.mark.asyncio
    async def test_unknown_modality(self, facade_orchestrator):
        with pytest.raises(ValueError):
            await analyze_input(facade_orchestrator, "user-1", "video", "clip")


class TestEntityBreakdown:
    @pytest.mark.asyncio
    async def test_by_name_then_id(self, facade_orchestrator, gateway):
        created = await entity_breakdown(facade_orchestrator, "user-1", name="Masteron")
        again = await entity_breakdown(
            facade_orchestrator, "user-1", entity_id=created.entity.entity_id
        )
        assert again.was_cache_hit is True
        assert gateway.calls == 1

    @pytest.mark.asyncio
    async def test_requires_id_or_name(self, facade_orchestrator):
        with pytest.raises(ValueError, match="entity_id or name"):
            await entity_breakdown(facade_orchestrator, "user-1")


class TestLookupStats:
    @pytest.mark.asyncio
    async def test_stats(self, facade_orchestrator):
        await analyze_input(facade_orchestrator, "user-1", "text", "Zinc 50mg")
        await analyze_input(facade_orchestrator, "user-1", "text", "zinc  50MG")
        await analyze_input(facade_orchestrator, "user-2", "text", "Zinc 50mg")
        await entity_breakdown(facade_orchestrator, "user-1", name="Masteron")

        store = facade_orchestrator._artifacts
        overall = await lookup_stats(store)
        assert overall.total_lookups == 3
        assert overall.cache_hits == 1
        assert overall.unique_owners == 2
        assert overall.entity_views == 1

        user2 = await lookup_stats(store, owner_id="user-2")
        assert user2.total_lookups == 1
        assert user2.entity_views == 0
