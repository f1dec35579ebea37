# src/api/facade.py — v2
"""Public API facade — entry points used by request handlers.

Usage:
    from analysiscache.api.facade import analyze_input, create_orchestrator
    orchestrator = create_orchestrator(gateway)
    result = await analyze_input(orchestrator, "user-1", "text", "Creatine 5g")
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from analysiscache.cache.cache_factory import create_cache_store
from analysiscache.cache.models import (
    EntityLookupResult,
    InputModality,
    LookupRequest,
    LookupResult,
)
from analysiscache.cache.orchestrator import CacheOrchestrator
from analysiscache.config.settings import Settings
from analysiscache.logging.logger import setup_logging
from analysiscache.tracking.models import LedgerStats
from analysiscache.tracking.stats_aggregator import aggregate_lookup_stats

if TYPE_CHECKING:
    from analysiscache.cache.base_artifact_store import BaseCacheStore, BaseLedgerStore
    from analysiscache.generation.base_gateway import BaseGenerationGateway

logger = logging.getLogger(__name__)


def create_orchestrator(
    gateway: BaseGenerationGateway,
    settings: Settings | None = None,
    cache_store: BaseCacheStore | None = None,
    configure_logging: bool = False,
) -> CacheOrchestrator:
    """Build an orchestrator from settings.

    Args:
        gateway: Generation backend invoked on misses.
        settings: Global settings. Loaded from .env if None.
        cache_store: Pre-built backend. Created from settings if None.
        configure_logging: Apply LOG_* settings to the package logger.

    Returns:
        Ready-to-use CacheOrchestrator.
    """
    settings = settings or Settings()
    if configure_logging:
        setup_logging(
            level=settings.log_level,
            log_format=settings.log_format,
            log_file=settings.log_file,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
        )
    store = cache_store or create_cache_store(settings)
    logger.info("Cache orchestrator using %s backend", store.backend_name)
    return CacheOrchestrator.from_settings(store, gateway, settings)


async def analyze_input(
    orchestrator: CacheOrchestrator,
    owner_id: str,
    modality: InputModality | str,
    raw_input: str | bytes,
    barcode: str | None = None,
    product_url: str | None = None,
    timeout_s: float | None = None,
) -> LookupResult:
    """Resolve one classified user input to its (possibly cached) analysis.

    Raises:
        ValueError: Unknown modality or empty input.
        GenerationFailure: Generation failed or timed out.
        StoreUnavailable: Storage failed.
    """
    if not raw_input or (isinstance(raw_input, str) and not raw_input.strip()):
        raise ValueError("Input is empty")
    request = LookupRequest(
        owner_id=owner_id,
        modality=InputModality(modality),
        raw_input=raw_input,
        barcode=barcode,
        product_url=product_url,
    )
    return await orchestrator.lookup(request, timeout_s=timeout_s)


async def entity_breakdown(
    orchestrator: CacheOrchestrator,
    owner_id: str,
    entity_id: str | None = None,
    name: str | None = None,
    timeout_s: float | None = None,
) -> EntityLookupResult:
    """Serve the shared entity artifact by id, or by name when no id is given."""
    if entity_id:
        return await orchestrator.entity_artifact(owner_id, entity_id, timeout_s=timeout_s)
    if name:
        return await orchestrator.entity_artifact_by_name(owner_id, name, timeout_s=timeout_s)
    raise ValueError("Either entity_id or name is required")


async def lookup_stats(ledger_store: BaseLedgerStore, owner_id: str | None = None) -> LedgerStats:
    """Aggregate ledger statistics, optionally for a single owner."""
    entries = await ledger_store.list_lookups(owner_id)
    views = await ledger_store.list_entity_views()
    if owner_id is not None:
        views = [v for v in views if v.owner_id == owner_id]
    return aggregate_lookup_stats(entries, views)
