# src/cache/orchestrator.py — v1
"""Cache orchestrator — derive, consult, generate on miss, persist, overlay, log.

Per-user path:
  derive key → get_record → hit: increment_hit
                          → miss: generate → put_or_increment
Shared path:
  get_entity → fresh: overlay
             → stale or empty: generate → replace → overlay

Every lookup is recorded in the ledger, whatever the outcome. Failures
(GenerationFailure, StoreUnavailable, EntityNotFoundError) propagate to the
caller untouched; there are no internal retries.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Mapping

from analysiscache.cache.entity_columns import parse_derived_columns
from analysiscache.cache.errors import (
    DuplicateEntityError,
    EntityNotFoundError,
    StoreUnavailable,
)
from analysiscache.cache.freshness import FreshnessPolicy, utc_now
from analysiscache.cache.key_deriver import KeyDeriver, display_name_from_payload
from analysiscache.cache.models import (
    ArtifactRecord,
    EntityArtifact,
    EntityLookupResult,
    LookupRequest,
    LookupResult,
)
from analysiscache.cache.overlay import overlay
from analysiscache.generation.base_gateway import generate_with_timeout
from analysiscache.generation.models import GenerationRequest
from analysiscache.logging.context import set_entity_context, set_lookup_context

if TYPE_CHECKING:
    from analysiscache.cache.base_artifact_store import (
        BaseArtifactStore,
        BaseCacheStore,
        BaseEntityStore,
    )
    from analysiscache.config.settings import Settings
    from analysiscache.generation.base_gateway import BaseGenerationGateway
    from analysiscache.tracking.lookup_ledger import LookupLedger

logger = logging.getLogger(__name__)


class CacheOrchestrator:
    """Composes key derivation, stores, freshness, overlay, generation and ledger."""

    def __init__(
        self,
        artifact_store: BaseArtifactStore,
        entity_store: BaseEntityStore,
        ledger: LookupLedger,
        gateway: BaseGenerationGateway,
        key_deriver: KeyDeriver | None = None,
        freshness: FreshnessPolicy | None = None,
        live_field_paths: Mapping[str, str] | None = None,
        default_timeout_s: float | None = 60.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._artifacts = artifact_store
        self._entities = entity_store
        self._ledger = ledger
        self._gateway = gateway
        self._keys = key_deriver or KeyDeriver()
        self._freshness = freshness or FreshnessPolicy(clock=clock)
        self._live_field_paths = live_field_paths
        self._default_timeout_s = default_timeout_s
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        store: BaseCacheStore,
        gateway: BaseGenerationGateway,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> CacheOrchestrator:
        """Wire an orchestrator around a single backend that serves every interface."""
        from analysiscache.tracking.lookup_ledger import LookupLedger

        return cls(
            artifact_store=store,
            entity_store=store,
            ledger=LookupLedger(store, clock=clock),
            gateway=gateway,
            key_deriver=KeyDeriver.from_settings(settings),
            freshness=FreshnessPolicy.from_days(settings.entity_cache_ttl_days, clock=clock),
            live_field_paths=settings.entity_live_field_paths,
            default_timeout_s=settings.generation_timeout_s,
            clock=clock,
        )

    # --- Per-user path ---

    async def lookup(self, request: LookupRequest, timeout_s: float | None = None) -> LookupResult:
        """Resolve a per-user input to its artifact, generating it on a miss.

        Args:
            request: Classified input from the caller.
            timeout_s: Generation deadline. Defaults to the configured timeout.

        Returns:
            LookupResult with the stored record and whether it was a hit.

        Raises:
            GenerationFailure: Generation failed or timed out; nothing persisted.
            StoreUnavailable: The backend failed.
        """
        set_lookup_context(request.owner_id, uuid.uuid4().hex, request.modality.value)
        cache_key = self._keys.derive(request.owner_id, request.modality, request.raw_input)
        summary = self._keys.summarize(
            request.modality, request.raw_input, request.barcode, request.product_url
        )
        record: ArtifactRecord | None = None
        hit = False

        try:
            existing = await self._artifacts.get_record(request.owner_id, cache_key)
            if existing is not None:
                hit = True
                await self._artifacts.increment_hit(existing.id)
                record = existing.model_copy(
                    update={
                        "lookup_count": existing.lookup_count + 1,
                        "updated_at": self._clock(),
                    }
                )
                logger.info("Cache hit on %s (lookup #%d)", cache_key, record.lookup_count)
                return LookupResult(record=record, was_cache_hit=True)

            logger.info("Cache miss on %s, generating", cache_key)
            payload = await generate_with_timeout(
                self._gateway,
                GenerationRequest(
                    kind="input_analysis",
                    owner_id=request.owner_id,
                    modality=request.modality,
                    content=request.raw_input,
                    cache_key=cache_key,
                ),
                self._timeout(timeout_s),
            )
            record = await self._artifacts.put_or_increment(
                owner_id=request.owner_id,
                cache_key=cache_key,
                modality=request.modality,
                input_summary=summary,
                artifact_payload=payload,
                display_name=display_name_from_payload(payload),
                barcode=request.barcode,
                product_url=request.product_url,
            )
            return LookupResult(record=record, was_cache_hit=False)
        finally:
            await self._record_lookup(request, summary, record, hit)

    async def _record_lookup(
        self,
        request: LookupRequest,
        summary: str,
        record: ArtifactRecord | None,
        hit: bool,
    ) -> None:
        try:
            await self._ledger.record(
                owner_id=request.owner_id,
                modality=request.modality,
                input_summary=summary,
                was_cache_hit=hit and record is not None,
                artifact_id=None if record is None else record.id,
                resolved_display_name=None if record is None else record.derived_display_name,
                barcode=request.barcode,
                product_url=request.product_url,
            )
        except Exception:
            # The ledger must not mask the lookup outcome.
            logger.warning("Failed to record lookup for %s", request.owner_id, exc_info=True)

    # --- Shared entity path ---

    async def entity_artifact(
        self, owner_id: str, entity_id: str, timeout_s: float | None = None
    ) -> EntityLookupResult:
        """Serve the shared artifact of a catalog entity with live fields applied.

        Raises:
            EntityNotFoundError: No entity with this id.
            GenerationFailure: Regeneration failed; the stale artifact is kept.
            StoreUnavailable: The backend failed.
        """
        set_entity_context(owner_id, uuid.uuid4().hex, entity_id)
        result: EntityLookupResult | None = None
        try:
            entity = await self._entities.get_entity(entity_id)
            if entity is None:
                raise EntityNotFoundError(entity_id)
            result = await self._resolve_entity(owner_id, entity, timeout_s)
            return result
        finally:
            await self._record_view(owner_id, entity_id, result)

    async def entity_artifact_by_name(
        self, owner_id: str, name: str, timeout_s: float | None = None
    ) -> EntityLookupResult:
        """Like entity_artifact, resolving the entity by case-insensitive name.

        An unknown name is generated and added to the catalog. If a concurrent
        caller adds it first, this caller's artifact overwrites theirs.
        """
        name = name.strip()
        if not name:
            raise ValueError("Entity name required")

        set_entity_context(owner_id, uuid.uuid4().hex, name)
        result: EntityLookupResult | None = None
        entity_id: str | None = None
        try:
            entity = await self._entities.find_entity_by_name(name)
            if entity is not None:
                entity_id = entity.entity_id
                result = await self._resolve_entity(owner_id, entity, timeout_s)
            else:
                result = await self._create_entity(owner_id, name, timeout_s)
                entity_id = result.entity.entity_id
            return result
        finally:
            if entity_id is not None:
                await self._record_view(owner_id, entity_id, result)

    async def _resolve_entity(
        self, owner_id: str, entity: EntityArtifact, timeout_s: float | None
    ) -> EntityLookupResult:
        if entity.artifact_payload is not None and self._freshness.is_valid(
            entity.artifact_updated_at
        ):
            logger.info("Entity artifact for %s is fresh", entity.entity_id)
            return EntityLookupResult(
                entity=entity,
                artifact_payload=self._overlay(entity),
                was_cache_hit=True,
            )

        logger.info(
            "Entity artifact for %s is %s, regenerating",
            entity.entity_id,
            "missing" if entity.artifact_payload is None else "stale",
        )
        payload = await self._generate_entity(owner_id, entity.name, timeout_s)
        refreshed = await self._entities.replace(
            entity.entity_id, payload, self._clock(), parse_derived_columns(payload)
        )
        return EntityLookupResult(
            entity=refreshed,
            artifact_payload=self._overlay(refreshed),
            was_cache_hit=False,
            was_regenerated=True,
        )

    async def _create_entity(
        self, owner_id: str, name: str, timeout_s: float | None
    ) -> EntityLookupResult:
        payload = await self._generate_entity(owner_id, name, timeout_s)
        generated_at = self._clock()
        columns = parse_derived_columns(payload)
        try:
            entity = await self._entities.create_entity(
                name, artifact_payload=payload, generated_at=generated_at, derived_columns=columns
            )
        except DuplicateEntityError:
            winner = await self._entities.find_entity_by_name(name)
            if winner is None:
                raise StoreUnavailable(
                    self._entities.backend_name,
                    "create_entity",
                    f"conflicting entity {name!r} vanished before re-read",
                ) from None
            logger.info("Entity %r created concurrently, replacing its artifact", name)
            entity = await self._entities.replace(
                winner.entity_id, payload, generated_at, columns
            )
        return EntityLookupResult(
            entity=entity,
            artifact_payload=self._overlay(entity),
            was_cache_hit=False,
            was_regenerated=True,
        )

    async def _generate_entity(
        self, owner_id: str, name: str, timeout_s: float | None
    ) -> dict[str, Any]:
        return await generate_with_timeout(
            self._gateway,
            GenerationRequest(kind="entity_breakdown", owner_id=owner_id, entity_name=name),
            self._timeout(timeout_s),
        )

    def _overlay(self, entity: EntityArtifact) -> dict[str, Any]:
        return overlay(entity.artifact_payload, entity.live_fields, self._live_field_paths)

    async def _record_view(
        self, owner_id: str, entity_id: str, result: EntityLookupResult | None
    ) -> None:
        try:
            await self._ledger.record_entity_view(
                owner_id=owner_id,
                entity_id=entity_id,
                was_cache_hit=result is not None and result.was_cache_hit,
                was_regenerated=result is not None and result.was_regenerated,
            )
        except Exception:
            logger.warning("Failed to record view of %s", entity_id, exc_info=True)

    def _timeout(self, timeout_s: float | None) -> float | None:
        return self._default_timeout_s if timeout_s is None else timeout_s
