# src/cache/base_artifact_store.py — v2
"""Abstract store interfaces for both cache shapes and the lookup ledger.

The per-user cache (get / put-or-increment), the shared entity cache
(get / replace) and the ledger are separate interfaces. A backend usually
implements all three against the same storage.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from analysiscache.cache.errors import DuplicateArtifactError, RaceResolutionFailure
from analysiscache.cache.freshness import utc_now
from analysiscache.cache.models import (
    ArtifactRecord,
    CacheKey,
    DerivedColumns,
    EntityArtifact,
    InputModality,
)
from analysiscache.tracking.models import EntityViewEntry, LookupLogEntry

logger = logging.getLogger(__name__)


class BaseArtifactStore(ABC):
    """Per-user content-addressable artifact storage."""

    backend_name: str = "unknown"

    @abstractmethod
    async def get_record(self, owner_id: str, cache_key: CacheKey) -> ArtifactRecord | None:
        """Retrieve the record for (owner_id, cache_key), or None on miss."""

    @abstractmethod
    async def get_record_by_id(self, artifact_id: str) -> ArtifactRecord | None:
        """Retrieve a record by its store-assigned id."""

    @abstractmethod
    async def insert_record(self, record: ArtifactRecord) -> None:
        """Insert a new record.

        Raises:
            DuplicateArtifactError: (owner_id, cache_key) already exists.
        """

    @abstractmethod
    async def increment_lookup(self, artifact_id: str) -> ArtifactRecord | None:
        """Add one to lookup_count and touch updated_at. None if the id is unknown."""

    @abstractmethod
    async def list_records(self, owner_id: str | None = None) -> list[ArtifactRecord]:
        """List stored records, optionally for a single owner."""

    async def put_or_increment(
        self,
        owner_id: str,
        cache_key: CacheKey,
        modality: InputModality,
        input_summary: str,
        artifact_payload: dict[str, Any],
        display_name: str | None = None,
        barcode: str | None = None,
        product_url: str | None = None,
    ) -> ArtifactRecord:
        """Insert a fresh record, or count a hit on the one a concurrent caller created.

        Never surfaces a uniqueness violation and never leaves two rows for
        the same (owner_id, cache_key).

        Raises:
            RaceResolutionFailure: The conflicting row could not be re-read.
            StoreUnavailable: The backend failed.
        """
        now = utc_now()
        record = ArtifactRecord(
            id=uuid.uuid4().hex,
            owner_id=owner_id,
            cache_key=cache_key,
            modality=modality,
            input_summary=input_summary,
            barcode=barcode,
            product_url=product_url,
            artifact_payload=artifact_payload,
            derived_display_name=display_name,
            lookup_count=1,
            created_at=now,
            updated_at=now,
        )
        try:
            await self.insert_record(record)
            return record
        except DuplicateArtifactError:
            logger.info(
                "Insert conflict on %s, counting against existing record", cache_key
            )

        existing = await self.get_record(owner_id, cache_key)
        if existing is None:
            raise RaceResolutionFailure(self.backend_name, owner_id, cache_key)
        updated = await self.increment_lookup(existing.id)
        if updated is None:
            raise RaceResolutionFailure(self.backend_name, owner_id, cache_key)
        return updated

    async def increment_hit(self, artifact_id: str) -> None:
        """Count a plain cache hit.

        Best-effort popularity signal: backends without an atomic increment
        may lose updates under concurrent hits on the same record.
        """
        if await self.increment_lookup(artifact_id) is None:
            logger.warning("Hit on unknown artifact %s not counted", artifact_id)


class BaseEntityStore(ABC):
    """Shared, entity-keyed artifact storage."""

    backend_name: str = "unknown"

    @abstractmethod
    async def get_entity(self, entity_id: str) -> EntityArtifact | None:
        """Retrieve an entity with its cached artifact and live fields."""

    @abstractmethod
    async def find_entity_by_name(self, name: str) -> EntityArtifact | None:
        """Case-insensitive lookup by entity name."""

    @abstractmethod
    async def create_entity(
        self,
        name: str,
        artifact_payload: dict[str, Any] | None = None,
        generated_at: datetime | None = None,
        derived_columns: DerivedColumns | None = None,
        live_fields: dict[str, Any] | None = None,
    ) -> EntityArtifact:
        """Create a catalog entity.

        Raises:
            DuplicateEntityError: The name is already taken (case-insensitive).
        """

    @abstractmethod
    async def replace(
        self,
        entity_id: str,
        artifact_payload: dict[str, Any],
        generated_timestamp: datetime,
        derived_columns: DerivedColumns | None = None,
    ) -> EntityArtifact:
        """Overwrite the cached artifact wholesale (last writer wins).

        Live fields are left untouched.

        Raises:
            EntityNotFoundError: No entity with this id.
        """

    @abstractmethod
    async def set_live_fields(self, entity_id: str, live_fields: dict[str, Any]) -> None:
        """Merge authoritative live fields into the entity row (catalog writer).

        Raises:
            EntityNotFoundError: No entity with this id.
        """


class BaseLedgerStore(ABC):
    """Append-only persistence for lookup and entity view entries."""

    @abstractmethod
    async def append_lookup(self, entry: LookupLogEntry) -> None:
        """Append one lookup entry."""

    @abstractmethod
    async def list_lookups(self, owner_id: str | None = None) -> list[LookupLogEntry]:
        """List lookup entries in insertion order."""

    @abstractmethod
    async def append_entity_view(self, entry: EntityViewEntry) -> None:
        """Append one entity view entry."""

    @abstractmethod
    async def list_entity_views(self, entity_id: str | None = None) -> list[EntityViewEntry]:
        """List entity view entries in insertion order."""


class BaseCacheStore(BaseArtifactStore, BaseEntityStore, BaseLedgerStore):
    """A backend that serves both cache shapes and the ledger."""

    def close(self) -> None:
        """Release backend resources."""
