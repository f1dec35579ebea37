# src/tracking/lookup_ledger.py — v1
"""Lookup ledger — records every orchestrated lookup for analytics and audit.

Entries are append-only; retention belongs to a separate process.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Callable

from analysiscache.cache.base_artifact_store import BaseLedgerStore
from analysiscache.cache.freshness import utc_now
from analysiscache.cache.models import InputModality
from analysiscache.tracking.models import EntityViewEntry, LookupLogEntry

logger = logging.getLogger(__name__)


class LookupLedger:
    """Builds ledger entries and appends them to a ledger store."""

    def __init__(
        self,
        store: BaseLedgerStore,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._clock = clock

    async def record(
        self,
        owner_id: str,
        modality: InputModality,
        input_summary: str,
        was_cache_hit: bool,
        artifact_id: str | None = None,
        resolved_display_name: str | None = None,
        barcode: str | None = None,
        product_url: str | None = None,
    ) -> LookupLogEntry:
        """Append one per-user lookup.

        Args:
            owner_id: User who made the lookup.
            modality: Input modality.
            input_summary: Bounded description of the input.
            was_cache_hit: True when no generation was performed.
            artifact_id: Resolved artifact, None when generation failed.
            resolved_display_name: Product name from the payload, if known.
            barcode: Explicit barcode supplied with the request.
            product_url: Explicit product URL supplied with the request.

        Returns:
            The appended LookupLogEntry.
        """
        entry = LookupLogEntry(
            entry_id=uuid.uuid4().hex,
            owner_id=owner_id,
            artifact_id=artifact_id,
            modality=modality,
            input_summary=input_summary,
            barcode=barcode,
            product_url=product_url,
            resolved_display_name=resolved_display_name,
            was_cache_hit=was_cache_hit,
            recorded_at=self._clock(),
        )
        await self._store.append_lookup(entry)
        logger.debug(
            "Recorded %s lookup for %s", "hit" if was_cache_hit else "miss", owner_id
        )
        return entry

    async def record_entity_view(
        self,
        owner_id: str,
        entity_id: str,
        was_cache_hit: bool,
        was_regenerated: bool = False,
    ) -> EntityViewEntry:
        """Append one shared entity read."""
        entry = EntityViewEntry(
            entry_id=uuid.uuid4().hex,
            owner_id=owner_id,
            entity_id=entity_id,
            was_cache_hit=was_cache_hit,
            was_regenerated=was_regenerated,
            recorded_at=self._clock(),
        )
        await self._store.append_entity_view(entry)
        return entry

    async def entries(self, owner_id: str | None = None) -> list[LookupLogEntry]:
        """All lookup entries, optionally for one owner."""
        return await self._store.list_lookups(owner_id)

    async def entity_views(self, entity_id: str | None = None) -> list[EntityViewEntry]:
        """All entity view entries, optionally for one entity."""
        return await self._store.list_entity_views(entity_id)

    async def export(self, path: Path) -> int:
        """Write all lookup entries to a JSON Lines file. Returns the count."""
        entries = await self.entries()
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            for entry in entries:
                f.write(json.dumps(entry.model_dump(mode="json")) + "\n")
        return len(entries)
