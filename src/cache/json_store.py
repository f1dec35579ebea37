# src/cache/json_store.py — v3
"""JSON file-based cache store (default CACHE_BACKEND=json).

Layout under CACHE_ROOT:
    records/<slot>.json        one per (owner_id, cache_key)
    record_ids/<id>            slot name of the record with that id
    entities/<entity_id>.json  shared entity rows
    entity_names/<slot>        entity_id claiming a case-folded name
    lookup_log.jsonl, entity_views.jsonl

New files are published with os.link from a temp file, which fails if the
target exists. That gives the same first-writer-wins guarantee as a unique
index. Updates go through os.replace; increments are read-then-write.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from analysiscache.cache.base_artifact_store import BaseCacheStore
from analysiscache.cache.errors import (
    DuplicateArtifactError,
    DuplicateEntityError,
    EntityNotFoundError,
    StoreUnavailable,
)
from analysiscache.cache.freshness import utc_now
from analysiscache.cache.models import (
    ArtifactRecord,
    CacheKey,
    DerivedColumns,
    EntityArtifact,
)
from analysiscache.tracking.models import EntityViewEntry, LookupLogEntry

logger = logging.getLogger(__name__)


class JsonCacheStore(BaseCacheStore):
    """File-based store using one JSON document per row."""

    backend_name = "json"

    def __init__(self, cache_root: Path | str) -> None:
        self._root = Path(cache_root).expanduser()
        self._records = self._root / "records"
        self._record_ids = self._root / "record_ids"
        self._entities = self._root / "entities"
        self._entity_names = self._root / "entity_names"
        self._lookup_log = self._root / "lookup_log.jsonl"
        self._entity_views = self._root / "entity_views.jsonl"
        try:
            for directory in (self._records, self._record_ids, self._entities, self._entity_names):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreUnavailable(self.backend_name, "open", str(e)) from e

    # --- Per-user records ---

    async def get_record(self, owner_id: str, cache_key: CacheKey) -> ArtifactRecord | None:
        return self._read_model(
            self._records / f"{_slot(owner_id, cache_key)}.json", ArtifactRecord, "get_record"
        )

    async def get_record_by_id(self, artifact_id: str) -> ArtifactRecord | None:
        slot = self._read_text(self._record_ids / _safe(artifact_id), "get_record_by_id")
        if slot is None:
            return None
        record = self._read_model(self._records / f"{slot}.json", ArtifactRecord, "get_record_by_id")
        if record is None or record.id != artifact_id:
            return None
        return record

    async def insert_record(self, record: ArtifactRecord) -> None:
        slot = _slot(record.owner_id, record.cache_key)
        try:
            self._write_text(self._record_ids / _safe(record.id), slot)
            created = self._publish(self._records / f"{slot}.json", record.model_dump_json(indent=2))
        except OSError as e:
            raise StoreUnavailable(self.backend_name, "insert_record", str(e)) from e
        if not created:
            (self._record_ids / _safe(record.id)).unlink(missing_ok=True)
            raise DuplicateArtifactError(record.owner_id, record.cache_key)

    async def increment_lookup(self, artifact_id: str) -> ArtifactRecord | None:
        record = await self.get_record_by_id(artifact_id)
        if record is None:
            return None
        updated = record.model_copy(
            update={"lookup_count": record.lookup_count + 1, "updated_at": utc_now()}
        )
        slot = _slot(record.owner_id, record.cache_key)
        try:
            self._write_text(self._records / f"{slot}.json", updated.model_dump_json(indent=2))
        except OSError as e:
            raise StoreUnavailable(self.backend_name, "increment_lookup", str(e)) from e
        return updated

    async def list_records(self, owner_id: str | None = None) -> list[ArtifactRecord]:
        records: list[ArtifactRecord] = []
        for path in sorted(self._records.glob("*.json")):
            record = self._read_model(path, ArtifactRecord, "list_records")
            if record is not None and (owner_id is None or record.owner_id == owner_id):
                records.append(record)
        return sorted(records, key=lambda r: r.created_at)

    # --- Shared entities ---

    async def get_entity(self, entity_id: str) -> EntityArtifact | None:
        return self._read_model(
            self._entities / f"{_safe(entity_id)}.json", EntityArtifact, "get_entity"
        )

    async def find_entity_by_name(self, name: str) -> EntityArtifact | None:
        entity_id = self._read_text(self._entity_names / _name_slot(name), "find_entity_by_name")
        if entity_id is None:
            return None
        return await self.get_entity(entity_id)

    async def create_entity(
        self,
        name: str,
        artifact_payload: dict[str, Any] | None = None,
        generated_at: datetime | None = None,
        derived_columns: DerivedColumns | None = None,
        live_fields: dict[str, Any] | None = None,
    ) -> EntityArtifact:
        entity = EntityArtifact(
            entity_id=uuid.uuid4().hex,
            name=name.strip(),
            artifact_payload=artifact_payload,
            artifact_updated_at=generated_at,
            derived_columns=derived_columns or DerivedColumns(),
            live_fields=live_fields or {},
        )
        entity_path = self._entities / f"{entity.entity_id}.json"
        try:
            # Row first, then the name claim: a claimed name always resolves.
            self._write_text(entity_path, entity.model_dump_json(indent=2))
            claimed = self._publish(self._entity_names / _name_slot(name), entity.entity_id)
        except OSError as e:
            raise StoreUnavailable(self.backend_name, "create_entity", str(e)) from e
        if not claimed:
            entity_path.unlink(missing_ok=True)
            raise DuplicateEntityError(name)
        return entity

    async def replace(
        self,
        entity_id: str,
        artifact_payload: dict[str, Any],
        generated_timestamp: datetime,
        derived_columns: DerivedColumns | None = None,
    ) -> EntityArtifact:
        current = await self.get_entity(entity_id)
        if current is None:
            raise EntityNotFoundError(entity_id)
        updated = current.model_copy(
            update={
                "artifact_payload": artifact_payload,
                "artifact_updated_at": generated_timestamp,
                "derived_columns": derived_columns or DerivedColumns(),
            }
        )
        try:
            self._write_text(
                self._entities / f"{_safe(entity_id)}.json", updated.model_dump_json(indent=2)
            )
        except OSError as e:
            raise StoreUnavailable(self.backend_name, "replace", str(e)) from e
        return updated

    async def set_live_fields(self, entity_id: str, live_fields: dict[str, Any]) -> None:
        current = await self.get_entity(entity_id)
        if current is None:
            raise EntityNotFoundError(entity_id)
        updated = current.model_copy(update={"live_fields": {**current.live_fields, **live_fields}})
        try:
            self._write_text(
                self._entities / f"{_safe(entity_id)}.json", updated.model_dump_json(indent=2)
            )
        except OSError as e:
            raise StoreUnavailable(self.backend_name, "set_live_fields", str(e)) from e

    # --- Ledger ---

    async def append_lookup(self, entry: LookupLogEntry) -> None:
        self._append_line(self._lookup_log, entry.model_dump_json(), "append_lookup")

    async def list_lookups(self, owner_id: str | None = None) -> list[LookupLogEntry]:
        entries = self._read_entries(self._lookup_log, LookupLogEntry, "list_lookups")
        if owner_id is not None:
            entries = [e for e in entries if e.owner_id == owner_id]
        return entries

    async def append_entity_view(self, entry: EntityViewEntry) -> None:
        self._append_line(self._entity_views, entry.model_dump_json(), "append_entity_view")

    async def list_entity_views(self, entity_id: str | None = None) -> list[EntityViewEntry]:
        views = self._read_entries(self._entity_views, EntityViewEntry, "list_entity_views")
        if entity_id is not None:
            views = [v for v in views if v.entity_id == entity_id]
        return views

    # --- File helpers ---

    def _read_model(self, path: Path, model: type, operation: str) -> Any:
        text = self._read_text(path, operation)
        if text is None:
            return None
        try:
            return model(**json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            # A corrupt row must not read as a miss and trigger regeneration.
            raise StoreUnavailable(self.backend_name, operation, f"corrupt {path.name}: {e}") from e

    def _read_text(self, path: Path, operation: str) -> str | None:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StoreUnavailable(self.backend_name, operation, str(e)) from e

    def _write_text(self, path: Path, text: str) -> None:
        """Atomically write ``text`` to ``path``, overwriting it."""
        tmp = self._temp_file(path.parent, text)
        os.replace(tmp, path)

    def _publish(self, path: Path, text: str) -> bool:
        """Create ``path`` with ``text`` unless it exists. Returns False if it did."""
        tmp = self._temp_file(path.parent, text)
        try:
            os.link(tmp, path)
            return True
        except FileExistsError:
            return False
        finally:
            os.unlink(tmp)

    @staticmethod
    def _temp_file(directory: Path, text: str) -> str:
        fd, tmp = tempfile.mkstemp(dir=directory, prefix=".tmp-")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        return tmp

    def _append_line(self, path: Path, line: str, operation: str) -> None:
        try:
            with path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise StoreUnavailable(self.backend_name, operation, str(e)) from e

    def _read_lines(self, path: Path, operation: str) -> list[dict[str, Any]]:
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise StoreUnavailable(self.backend_name, operation, str(e)) from e
        rows: list[dict[str, Any]] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping unreadable line in %s", path.name)
        return rows

    def _read_entries(self, path: Path, model: type, operation: str) -> list[Any]:
        try:
            return [model(**data) for data in self._read_lines(path, operation)]
        except (TypeError, ValidationError) as e:
            raise StoreUnavailable(self.backend_name, operation, f"corrupt {path.name}: {e}") from e


def _slot(owner_id: str, cache_key: CacheKey) -> str:
    """Filesystem-safe name for one (owner_id, cache_key) pair."""
    return hashlib.sha256(f"{owner_id}\x00{cache_key}".encode("utf-8")).hexdigest()


def _name_slot(name: str) -> str:
    return hashlib.sha256(name.strip().casefold().encode("utf-8")).hexdigest()


def _safe(key: str) -> str:
    return key.replace("/", "_").replace("\\", "_")
