# src/cache/sqlite_store.py — v3
"""SQLite-based cache store (CACHE_BACKEND=sqlite).

Uses stdlib sqlite3 — no external dependency. The UNIQUE(owner_id, cache_key)
constraint is what keeps concurrent misses down to one row; lookup_count is
bumped with a single UPDATE so increments are atomic on this backend.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

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
    dump_json_value,
)
from analysiscache.tracking.models import EntityViewEntry, LookupLogEntry

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS artifact_records (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    cache_key TEXT NOT NULL,
    modality TEXT NOT NULL,
    input_summary TEXT NOT NULL,
    barcode TEXT,
    product_url TEXT,
    artifact_payload TEXT NOT NULL,
    derived_display_name TEXT,
    lookup_count INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (owner_id, cache_key)
);
CREATE TABLE IF NOT EXISTS entity_artifacts (
    entity_id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL UNIQUE,
    artifact_payload TEXT,
    artifact_updated_at TEXT,
    derived_columns TEXT NOT NULL DEFAULT '{}',
    live_fields TEXT NOT NULL DEFAULT '{}'
);
CREATE TABLE IF NOT EXISTS lookup_log (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id TEXT NOT NULL UNIQUE,
    owner_id TEXT NOT NULL,
    artifact_id TEXT,
    modality TEXT NOT NULL,
    input_summary TEXT NOT NULL,
    barcode TEXT,
    product_url TEXT,
    resolved_display_name TEXT,
    was_cache_hit INTEGER NOT NULL,
    recorded_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_lookup_log_owner ON lookup_log(owner_id);
CREATE TABLE IF NOT EXISTS entity_views (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id TEXT NOT NULL UNIQUE,
    owner_id TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    was_cache_hit INTEGER NOT NULL,
    was_regenerated INTEGER NOT NULL,
    recorded_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_entity_views_entity ON entity_views(entity_id);
"""

_RECORD_COLUMNS = (
    "id, owner_id, cache_key, modality, input_summary, barcode, product_url, "
    "artifact_payload, derived_display_name, lookup_count, created_at, updated_at"
)


class SqliteCacheStore(BaseCacheStore):
    """SQLite-backed store for single-host deployments."""

    backend_name = "sqlite"

    def __init__(self, db_path: Path | str, timeout_s: float = 5.0) -> None:
        self._db_path = Path(db_path).expanduser()
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), timeout=timeout_s)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA)
        except (sqlite3.Error, OSError) as e:
            raise StoreUnavailable(self.backend_name, "open", str(e)) from e

    # --- Per-user records ---

    async def get_record(self, owner_id: str, cache_key: CacheKey) -> ArtifactRecord | None:
        with self._guard("get_record"):
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM artifact_records "
                "WHERE owner_id = ? AND cache_key = ?",
                (owner_id, cache_key),
            ).fetchone()
        return None if row is None else _row_to_record(row)

    async def get_record_by_id(self, artifact_id: str) -> ArtifactRecord | None:
        with self._guard("get_record_by_id"):
            row = self._conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM artifact_records WHERE id = ?",
                (artifact_id,),
            ).fetchone()
        return None if row is None else _row_to_record(row)

    async def insert_record(self, record: ArtifactRecord) -> None:
        with self._guard("insert_record"):
            try:
                with self._conn:
                    self._conn.execute(
                        f"INSERT INTO artifact_records ({_RECORD_COLUMNS}) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                        (
                            record.id,
                            record.owner_id,
                            record.cache_key,
                            record.modality.value,
                            record.input_summary,
                            record.barcode,
                            record.product_url,
                            dump_json_value(record.artifact_payload),
                            record.derived_display_name,
                            record.lookup_count,
                            record.created_at.isoformat(),
                            record.updated_at.isoformat(),
                        ),
                    )
            except sqlite3.IntegrityError as e:
                raise DuplicateArtifactError(record.owner_id, record.cache_key) from e

    async def increment_lookup(self, artifact_id: str) -> ArtifactRecord | None:
        with self._guard("increment_lookup"):
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE artifact_records "
                    "SET lookup_count = lookup_count + 1, updated_at = ? WHERE id = ?",
                    (utc_now().isoformat(), artifact_id),
                )
        if cursor.rowcount == 0:
            return None
        return await self.get_record_by_id(artifact_id)

    async def list_records(self, owner_id: str | None = None) -> list[ArtifactRecord]:
        query = f"SELECT {_RECORD_COLUMNS} FROM artifact_records"
        params: tuple[Any, ...] = ()
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params = (owner_id,)
        with self._guard("list_records"):
            rows = self._conn.execute(query + " ORDER BY created_at", params).fetchall()
        return [_row_to_record(row) for row in rows]

    # --- Shared entities ---

    async def get_entity(self, entity_id: str) -> EntityArtifact | None:
        with self._guard("get_entity"):
            row = self._conn.execute(
                "SELECT * FROM entity_artifacts WHERE entity_id = ?", (entity_id,)
            ).fetchone()
        return None if row is None else _row_to_entity(row)

    async def find_entity_by_name(self, name: str) -> EntityArtifact | None:
        with self._guard("find_entity_by_name"):
            row = self._conn.execute(
                "SELECT * FROM entity_artifacts WHERE name_key = ?", (_name_key(name),)
            ).fetchone()
        return None if row is None else _row_to_entity(row)

    async def create_entity(
        self,
        name: str,
        artifact_payload: dict[str, Any] | None = None,
        generated_at: datetime | None = None,
        derived_columns: DerivedColumns | None = None,
        live_fields: dict[str, Any] | None = None,
    ) -> EntityArtifact:
        entity_id = uuid.uuid4().hex
        with self._guard("create_entity"):
            try:
                with self._conn:
                    self._conn.execute(
                        "INSERT INTO entity_artifacts (entity_id, name, name_key, "
                        "artifact_payload, artifact_updated_at, derived_columns, live_fields) "
                        "VALUES (?, ?, ?, ?, ?, ?, ?)",
                        (
                            entity_id,
                            name.strip(),
                            _name_key(name),
                            (
                                None if artifact_payload is None
                                else dump_json_value(artifact_payload)
                            ),
                            None if generated_at is None else generated_at.isoformat(),
                            (derived_columns or DerivedColumns()).model_dump_json(),
                            dump_json_value(live_fields or {}),
                        ),
                    )
            except sqlite3.IntegrityError as e:
                raise DuplicateEntityError(name) from e
        entity = await self.get_entity(entity_id)
        if entity is None:
            raise StoreUnavailable(self.backend_name, "create_entity", "row vanished after insert")
        return entity

    async def replace(
        self,
        entity_id: str,
        artifact_payload: dict[str, Any],
        generated_timestamp: datetime,
        derived_columns: DerivedColumns | None = None,
    ) -> EntityArtifact:
        with self._guard("replace"):
            with self._conn:
                cursor = self._conn.execute(
                    "UPDATE entity_artifacts SET artifact_payload = ?, "
                    "artifact_updated_at = ?, derived_columns = ? WHERE entity_id = ?",
                    (
                        dump_json_value(artifact_payload),
                        generated_timestamp.isoformat(),
                        (derived_columns or DerivedColumns()).model_dump_json(),
                        entity_id,
                    ),
                )
        if cursor.rowcount == 0:
            raise EntityNotFoundError(entity_id)
        entity = await self.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    async def set_live_fields(self, entity_id: str, live_fields: dict[str, Any]) -> None:
        with self._guard("set_live_fields"):
            with self._conn:
                row = self._conn.execute(
                    "SELECT live_fields FROM entity_artifacts WHERE entity_id = ?",
                    (entity_id,),
                ).fetchone()
                if row is None:
                    raise EntityNotFoundError(entity_id)
                merged = {**json.loads(row["live_fields"]), **live_fields}
                self._conn.execute(
                    "UPDATE entity_artifacts SET live_fields = ? WHERE entity_id = ?",
                    (dump_json_value(merged), entity_id),
                )

    # --- Ledger ---

    async def append_lookup(self, entry: LookupLogEntry) -> None:
        with self._guard("append_lookup"):
            with self._conn:
                self._conn.execute(
                    "INSERT INTO lookup_log (entry_id, owner_id, artifact_id, modality, "
                    "input_summary, barcode, product_url, resolved_display_name, "
                    "was_cache_hit, recorded_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        entry.entry_id,
                        entry.owner_id,
                        entry.artifact_id,
                        entry.modality.value,
                        entry.input_summary,
                        entry.barcode,
                        entry.product_url,
                        entry.resolved_display_name,
                        int(entry.was_cache_hit),
                        entry.recorded_at.isoformat(),
                    ),
                )

    async def list_lookups(self, owner_id: str | None = None) -> list[LookupLogEntry]:
        query = "SELECT * FROM lookup_log"
        params: tuple[Any, ...] = ()
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params = (owner_id,)
        with self._guard("list_lookups"):
            rows = self._conn.execute(query + " ORDER BY seq", params).fetchall()
        entries = []
        for row in rows:
            data = dict(row)
            data.pop("seq")
            data["was_cache_hit"] = bool(data["was_cache_hit"])
            entries.append(LookupLogEntry(**data))
        return entries

    async def append_entity_view(self, entry: EntityViewEntry) -> None:
        with self._guard("append_entity_view"):
            with self._conn:
                self._conn.execute(
                    "INSERT INTO entity_views (entry_id, owner_id, entity_id, "
                    "was_cache_hit, was_regenerated, recorded_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (
                        entry.entry_id,
                        entry.owner_id,
                        entry.entity_id,
                        int(entry.was_cache_hit),
                        int(entry.was_regenerated),
                        entry.recorded_at.isoformat(),
                    ),
                )

    async def list_entity_views(self, entity_id: str | None = None) -> list[EntityViewEntry]:
        query = "SELECT * FROM entity_views"
        params: tuple[Any, ...] = ()
        if entity_id is not None:
            query += " WHERE entity_id = ?"
            params = (entity_id,)
        with self._guard("list_entity_views"):
            rows = self._conn.execute(query + " ORDER BY seq", params).fetchall()
        views = []
        for row in rows:
            data = dict(row)
            data.pop("seq")
            data["was_cache_hit"] = bool(data["was_cache_hit"])
            data["was_regenerated"] = bool(data["was_regenerated"])
            views.append(EntityViewEntry(**data))
        return views

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate sqlite3 failures into StoreUnavailable."""
        try:
            yield
        except sqlite3.Error as e:
            logger.error("SQLite %s failed: %s", operation, e)
            raise StoreUnavailable(self.backend_name, operation, str(e)) from e


def _name_key(name: str) -> str:
    return name.strip().casefold()


def _row_to_record(row: sqlite3.Row) -> ArtifactRecord:
    data = dict(row)
    data["artifact_payload"] = json.loads(data["artifact_payload"])
    return ArtifactRecord(**data)


def _row_to_entity(row: sqlite3.Row) -> EntityArtifact:
    data = dict(row)
    payload = data["artifact_payload"]
    return EntityArtifact(
        entity_id=data["entity_id"],
        name=data["name"],
        artifact_payload=None if payload is None else json.loads(payload),
        artifact_updated_at=data["artifact_updated_at"],
        derived_columns=DerivedColumns(**json.loads(data["derived_columns"])),
        live_fields=json.loads(data["live_fields"]),
    )
