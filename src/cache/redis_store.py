# src/cache/redis_store.py — v3
"""Redis-based cache store (CACHE_BACKEND=redis).

Requires 'redis' package: pip install redis.
Suitable for distributed/multi-instance deployments.

Record bodies are claimed with SET NX, which plays the role of the unique
(owner_id, cache_key) index. lookup_count and updated_at live in a side hash
and move with HINCRBY, so increments are atomic on this backend.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime
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


class RedisCacheStore(BaseCacheStore):
    """Redis-backed store for distributed deployments."""

    backend_name = "redis"

    def __init__(self, redis_url: str, prefix: str = "analysiscache:") -> None:
        try:
            import redis
        except ImportError as e:
            raise ImportError(
                "redis package required: pip install redis"
            ) from e

        self._client = redis.Redis.from_url(redis_url, decode_responses=True)
        self._prefix = prefix
        self._errors: tuple[type[BaseException], ...] = (redis.exceptions.RedisError,)

    # --- Keys ---

    def _record_key(self, owner_id: str, cache_key: CacheKey) -> str:
        slot = hashlib.sha256(f"{owner_id}\x00{cache_key}".encode("utf-8")).hexdigest()
        return f"{self._prefix}record:{slot}"

    def _record_id_key(self, artifact_id: str) -> str:
        return f"{self._prefix}record_id:{artifact_id}"

    def _record_meta_key(self, artifact_id: str) -> str:
        return f"{self._prefix}record_meta:{artifact_id}"

    def _owner_index_key(self, owner_id: str) -> str:
        return f"{self._prefix}owner_records:{owner_id}"

    def _entity_key(self, entity_id: str) -> str:
        return f"{self._prefix}entity:{entity_id}"

    def _entity_live_key(self, entity_id: str) -> str:
        return f"{self._prefix}entity_live:{entity_id}"

    def _entity_name_key(self, name: str) -> str:
        return f"{self._prefix}entity_name:{name.strip().casefold()}"

    # --- Per-user records ---

    async def get_record(self, owner_id: str, cache_key: CacheKey) -> ArtifactRecord | None:
        with self._guard("get_record"):
            body = self._client.get(self._record_key(owner_id, cache_key))
            if body is None:
                return None
            return self._hydrate_record(body, "get_record")

    async def get_record_by_id(self, artifact_id: str) -> ArtifactRecord | None:
        with self._guard("get_record_by_id"):
            record_key = self._client.get(self._record_id_key(artifact_id))
            if record_key is None:
                return None
            body = self._client.get(record_key)
            if body is None:
                return None
            record = self._hydrate_record(body, "get_record_by_id")
        return record if record.id == artifact_id else None

    async def insert_record(self, record: ArtifactRecord) -> None:
        record_key = self._record_key(record.owner_id, record.cache_key)
        with self._guard("insert_record"):
            # Index first so a racing loser can always resolve the winner's id.
            self._client.set(self._record_id_key(record.id), record_key)
            claimed = self._client.set(record_key, record.model_dump_json(), nx=True)
            if not claimed:
                self._client.delete(self._record_id_key(record.id))
                raise DuplicateArtifactError(record.owner_id, record.cache_key)
            self._client.hincrby(self._record_meta_key(record.id), "lookup_count", record.lookup_count)
            self._client.hset(
                self._record_meta_key(record.id), "updated_at", record.updated_at.isoformat()
            )
            self._client.sadd(self._owner_index_key(record.owner_id), record_key)

    async def increment_lookup(self, artifact_id: str) -> ArtifactRecord | None:
        with self._guard("increment_lookup"):
            if self._client.get(self._record_id_key(artifact_id)) is None:
                return None
            meta_key = self._record_meta_key(artifact_id)
            self._client.hincrby(meta_key, "lookup_count", 1)
            self._client.hset(meta_key, "updated_at", utc_now().isoformat())
        return await self.get_record_by_id(artifact_id)

    async def list_records(self, owner_id: str | None = None) -> list[ArtifactRecord]:
        with self._guard("list_records"):
            if owner_id is not None:
                keys = list(self._client.smembers(self._owner_index_key(owner_id)))
            else:
                keys = list(self._client.scan_iter(match=f"{self._prefix}record:*"))
            records = []
            for key in keys:
                body = self._client.get(key)
                if body is not None:
                    records.append(self._hydrate_record(body, "list_records"))
        return sorted(records, key=lambda r: r.created_at)

    def _hydrate_record(self, body: str, operation: str) -> ArtifactRecord:
        with self._decoding(operation, "record"):
            record = ArtifactRecord(**json.loads(body))
        meta = self._client.hgetall(self._record_meta_key(record.id))
        update: dict[str, Any] = {}
        with self._decoding(operation, "record counters"):
            if meta.get("lookup_count"):
                update["lookup_count"] = max(1, int(meta["lookup_count"]))
            if meta.get("updated_at"):
                update["updated_at"] = datetime.fromisoformat(meta["updated_at"])
        return record.model_copy(update=update) if update else record

    # --- Shared entities ---

    async def get_entity(self, entity_id: str) -> EntityArtifact | None:
        with self._guard("get_entity"):
            row = self._client.hgetall(self._entity_key(entity_id))
            if not row:
                return None
            live = self._client.hgetall(self._entity_live_key(entity_id))
        payload = row.get("artifact_payload")
        with self._decoding("get_entity", "entity"):
            return EntityArtifact(
                entity_id=entity_id,
                name=row["name"],
                artifact_payload=json.loads(payload) if payload else None,
                artifact_updated_at=row.get("artifact_updated_at") or None,
                derived_columns=DerivedColumns(**json.loads(row.get("derived_columns") or "{}")),
                live_fields={k: json.loads(v) for k, v in live.items()},
            )

    async def find_entity_by_name(self, name: str) -> EntityArtifact | None:
        with self._guard("find_entity_by_name"):
            entity_id = self._client.get(self._entity_name_key(name))
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
        entity_id = uuid.uuid4().hex
        row = {
            "name": name.strip(),
            "artifact_payload": "" if artifact_payload is None else dump_json_value(artifact_payload),
            "artifact_updated_at": "" if generated_at is None else generated_at.isoformat(),
            "derived_columns": (derived_columns or DerivedColumns()).model_dump_json(),
        }
        with self._guard("create_entity"):
            self._client.hset(self._entity_key(entity_id), mapping=row)
            if live_fields:
                self._client.hset(
                    self._entity_live_key(entity_id),
                    mapping={k: dump_json_value(v) for k, v in live_fields.items()},
                )
            if not self._client.set(self._entity_name_key(name), entity_id, nx=True):
                self._client.delete(self._entity_key(entity_id), self._entity_live_key(entity_id))
                raise DuplicateEntityError(name)
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
            if not self._client.exists(self._entity_key(entity_id)):
                raise EntityNotFoundError(entity_id)
            self._client.hset(
                self._entity_key(entity_id),
                mapping={
                    "artifact_payload": dump_json_value(artifact_payload),
                    "artifact_updated_at": generated_timestamp.isoformat(),
                    "derived_columns": (derived_columns or DerivedColumns()).model_dump_json(),
                },
            )
        entity = await self.get_entity(entity_id)
        if entity is None:
            raise EntityNotFoundError(entity_id)
        return entity

    async def set_live_fields(self, entity_id: str, live_fields: dict[str, Any]) -> None:
        if not live_fields:
            return
        with self._guard("set_live_fields"):
            if not self._client.exists(self._entity_key(entity_id)):
                raise EntityNotFoundError(entity_id)
            self._client.hset(
                self._entity_live_key(entity_id),
                mapping={k: dump_json_value(v) for k, v in live_fields.items()},
            )

    # --- Ledger ---

    async def append_lookup(self, entry: LookupLogEntry) -> None:
        with self._guard("append_lookup"):
            self._client.rpush(f"{self._prefix}lookup_log", entry.model_dump_json())

    async def list_lookups(self, owner_id: str | None = None) -> list[LookupLogEntry]:
        with self._guard("list_lookups"):
            raw = self._client.lrange(f"{self._prefix}lookup_log", 0, -1)
        with self._decoding("list_lookups", "ledger entry"):
            entries = [LookupLogEntry(**json.loads(item)) for item in raw]
        if owner_id is not None:
            entries = [e for e in entries if e.owner_id == owner_id]
        return entries

    async def append_entity_view(self, entry: EntityViewEntry) -> None:
        with self._guard("append_entity_view"):
            self._client.rpush(f"{self._prefix}entity_views", entry.model_dump_json())

    async def list_entity_views(self, entity_id: str | None = None) -> list[EntityViewEntry]:
        with self._guard("list_entity_views"):
            raw = self._client.lrange(f"{self._prefix}entity_views", 0, -1)
        with self._decoding("list_entity_views", "view entry"):
            views = [EntityViewEntry(**json.loads(item)) for item in raw]
        if entity_id is not None:
            views = [v for v in views if v.entity_id == entity_id]
        return views

    def close(self) -> None:
        """Close the Redis connection."""
        self._client.close()

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate client errors into StoreUnavailable."""
        try:
            yield
        except self._errors as e:
            logger.error("Redis %s failed: %s", operation, e)
            raise StoreUnavailable(self.backend_name, operation, str(e)) from e

    @contextmanager
    def _decoding(self, operation: str, what: str) -> Iterator[None]:
        """Report undecodable stored data as StoreUnavailable, never as a miss."""
        try:
            yield
        except (ValueError, TypeError, KeyError) as e:
            logger.error("Redis %s found a corrupt %s: %s", operation, what, e)
            raise StoreUnavailable(
                self.backend_name, operation, f"corrupt {what}: {e}"
            ) from e
