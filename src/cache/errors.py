# src/cache/errors.py — v2
"""Typed failures raised by the cache subsystem.

Everything the orchestrator lets escape to its caller derives from
CacheError. Duplicate* errors are backend signals consumed by the
insert-conflict protocols.
"""

from __future__ import annotations

from typing import Literal


class CacheError(Exception):
    """Base class for cache subsystem failures."""


class GenerationFailure(CacheError):
    """The generation gateway failed or timed out. Nothing was persisted."""

    def __init__(
        self,
        reason: Literal["timeout", "error"],
        detail: str,
        timeout_s: float | None = None,
    ) -> None:
        self.reason = reason
        self.detail = detail
        self.timeout_s = timeout_s
        if reason == "timeout" and timeout_s is not None:
            message = f"Generation timed out after {timeout_s:.1f}s"
        elif reason == "timeout":
            message = "Generation timed out"
        else:
            message = f"Generation failed: {detail}"
        super().__init__(message)


class StoreUnavailable(CacheError):
    """Durable storage could not be reached for a read or write."""

    def __init__(self, backend: str, operation: str, detail: str) -> None:
        self.backend = backend
        self.operation = operation
        super().__init__(f"{backend} store unavailable during {operation}: {detail}")


class RaceResolutionFailure(StoreUnavailable):
    """Insert conflicted but the re-read found no row for the same key."""

    def __init__(self, backend: str, owner_id: str, cache_key: str) -> None:
        self.owner_id = owner_id
        self.cache_key = cache_key
        super().__init__(
            backend,
            "put_or_increment",
            f"conflicting row for {cache_key!r} vanished before re-read",
        )


class DuplicateArtifactError(CacheError):
    """(owner_id, cache_key) already exists."""

    def __init__(self, owner_id: str, cache_key: str) -> None:
        self.owner_id = owner_id
        self.cache_key = cache_key
        super().__init__(f"Artifact already exists for {cache_key!r}")


class DuplicateEntityError(CacheError):
    """An entity with the same (case-insensitive) name already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Entity already exists: {name!r}")


class EntityNotFoundError(CacheError, KeyError):
    """No catalog entity with the requested identifier."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Entity not found: {entity_id!r}")

    def __str__(self) -> str:
        return f"Entity not found: {self.entity_id!r}"
