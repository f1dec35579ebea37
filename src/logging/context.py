# src/logging/context.py — v1
"""Contextual logging support — attach owner_id, modality, entity_id, request_id.

Set once per orchestrated lookup so every log line emitted below the
orchestrator carries the same identifiers.
"""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

_owner_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "owner_id", default=None
)
_modality: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "modality", default=None
)
_entity_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "entity_id", default=None
)
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    owner_id: str | None = None
    modality: str | None = None
    entity_id: str | None = None
    request_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        owner_id=_owner_id.get(),
        modality=_modality.get(),
        entity_id=_entity_id.get(),
        request_id=_request_id.get(),
    )


def set_lookup_context(
    owner_id: str, request_id: str, modality: str | None = None
) -> None:
    """Set per-user lookup context (called once per orchestrated lookup)."""
    _owner_id.set(owner_id)
    _request_id.set(request_id)
    _modality.set(modality)
    _entity_id.set(None)


def set_entity_context(owner_id: str, request_id: str, entity_id: str) -> None:
    """Set shared entity lookup context."""
    _owner_id.set(owner_id)
    _request_id.set(request_id)
    _modality.set(None)
    _entity_id.set(entity_id)


def clear_context() -> None:
    """Reset all context variables."""
    _owner_id.set(None)
    _modality.set(None)
    _entity_id.set(None)
    _request_id.set(None)
