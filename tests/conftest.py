# tests/conftest.py — v2
"""Shared test fixtures for all unit and integration tests.

Provides a scripted generation gateway, a controllable clock, and
file-backed stores rooted in tmp_path. No external services.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from analysiscache.cache.json_store import JsonCacheStore
from analysiscache.cache.key_deriver import KeyDeriver
from analysiscache.cache.orchestrator import CacheOrchestrator
from analysiscache.cache.sqlite_store import SqliteCacheStore
from analysiscache.cache.freshness import FreshnessPolicy
from analysiscache.generation.base_gateway import BaseGenerationGateway
from analysiscache.generation.models import GenerationRequest
from analysiscache.logging.context import clear_context
from analysiscache.tracking.lookup_ledger import LookupLedger


# === Test doubles ===


class ScriptedGateway(BaseGenerationGateway):
    """Gateway that returns canned payloads and records every request."""

    def __init__(
        self,
        payload: dict[str, Any] | None = None,
        error: Exception | None = None,
        delay_s: float = 0.0,
    ) -> None:
        self.payload = payload if payload is not None else {"productName": "Creatine Monohydrate"}
        self.error = error
        self.delay_s = delay_s
        self.requests: list[GenerationRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def generate(self, request: GenerationRequest) -> dict[str, Any]:
        self.requests.append(request)
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return dict(self.payload)


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


# === FIXTURES ===


@pytest.fixture(autouse=True)
def _reset_log_context():
    clear_context()
    yield
    clear_context()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gateway() -> ScriptedGateway:
    return ScriptedGateway()


@pytest.fixture
def sqlite_store(tmp_path: Path):
    store = SqliteCacheStore(db_path=tmp_path / "cache.db")
    yield store
    store.close()


@pytest.fixture
def json_store(tmp_path: Path) -> JsonCacheStore:
    return JsonCacheStore(cache_root=tmp_path / "json_cache")


@pytest.fixture
def orchestrator(sqlite_store, gateway, clock) -> CacheOrchestrator:
    return CacheOrchestrator(
        artifact_store=sqlite_store,
        entity_store=sqlite_store,
        ledger=LookupLedger(sqlite_store, clock=clock),
        gateway=gateway,
        key_deriver=KeyDeriver(),
        freshness=FreshnessPolicy(ttl=timedelta(days=30), clock=clock),
        live_field_paths={"risk_score": "risk_score", "curator_notes": "notes.curator"},
        default_timeout_s=5.0,
        clock=clock,
    )
