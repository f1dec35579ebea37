# tests/integration/conftest.py — v8
"""Shared fixtures for integration tests.

JSON and SQLite backends need nothing external. Redis tests run only when
REDIS_URL points at a reachable server and are skipped otherwise.
"""

from __future__ import annotations

import logging
import os
import uuid

import pytest

logger = logging.getLogger(__name__)


# ── Pytest markers ──────────────────────────────────────────────

def pytest_configure(config):
    config.addinivalue_line("markers", "redis: marks tests requiring a Redis server")


def _redis_available(url: str | None) -> bool:
    """Check if the Redis server at ``url`` answers PING."""
    if not url:
        return False
    try:
        import redis
        return bool(redis.Redis.from_url(url, socket_connect_timeout=1).ping())
    except Exception as e:
        logger.debug("Redis not reachable at %s: %s", url, e)
        return False


@pytest.fixture
def redis_store():
    """RedisCacheStore under a unique key prefix, cleaned up after the test."""
    url = os.environ.get("REDIS_URL")
    if not _redis_available(url):
        pytest.skip("Redis server not available (set REDIS_URL)")

    from analysiscache.cache.redis_store import RedisCacheStore

    prefix = f"test-{uuid.uuid4().hex[:8]}:"
    store = RedisCacheStore(redis_url=url, prefix=prefix)
    yield store
    keys = list(store._client.scan_iter(match=f"{prefix}*"))
    if keys:
        store._client.delete(*keys)
    store.close()
