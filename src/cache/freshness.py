# src/cache/freshness.py — v1
"""TTL freshness check for shared entity artifacts.

Per-user artifacts never expire; only the shared entity cache consults this.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

DEFAULT_ENTITY_TTL = timedelta(days=30)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_valid(
    last_updated_at: datetime | None,
    ttl: timedelta,
    now: datetime | None = None,
) -> bool:
    """True iff ``now - last_updated_at < ttl``.

    An artifact exactly ``ttl`` old is stale. A missing timestamp is stale.
    Naive datetimes are read as UTC.
    """
    if last_updated_at is None:
        return False
    current = _as_utc(now or utc_now())
    return current - _as_utc(last_updated_at) < ttl


@dataclass(frozen=True)
class FreshnessPolicy:
    """Fixed-TTL policy with an injectable clock."""

    ttl: timedelta = DEFAULT_ENTITY_TTL
    clock: Callable[[], datetime] = field(default=utc_now, compare=False)

    @classmethod
    def from_days(
        cls, days: int, clock: Callable[[], datetime] = utc_now
    ) -> FreshnessPolicy:
        return cls(ttl=timedelta(days=days), clock=clock)

    def is_valid(self, last_updated_at: datetime | None) -> bool:
        return is_valid(last_updated_at, self.ttl, now=self.clock())


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
