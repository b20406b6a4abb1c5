"""
Shared pytest fixtures: an in-memory cache and a hand-driven clock.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from shared.metrics import MetricsCollector


class InMemoryCache:
    """Cache double recording every write, with switchable outages."""

    def __init__(self):
        self.values: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}
        self.writes: List[Tuple[str, bytes, int]] = []
        self.fail_reads = False
        self.fail_writes = False
        self.delay_seconds = 0.0

    async def get(self, key: str) -> Optional[bytes]:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_reads:
            raise ConnectionError("cache unreachable")
        return self.values.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_writes:
            raise ConnectionError("cache unreachable")
        self.values[key] = value
        self.ttls[key] = ttl_seconds
        self.writes.append((key, value, ttl_seconds))

    def expire(self, key: str):
        """Drop a key as if its TTL had run out."""
        self.values.pop(key, None)
        self.ttls.pop(key, None)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, milliseconds: float = 0, seconds: float = 0):
        self.now += timedelta(milliseconds=milliseconds, seconds=seconds)


@pytest.fixture
def cache():
    """Empty in-memory cache."""
    return InMemoryCache()


@pytest.fixture
def clock():
    """Manual clock starting at a fixed instant."""
    return ManualClock()


@pytest.fixture
def metrics():
    """Metrics collector with its own registry."""
    return MetricsCollector("throttle-test")
