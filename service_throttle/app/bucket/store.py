"""
TTL-bounded storage of bucket state in a shared cache.

The store never decides anything. It composes keys, (de)serializes
``BucketState`` and turns every kind of failed read into a fresh state,
reporting which kind it was through ``LookupOutcome``.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Protocol, TYPE_CHECKING

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError

from shared.errors import StoreError
from shared.logging import get_logger
from .state import BucketConfig, BucketState, fresh_state

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


DEFAULT_NAMESPACE = "leaky"
DEFAULT_STATE_TTL = 3600  # 1 hour
DEFAULT_TIMEOUT = 0.5


class Cache(Protocol):
    """Minimal get/set-with-TTL contract the bucket state needs."""

    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored value, or None when the key does not exist."""
        ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ...


class RedisCache:
    """``Cache`` backed by a pooled asyncio Redis client."""

    def __init__(self, redis_url: str, *, socket_timeout: float = DEFAULT_TIMEOUT,
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.socket_timeout = socket_timeout
        self.logger = get_logger("throttle.cache.redis")
        self.redis: Optional[redis.Redis] = client

    def _client(self) -> redis.Redis:
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                socket_connect_timeout=self.socket_timeout,
                socket_timeout=self.socket_timeout,
                health_check_interval=30
            )
        return self.redis

    async def start(self):
        """Connect and verify the Redis server answers."""
        try:
            await self._client().ping()
            self.logger.info("Redis cache started", redis_url=self.redis_url)
        except Exception as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise StoreError(str(e), {"redis_url": self.redis_url}) from e

    async def stop(self):
        """Close the connection pool."""
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
            self.logger.info("Redis cache stopped")

    async def get(self, key: str) -> Optional[bytes]:
        return await self._client().get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self._client().set(key, value, ex=ttl_seconds)

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self._client().ping()
            return True
        except Exception:
            return False


class LookupOutcome(str, Enum):
    """How a state read went."""
    FOUND = "found"
    MISSING = "missing"
    CORRUPT = "corrupt"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class StateLookup:
    """A bucket state together with where it came from."""
    state: BucketState
    outcome: LookupOutcome

    @property
    def is_fresh(self) -> bool:
        return self.outcome is not LookupOutcome.FOUND


class BucketStateStore:
    """Reads and writes ``BucketState`` under composed cache keys."""

    def __init__(
        self,
        cache: Cache,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        ttl_seconds: int = DEFAULT_STATE_TTL,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.metrics = metrics
        self.logger = get_logger("throttle.store")

    def make_key(self, bucket_name: str, client_key: str) -> str:
        """Generate the cache key isolating one client within one bucket."""
        return f"{self.namespace}::{bucket_name}::{client_key}"

    async def fetch(self, config: BucketConfig, client_key: str, now: datetime) -> StateLookup:
        """Load state for a client, falling back to a full bucket on any failure."""
        key = self.make_key(config.name, client_key)
        start_time = time.time()

        try:
            raw = await asyncio.wait_for(self.cache.get(key), self.timeout_seconds)
        except asyncio.TimeoutError:
            self.logger.warning(
                "Retrieving bucket state timed out, resetting counters",
                key=key,
                timeout_seconds=self.timeout_seconds
            )
            return self._fallback(config, now, LookupOutcome.UNAVAILABLE)
        except Exception as e:
            self.logger.warning(
                "Retrieving bucket state failed, resetting counters",
                key=key,
                error=str(e)
            )
            return self._fallback(config, now, LookupOutcome.UNAVAILABLE)
        finally:
            self._observe_latency("get", start_time)

        if raw is None:
            return self._fallback(config, now, LookupOutcome.MISSING)

        try:
            state = BucketState.from_bytes(raw)
        except PydanticValidationError as e:
            self.logger.warning(
                "Stored bucket state is malformed, resetting counters",
                key=key,
                error=str(e)
            )
            return self._fallback(config, now, LookupOutcome.CORRUPT)

        self._count_lookup(config.name, LookupOutcome.FOUND)
        return StateLookup(state=state, outcome=LookupOutcome.FOUND)

    async def save(self, config: BucketConfig, client_key: str, state: BucketState) -> bool:
        """Persist state with the store TTL. Failures are logged, not raised."""
        key = self.make_key(config.name, client_key)
        start_time = time.time()

        try:
            await asyncio.wait_for(
                self.cache.set(key, state.to_bytes(), self.ttl_seconds),
                self.timeout_seconds
            )
            return True
        except asyncio.TimeoutError:
            self.logger.warning(
                "Setting bucket state timed out",
                key=key,
                timeout_seconds=self.timeout_seconds
            )
        except Exception as e:
            self.logger.warning("Setting bucket state failed", key=key, error=str(e))
        finally:
            self._observe_latency("set", start_time)

        if self.metrics:
            self.metrics.increment_counter("throttle_store_write_failures_total", bucket=config.name)
        return False

    def _fallback(self, config: BucketConfig, now: datetime, outcome: LookupOutcome) -> StateLookup:
        self._count_lookup(config.name, outcome)
        return StateLookup(state=fresh_state(config, now), outcome=outcome)

    def _count_lookup(self, bucket: str, outcome: LookupOutcome):
        if self.metrics:
            self.metrics.increment_counter(
                "throttle_state_lookups_total",
                bucket=bucket,
                outcome=outcome.value
            )

    def _observe_latency(self, operation: str, start_time: float):
        if self.metrics:
            self.metrics.observe_histogram(
                "throttle_store_latency_seconds",
                time.time() - start_time,
                operation=operation
            )
