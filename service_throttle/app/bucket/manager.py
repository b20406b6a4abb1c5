"""
Throttle manager: one shared state store, many buckets.
"""

from typing import Optional, TYPE_CHECKING

from shared.logging import get_logger
from .leaky_bucket import LeakyBucket
from .state import BucketConfig, Clock, utc_now
from .store import (
    BucketStateStore,
    Cache,
    DEFAULT_NAMESPACE,
    DEFAULT_STATE_TTL,
    DEFAULT_TIMEOUT,
)

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector
    from ..middleware.throttle import Handler, KeyFunc, ThrottledEndpoint


class ThrottleManager:
    """Creates buckets that share one cache connection."""

    def __init__(
        self,
        cache: Cache,
        *,
        namespace: str = DEFAULT_NAMESPACE,
        ttl_seconds: int = DEFAULT_STATE_TTL,
        timeout_seconds: float = DEFAULT_TIMEOUT,
        clock: Clock = utc_now,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = BucketStateStore(
            cache,
            namespace=namespace,
            ttl_seconds=ttl_seconds,
            timeout_seconds=timeout_seconds,
            metrics=metrics,
        )
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("throttle.manager")

    def new_bucket(self, capacity: int, leak_rate_per_min: int, bucket_name: str) -> LeakyBucket:
        """Create a bucket directly, for callers not using the HTTP wrapper."""
        config = BucketConfig(
            name=bucket_name,
            capacity=capacity,
            leak_rate_per_min=leak_rate_per_min
        )
        self.logger.info(
            "Bucket registered",
            bucket=bucket_name,
            capacity=capacity,
            leak_rate_per_min=leak_rate_per_min
        )
        return LeakyBucket(config, self.store, clock=self.clock, metrics=self.metrics)

    def throttling_handler(
        self,
        handler: "Handler",
        capacity: int,
        leak_rate_per_min: int,
        key_func: "KeyFunc",
        bucket_name: str,
    ) -> "ThrottledEndpoint":
        """Wrap ``handler`` so that each request spends one drop from its client's bucket."""
        from ..middleware.throttle import ThrottledEndpoint

        bucket = self.new_bucket(capacity, leak_rate_per_min, bucket_name)
        return ThrottledEndpoint(handler, bucket, key_func)
