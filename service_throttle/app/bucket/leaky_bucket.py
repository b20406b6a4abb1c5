"""
Leaky bucket admission decisions.

Each check re-reads the shared state, applies the leak since the last
accepted write, and only writes back when the request is admitted. The
read-decide-write sequence is not atomic: two instances serving the same
client at the same moment can both admit against the same stored state and
the later write wins, losing one decrement. That approximation is accepted;
closing it would need a store-side compare-and-swap or scripted update.
"""

from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING

from shared.errors import ValidationError
from shared.logging import get_logger
from .state import (
    BucketConfig,
    Clock,
    decrement,
    refresh,
    seconds_until_available,
    utc_now,
)
from .store import BucketStateStore, StateLookup

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


@dataclass(frozen=True)
class Admission:
    """Outcome of one admission check."""
    allowed: bool
    remaining: float
    limit: int
    retry_after_seconds: Optional[int] = None


class LeakyBucket:
    """Admission decisions for one bucket configuration."""

    def __init__(
        self,
        config: BucketConfig,
        store: BucketStateStore,
        clock: Clock = utc_now,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.config = config
        self.store = store
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("throttle.bucket")

    @property
    def name(self) -> str:
        return self.config.name

    def get_key(self, client_key: str) -> str:
        """Cache key holding this client's state."""
        return self.store.make_key(self.config.name, client_key)

    async def current_state(self, client_key: str) -> StateLookup:
        """Stored state with the elapsed leak applied. Nothing is written."""
        now = self.clock()
        lookup = await self.store.fetch(self.config, client_key, now)
        if lookup.is_fresh:
            return lookup
        return StateLookup(
            state=refresh(lookup.state, self.config, now),
            outcome=lookup.outcome
        )

    async def admit(self, count: int, client_key: str) -> Admission:
        """Try to add ``count`` drops for ``client_key``."""
        if count < 0:
            raise ValidationError(
                "Drop count must be >= 0",
                {"bucket": self.config.name, "count": count}
            )

        current = (await self.current_state(client_key)).state

        if current.space_remaining < count:
            # Denials are not persisted; the next check leaks from the last accepted write
            self._record(False, client_key, count, current.space_remaining)
            return Admission(
                allowed=False,
                remaining=current.space_remaining,
                limit=self.config.capacity,
                retry_after_seconds=seconds_until_available(current, self.config, count)
            )

        updated = decrement(current, count, self.clock())
        await self.store.save(self.config, client_key, updated)

        self._record(True, client_key, count, updated.space_remaining)
        return Admission(
            allowed=True,
            remaining=updated.space_remaining,
            limit=self.config.capacity
        )

    async def add(self, count: int, client_key: str) -> bool:
        """Add drops to the bucket if there is space."""
        admission = await self.admit(count, client_key)
        return admission.allowed

    def _record(self, allowed: bool, client_key: str, count: int, remaining: float):
        if allowed:
            self.logger.debug(
                "Drops admitted",
                bucket=self.config.name,
                client_key=client_key,
                count=count,
                remaining=remaining
            )
        else:
            self.logger.info(
                "Rate limit exceeded",
                bucket=self.config.name,
                client_key=client_key,
                count=count,
                remaining=remaining,
                capacity=self.config.capacity
            )

        if self.metrics:
            self.metrics.record_decision(self.config.name, allowed)
