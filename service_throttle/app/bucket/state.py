"""
Bucket configuration, persisted bucket state and the leak arithmetic.

Everything in this module is pure: the current time is always passed in, so
the refresh/decrement rules can be exercised without touching a store or a
real clock.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from pydantic import BaseModel, ConfigDict

from shared.errors import ConfigurationError

MILLISECONDS_PER_MINUTE = 60.0 * 1000.0

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BucketConfig:
    """Static shape of one registered bucket."""
    name: str
    capacity: int
    leak_rate_per_min: int

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name:
            raise ConfigurationError(
                "Bucket name must be a non-empty string",
                {"name": self.name}
            )
        if self.capacity < 0:
            raise ConfigurationError(
                "Bucket capacity must be >= 0",
                {"name": self.name, "capacity": self.capacity}
            )
        if self.leak_rate_per_min < 0:
            raise ConfigurationError(
                "Bucket leak rate must be >= 0",
                {"name": self.name, "leak_rate_per_min": self.leak_rate_per_min}
            )

    @property
    def leak_rate(self) -> float:
        """Units regenerated per millisecond."""
        return self.leak_rate_per_min / MILLISECONDS_PER_MINUTE


class BucketState(BaseModel):
    """Remaining capacity of one (bucket, client) pair as of ``last_update``."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    last_update: datetime
    space_remaining: float

    def to_bytes(self) -> bytes:
        return self.model_dump_json().encode("utf-8")

    @classmethod
    def from_bytes(cls, data: bytes) -> "BucketState":
        """Decode a stored state; raises ``pydantic.ValidationError`` on garbage."""
        state = cls.model_validate_json(data)
        if state.last_update.tzinfo is None:
            state = state.model_copy(update={"last_update": state.last_update.replace(tzinfo=timezone.utc)})
        return state


def fresh_state(config: BucketConfig, now: datetime) -> BucketState:
    """State of a bucket that has never been seen: completely empty of drops."""
    return BucketState(last_update=now, space_remaining=float(config.capacity))


def elapsed_ms(since: datetime, now: datetime) -> int:
    """Whole milliseconds between two instants, never negative."""
    elapsed = (now - since) // timedelta(milliseconds=1)
    # Instances with skewed clocks may see a future last_update
    return max(0, elapsed)


def refresh(state: BucketState, config: BucketConfig, now: datetime) -> BucketState:
    """Apply the leak that happened between ``state.last_update`` and ``now``."""
    leaked = elapsed_ms(state.last_update, now) * config.leak_rate
    remaining = math.floor(state.space_remaining + leaked)
    remaining = min(float(config.capacity), float(remaining))
    return BucketState(last_update=now, space_remaining=max(0.0, remaining))


def decrement(state: BucketState, count: int, now: datetime) -> BucketState:
    """Consume ``count`` units. Callers check there is room first."""
    return BucketState(last_update=now, space_remaining=state.space_remaining - count)


def seconds_until_available(state: BucketState, config: BucketConfig, count: int):
    """Whole seconds until ``count`` units fit, or None if they never will."""
    if count > config.capacity or config.leak_rate_per_min <= 0:
        return None
    missing = count - state.space_remaining
    if missing <= 0:
        return 0
    return math.ceil(missing * 60.0 / config.leak_rate_per_min)
