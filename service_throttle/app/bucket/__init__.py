"""
Leaky bucket core.

Holds the bucket state model and leak arithmetic, the TTL-bounded state
store over a shared cache, and the admission logic that ties them together.
"""

from .leaky_bucket import Admission, LeakyBucket
from .manager import ThrottleManager
from .state import BucketConfig, BucketState
from .store import BucketStateStore, Cache, LookupOutcome, RedisCache, StateLookup

__all__ = [
    "Admission",
    "BucketConfig",
    "BucketState",
    "BucketStateStore",
    "Cache",
    "LeakyBucket",
    "LookupOutcome",
    "RedisCache",
    "StateLookup",
    "ThrottleManager",
]
