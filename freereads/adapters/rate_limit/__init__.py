"""Rate limiting adapters.

Fixed-window counters that run on any key-value store, so the traffic
controller can count in Redis and drop to process memory without changing
its own logic.
"""

from freereads.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from freereads.adapters.rate_limit.store_backed import StoreFixedWindowRateLimiter

__all__ = [
    "AbstractRateLimiter",
    "RateLimitResult",
    "StoreFixedWindowRateLimiter",
]
