"""Fixed-window rate limiter on top of a key-value store.

Notes:
- Counting relies on the store's atomic increment; no read-modify-write.
- The first hit of a window sets the window TTL; the window ends when the
  counter key expires.
- When the active store fails mid-request, or reports itself not ready, the
  hit is counted in the local fallback store instead, so limits stay enforced
  per process without waiting on a store that is known to be down.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Callable

from freereads.adapters.rate_limit.base import AbstractRateLimiter, RateLimitResult
from freereads.adapters.store.base import AbstractKeyValueStore, StoreError
from freereads.adapters.store.in_memory import InMemoryKeyValueStore

logger = logging.getLogger(__name__)


class StoreFixedWindowRateLimiter(AbstractRateLimiter):
    """Rate limiter counting hits per key in fixed windows.

    Important:
        With the in-memory store each process enforces its own limits. With a
        shared store, all instances share one counter per key.
    """

    def __init__(
        self,
        *,
        window_seconds: int,
        prefix: str,
        store: AbstractKeyValueStore | None = None,
        fallback: AbstractKeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the limiter.

        Args:
            window_seconds: Size of the fixed window in seconds.
            prefix: Key namespace (e.g. "rate-control").
            store: Store to count in; defaults to the fallback store.
            fallback: Local store used when the active store fails.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If window_seconds is invalid.
        """
        if window_seconds < 1:
            raise ValueError("window_seconds must be >= 1")

        self._window_seconds = window_seconds
        self._prefix = prefix
        self._clock = clock
        self._fallback = fallback if fallback is not None else InMemoryKeyValueStore(clock=clock)
        self._store = store if store is not None else self._fallback

    @property
    def window_seconds(self) -> int:
        return self._window_seconds

    @property
    def backend(self) -> str:
        return self._store.name

    def use_store(self, store: AbstractKeyValueStore) -> None:
        """Switch the store used for counting (done once at startup)."""
        self._store = store

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def _count(self, store: AbstractKeyValueStore, key: str, cost: int) -> tuple[int, int]:
        """Increment the window counter; returns (hits, seconds until reset)."""
        hits = await store.incr(key, cost)
        if hits == cost:
            await store.expire(key, self._window_seconds)
            return hits, self._window_seconds

        ttl = await store.ttl(key)
        if ttl < 0:
            # Counter lost its expiry (e.g. crash between INCR and EXPIRE)
            await store.expire(key, self._window_seconds)
            ttl = self._window_seconds
        return hits, ttl

    async def consume(self, key: str, *, limit: int, cost: int = 1) -> RateLimitResult:
        """Count one request for key and decide whether it fits the limit.

        Args:
            key: Identity key (e.g. user:42, ip:203.0.113.7).
            limit: Maximum hits allowed in the window for this request's tier.
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult with allowance decision and metadata.

        Raises:
            ValueError: If key is empty, limit or cost are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if cost < 1:
            raise ValueError("cost must be >= 1")
        if not key:
            raise ValueError("key must be a non-empty string")

        store_key = self._key(key)
        store = self._store
        if store is not self._fallback and not store.is_ready():
            store = self._fallback
        try:
            hits, ttl = await self._count(store, store_key, cost)
        except StoreError as exc:
            if store is self._fallback:
                raise
            logger.warning(
                "rate_limit.store_fallback",
                extra={"store": store.name, "prefix": self._prefix, "error_msg": str(exc)},
            )
            store = self._fallback
            hits, ttl = await self._count(store, store_key, cost)

        now = self._clock()
        reset_at = int(math.ceil(now + ttl))
        remaining = max(0, limit - hits)

        if hits <= limit:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                hits=hits,
                remaining=remaining,
                reset_at=reset_at,
                retry_after_seconds=None,
                backend=store.name,
            )

        return RateLimitResult(
            allowed=False,
            limit=limit,
            hits=hits,
            remaining=0,
            reset_at=reset_at,
            retry_after_seconds=max(1, int(ttl)),
            backend=store.name,
        )
