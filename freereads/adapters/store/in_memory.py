"""In-memory key-value store with per-key expiry.

Notes:
- Per-process only: running multiple workers gives each its own state.
- Thread-safe: uses a lock around shared state.
- Expired keys are dropped lazily on access and swept on writes.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from freereads.adapters.store.base import (
    TTL_MISSING,
    TTL_PERSISTENT,
    AbstractKeyValueStore,
    StoreError,
)


@dataclass
class _Entry:
    value: str
    expires_at: float | None


class InMemoryKeyValueStore(AbstractKeyValueStore):
    """Dictionary-backed store used as the local fallback and in tests.

    Important:
        This store provides no cross-instance consistency. Behind a load
        balancer each instance enforces its own counters.
    """

    name = "memory"

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        """Initialize the store.

        Args:
            clock: Time source function returning UNIX time in seconds.
        """
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._lock:
            self._evict_expired_locked()
            return len(self._entries)

    def is_ready(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._live_entry_locked(key)
            return entry.value if entry else None

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        with self._lock:
            self._evict_expired_locked()
            self._entries[key] = _Entry(value=str(value), expires_at=self._deadline(ttl_seconds))

    async def incr(self, key: str, amount: int = 1) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                entry = _Entry(value="0", expires_at=None)
                self._entries[key] = entry
            try:
                current = int(entry.value)
            except ValueError as exc:
                raise StoreError(f"value at {key!r} is not an integer") from exc
            entry.value = str(current + amount)
            return current + amount

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return False
            entry.expires_at = self._deadline(ttl_seconds)
            return True

    async def ttl(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry_locked(key)
            if entry is None:
                return TTL_MISSING
            if entry.expires_at is None:
                return TTL_PERSISTENT
            return max(0, int(math.ceil(entry.expires_at - self._clock())))

    async def delete(self, key: str) -> bool:
        with self._lock:
            entry = self._live_entry_locked(key)
            self._entries.pop(key, None)
            return entry is not None

    def _deadline(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + ttl_seconds

    def _live_entry_locked(self, key: str) -> _Entry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _evict_expired_locked(self) -> None:
        now = self._clock()
        expired = [
            k for k, e in self._entries.items() if e.expires_at is not None and e.expires_at <= now
        ]
        for key in expired:
            del self._entries[key]
