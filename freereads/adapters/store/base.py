"""Key-value store interface.

Services depend on this abstraction (not on Redis) so the same ledger, token
and throttling code runs against the shared store or the per-process fallback.

TTL semantics follow Redis: ``ttl()`` returns ``-2`` for a missing key and
``-1`` for a key without expiry.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

TTL_MISSING = -2
TTL_PERSISTENT = -1


class StoreError(Exception):
    """Raised when a store command fails."""


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached (connection lost, timeout)."""


class AbstractKeyValueStore(ABC):
    """Interface for the key-value stores backing the security core.

    Implementations must make ``incr`` a single atomic operation; counters are
    exact under concurrency only because of that guarantee.
    """

    name: str = "abstract"

    async def connect(self) -> bool:
        """Open the underlying connection; returns readiness. Never raises."""
        return self.is_ready()

    async def close(self) -> None:
        """Release the underlying connection."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether the store is currently believed to accept commands."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value stored at key, or None when absent."""
        raise NotImplementedError

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Store value at key, replacing any previous value and expiry.

        Args:
            key: Store key.
            value: String value.
            ttl_seconds: Expiry in seconds; None keeps the key until deleted.
        """
        raise NotImplementedError

    @abstractmethod
    async def incr(self, key: str, amount: int = 1) -> int:
        """Atomically increment the integer at key (missing keys start at 0)."""
        raise NotImplementedError

    @abstractmethod
    async def expire(self, key: str, ttl_seconds: int) -> bool:
        """Set a TTL on an existing key; False when the key does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def ttl(self, key: str) -> int:
        """Remaining lifetime in seconds, or TTL_MISSING / TTL_PERSISTENT."""
        raise NotImplementedError

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete key; True when it existed (exactly one caller wins a race)."""
        raise NotImplementedError
