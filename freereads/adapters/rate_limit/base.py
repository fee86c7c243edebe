"""Rate limiter interfaces.

The traffic controller depends on this abstraction (not the concrete
implementation) so the storage backend can change without touching tiering or
delay logic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitResult:
    """Result of a rate limit consume operation.

    Attributes:
        allowed: Whether the request is allowed to proceed.
        limit: Max requests per window for the tier that was applied.
        hits: Requests counted for the key in the current window (this one included).
        remaining: Remaining requests in the current window (0 when blocked).
        reset_at: UNIX epoch seconds when the current window resets.
        retry_after_seconds: Suggested wait time in seconds when blocked.
        backend: Name of the store that counted the request.
    """

    allowed: bool
    limit: int
    hits: int
    remaining: int
    reset_at: int
    retry_after_seconds: int | None
    backend: str = "memory"

    @property
    def usage_percent(self) -> float:
        return self.hits / self.limit * 100


class AbstractRateLimiter(ABC):
    """Interface for rate limiters."""

    @abstractmethod
    async def consume(self, key: str, *, limit: int, cost: int = 1) -> RateLimitResult:
        """Consume rate limit budget for a given key.

        Args:
            key: Unique identifier (e.g., user:42, ip:203.0.113.7).
            limit: Max units allowed in the window; may vary per request.
            cost: Units to consume (default 1).

        Returns:
            RateLimitResult describing whether it was allowed.
        """
        raise NotImplementedError
