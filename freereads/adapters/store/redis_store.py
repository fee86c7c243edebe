"""Redis key-value store adapter.

Uses the official redis-py asyncio client. The client connects lazily and
retries dropped connections with a capped exponential backoff. While Redis is
down the adapter reports itself unready, letting one probe command through
per backoff interval so it notices when Redis comes back.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Awaitable, Callable, TypeVar

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from freereads.adapters.store.base import (
    AbstractKeyValueStore,
    StoreError,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_redis_client(
    url: str,
    *,
    retry_attempts: int = 3,
    backoff_base_seconds: float = 0.05,
    backoff_cap_seconds: float = 2.0,
    socket_timeout_seconds: float = 2.0,
) -> Redis:
    """Create a lazily connected Redis client with a capped reconnect policy.

    Args:
        url: Redis connection URL.
        retry_attempts: Retries per command on connection errors.
        backoff_base_seconds: First backoff step.
        backoff_cap_seconds: Upper bound for a single backoff sleep.
        socket_timeout_seconds: Connect/read timeout.

    Returns:
        Redis: Client that decodes responses to str.
    """
    return Redis.from_url(
        url,
        decode_responses=True,
        socket_timeout=socket_timeout_seconds,
        socket_connect_timeout=socket_timeout_seconds,
        retry=Retry(
            ExponentialBackoff(cap=backoff_cap_seconds, base=backoff_base_seconds),
            retry_attempts,
        ),
        retry_on_error=[RedisConnectionError, RedisTimeoutError],
    )


class RedisKeyValueStore(AbstractKeyValueStore):
    """Store adapter over a shared Redis instance.

    Readiness is tracked from command outcomes: a transport failure marks the
    store unready, the next successful command marks it ready again.
    """

    name = "redis"

    def __init__(
        self,
        url: str,
        *,
        client: Redis | None = None,
        backoff_base_seconds: float = 0.05,
        backoff_cap_seconds: float = 2.0,
        monotonic: Callable[[], float] = time.monotonic,
        **client_options: Any,
    ) -> None:
        """Initialize the adapter.

        Args:
            url: Redis connection URL (used when no client is given).
            client: Pre-built client, mainly for tests.
            backoff_base_seconds: First probe interval after a failure.
            backoff_cap_seconds: Longest probe interval.
            monotonic: Clock used for probe scheduling.
            **client_options: Forwarded to build_redis_client().
        """
        self._url = url
        self._client = client if client is not None else build_redis_client(
            url,
            backoff_base_seconds=backoff_base_seconds,
            backoff_cap_seconds=backoff_cap_seconds,
            **client_options,
        )
        self._backoff = ExponentialBackoff(cap=backoff_cap_seconds, base=backoff_base_seconds)
        self._monotonic = monotonic
        self._ready = False
        self._failures = 0
        self._probe_at = 0.0

    def is_ready(self) -> bool:
        return self._ready or self._monotonic() >= self._probe_at

    async def connect(self) -> bool:
        try:
            await self._client.ping()
        except RedisError as exc:
            self._mark_unavailable()
            logger.warning(
                "store.connect_failed",
                extra={"store": self.name, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            return False

        self._mark_available()
        logger.info("store.connected", extra={"store": self.name})
        return True

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except RedisError as exc:
            logger.warning(
                "store.close_failed",
                extra={"store": self.name, "error_type": type(exc).__name__},
            )
        self._ready = False

    async def get(self, key: str) -> str | None:
        return await self._execute("get", lambda: self._client.get(key))

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        await self._execute("set", lambda: self._client.set(key, value, ex=ttl_seconds))

    async def incr(self, key: str, amount: int = 1) -> int:
        return int(await self._execute("incr", lambda: self._client.incrby(key, amount)))

    async def expire(self, key: str, ttl_seconds: int) -> bool:
        return bool(await self._execute("expire", lambda: self._client.expire(key, ttl_seconds)))

    async def ttl(self, key: str) -> int:
        return int(await self._execute("ttl", lambda: self._client.ttl(key)))

    async def delete(self, key: str) -> bool:
        return int(await self._execute("delete", lambda: self._client.delete(key))) > 0

    async def _execute(self, command: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one command, translating redis errors into store errors."""
        try:
            result = await call()
        except (RedisConnectionError, RedisTimeoutError) as exc:
            if self._ready:
                logger.error(
                    "store.unavailable",
                    extra={"store": self.name, "command": command, "error_msg": str(exc)},
                )
            self._mark_unavailable()
            raise StoreUnavailableError(f"redis {command} failed: {exc}") from exc
        except RedisError as exc:
            logger.error(
                "store.command_failed",
                extra={"store": self.name, "command": command, "error_msg": str(exc)},
            )
            raise StoreError(f"redis {command} failed: {exc}") from exc

        if not self._ready:
            logger.info("store.recovered", extra={"store": self.name})
        self._mark_available()
        return result

    def _mark_available(self) -> None:
        self._ready = True
        self._failures = 0
        self._probe_at = 0.0

    def _mark_unavailable(self) -> None:
        self._ready = False
        self._failures += 1
        self._probe_at = self._monotonic() + self._backoff.compute(self._failures)
