"""Two-tier traffic control: progressive delay plus a hard rate limit.

Both throttles count per identity key (``user:{id}`` when the request carries
a verified identity, ``ip:{address}`` otherwise) in fixed windows, and pick
their budget from the request tier:

- authenticated requests get the ``authenticated`` budget,
- anonymous requests to auth routes get the ``strict`` budget,
- everything else gets the ``default`` budget.

The speed limiter never rejects; it delays responses once usage passes a
threshold and reports heavy users to the abuse ledger. The rate limiter
rejects the request after the budget and blacklists the offending IP.
"""

from __future__ import annotations

import asyncio
import hashlib
import ipaddress
import logging
import math
import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from freereads.adapters.rate_limit import RateLimitResult, StoreFixedWindowRateLimiter
from freereads.adapters.store.base import AbstractKeyValueStore, StoreError
from freereads.adapters.store.in_memory import InMemoryKeyValueStore
from freereads.core.config import RateLimitSettings, SpeedLimitSettings, parse_csv
from freereads.core.errors import AppError, ErrorKind
from freereads.services.blacklist_service import BlacklistService

logger = logging.getLogger(__name__)


class Tier(str, Enum):
    STRICT = "strict"
    DEFAULT = "default"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class SpeedDecision:
    """Outcome of the soft limiter for one request."""

    delay_ms: int
    hits: int
    limit: int
    usage_percent: float


def normalize_ip(ip: str | None) -> str | None:
    """Canonical form of an address, None when it does not parse.

    IPv4-mapped IPv6 addresses collapse to their IPv4 form.

    Examples:
        >>> normalize_ip("::ffff:10.0.0.1")
        '10.0.0.1'
        >>> normalize_ip("not-an-ip") is None
        True
    """
    if not ip:
        return None
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return str(address.ipv4_mapped)
    return str(address)


def compute_delay_ms(
    usage_percent: float,
    *,
    delay_after_percent: float = 60.0,
    min_delay_ms: int = 100,
    max_delay_ms: int = 800,
) -> int:
    """Progressive delay for a given tier usage.

    No delay below ``delay_after_percent``; from there the delay grows
    linearly from ``min_delay_ms`` at the threshold to ``max_delay_ms`` at
    100 % usage and stays capped beyond it.

    Examples:
        >>> compute_delay_ms(59)
        0
        >>> compute_delay_ms(60)
        100
        >>> compute_delay_ms(80)
        450
        >>> compute_delay_ms(250)
        800
    """
    if usage_percent < delay_after_percent:
        return 0
    span = 100.0 - delay_after_percent
    progress = (usage_percent - delay_after_percent) / span
    delay = min_delay_ms + (max_delay_ms - min_delay_ms) * progress
    return int(math.floor(min(delay, max_delay_ms)))


def _hash_key(key: str) -> str:
    """Hash a limiter key for logging without exposing addresses or ids."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


class TrafficController:
    """Applies the speed and rate limiters to a request."""

    def __init__(
        self,
        rate_config: RateLimitSettings,
        speed_config: SpeedLimitSettings,
        ledger: BlacklistService,
        *,
        fallback: AbstractKeyValueStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the controller.

        Counting starts on the local store; ``select_store`` switches both
        limiters to the distributed store once it has proven usable.

        Args:
            rate_config: Hard limiter settings (tiers, trusted IPs, window).
            speed_config: Soft limiter settings (delay curve, window).
            ledger: Abuse ledger notified of blocked and heavy clients.
            fallback: Local store; a fresh in-memory store by default.
            sleep: Coroutine used to apply delays.
            clock: Time source for window bookkeeping.
        """
        self._rate_config = rate_config
        self._speed_config = speed_config
        self._ledger = ledger
        self._sleep = sleep
        self._fallback = fallback if fallback is not None else InMemoryKeyValueStore(clock=clock)
        self._auth_route = re.compile(rate_config.auth_route_pattern, re.IGNORECASE)
        self._trusted = {
            ip for ip in (normalize_ip(raw) for raw in parse_csv(rate_config.trusted_ips)) if ip
        }
        self._limits = {
            Tier.STRICT: rate_config.strict,
            Tier.DEFAULT: rate_config.default,
            Tier.AUTHENTICATED: rate_config.authenticated,
        }
        self.rate_limiter = StoreFixedWindowRateLimiter(
            window_seconds=rate_config.window_seconds,
            prefix=rate_config.prefix,
            fallback=self._fallback,
            clock=clock,
        )
        self.speed_limiter = StoreFixedWindowRateLimiter(
            window_seconds=speed_config.window_seconds,
            prefix=speed_config.prefix,
            fallback=self._fallback,
            clock=clock,
        )

    @property
    def backend(self) -> str:
        return self.rate_limiter.backend

    def is_trusted(self, ip: str | None) -> bool:
        """Whether an address bypasses traffic control; malformed never does."""
        normalized = normalize_ip(ip)
        return normalized is not None and normalized in self._trusted

    def is_auth_route(self, path: str) -> bool:
        return bool(self._auth_route.match(path))

    def tier_for(self, path: str, user_id: str | None) -> Tier:
        if user_id:
            return Tier.AUTHENTICATED
        if self.is_auth_route(path):
            return Tier.STRICT
        return Tier.DEFAULT

    def limit_for(self, tier: Tier) -> int:
        return self._limits[tier]

    @staticmethod
    def identity_key(ip: str, user_id: str | None) -> str:
        if user_id:
            return f"user:{user_id}"
        return f"ip:{normalize_ip(ip) or ip}"

    async def select_store(self, store: AbstractKeyValueStore) -> str:
        """Adopt the distributed store if its increment primitive works.

        Returns:
            Name of the backend the limiters count in afterwards.
        """
        if store is self._fallback or not store.is_ready():
            logger.info("traffic.store_selected", extra={"backend": self._fallback.name})
            return self._fallback.name

        probe_key = f"{self._rate_config.prefix}:probe"
        try:
            await store.incr(probe_key)
            await store.delete(probe_key)
        except StoreError as exc:
            logger.warning(
                "traffic.store_probe_failed",
                extra={"backend": store.name, "error_msg": str(exc)},
            )
            return self._fallback.name

        self.rate_limiter.use_store(store)
        self.speed_limiter.use_store(store)
        logger.info("traffic.store_selected", extra={"backend": store.name})
        return store.name

    async def slow_down(self, ip: str, path: str, user_id: str | None) -> SpeedDecision | None:
        """Count the request in the speed window and delay it if needed.

        Returns:
            The decision, or None when the soft limiter does not apply.
        """
        if not self._speed_config.enabled or self.is_trusted(ip):
            return None

        tier = self.tier_for(path, user_id)
        limit = self.limit_for(tier)
        key = self.identity_key(ip, user_id)
        result = await self.speed_limiter.consume(key, limit=limit)

        usage = result.usage_percent
        delay_ms = compute_delay_ms(
            usage,
            delay_after_percent=self._speed_config.delay_after_percent,
            min_delay_ms=self._speed_config.min_delay_ms,
            max_delay_ms=self._speed_config.max_delay_ms,
        )

        if usage > self._speed_config.warn_percent:
            logger.warning(
                "speed_limit.approaching",
                extra={"key_hash": _hash_key(key), "tier": tier.value, "usage_pct": round(usage, 1)},
            )
            await self._ledger.record_approaching_limit(normalize_ip(ip) or ip)

        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

        return SpeedDecision(delay_ms=delay_ms, hits=result.hits, limit=limit, usage_percent=usage)

    async def limit(self, ip: str, path: str, user_id: str | None) -> RateLimitResult | None:
        """Count the request in the rate window.

        Returns:
            The allowed result, or None when the hard limiter does not apply.

        Raises:
            AppError: ``rate_limited`` once the tier budget is exhausted.
        """
        if not self._rate_config.enabled or self.is_trusted(ip):
            return None

        tier = self.tier_for(path, user_id)
        limit = self.limit_for(tier)
        key = self.identity_key(ip, user_id)
        result = await self.rate_limiter.consume(key, limit=limit)

        if result.allowed:
            logger.debug(
                "rate_limit.allowed",
                extra={
                    "key_hash": _hash_key(key),
                    "tier": tier.value,
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "backend": result.backend,
                },
            )
            return result

        retry_after = result.retry_after_seconds or self._rate_config.window_seconds
        logger.warning(
            "rate_limit.exceeded",
            extra={
                "key_hash": _hash_key(key),
                "tier": tier.value,
                "limit": result.limit,
                "window_s": self._rate_config.window_seconds,
                "retry_after_s": retry_after,
            },
        )
        await self._ledger.blacklist_ip(normalize_ip(ip) or ip, "Rate limit exceeded")
        raise AppError(
            kind=ErrorKind.RATE_LIMITED,
            details={"limit": result.limit, "tier": tier.value, "retry_after": retry_after},
        )
