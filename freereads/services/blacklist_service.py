"""Abuse ledger: IP/token blacklisting and failed-attempt counters.

The ledger fails open. When the store is unreachable every lookup answers
"not blocked" and every write reports a failed result, so a cache outage
weakens protection instead of locking legitimate users out. Callers that care
whether a write landed branch on the returned result explicitly.

Store layout (prefix configurable, default "blacklist"):
- ``blacklist:{ip}``                    IP blacklist entry (value: reason)
- ``blacklist:{jti}``                   token blacklist entry (value: reason)
- ``blacklist:user:{subject}``          user-wide revocation timestamp
- ``blacklist:attempts:{type}:{ip}``    attempt counter
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Literal, Mapping

from freereads.adapters.store.base import AbstractKeyValueStore, StoreError
from freereads.core.config import BlacklistSettings

logger = logging.getLogger(__name__)


class AttemptType(str, Enum):
    """Independently counted kinds of suspicious activity."""

    LOGIN = "login"
    API = "api"
    REFRESH = "refresh"
    APPROACHING_LIMIT = "approaching-limit"


@dataclass(frozen=True)
class BlacklistStatus:
    """Outcome of an IP lookup."""

    blocked: bool
    remaining_seconds: int = 0


@dataclass(frozen=True)
class AttemptResult:
    """Outcome of recording one failed attempt.

    Attributes:
        attempts: Counter value for the current window.
        attempts_left: Attempts before the IP gets blacklisted (0 once blocked).
        blacklisted: Whether the IP is blacklisted after this call.
    """

    attempts: int
    attempts_left: int
    blacklisted: bool = False


@dataclass(frozen=True)
class LedgerResult:
    """Explicit success/failure of a ledger write."""

    status: Literal["done", "failed"]
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "done"

    @classmethod
    def done(cls, message: str | None = None) -> "LedgerResult":
        return cls(status="done", message=message)

    @classmethod
    def failed(cls, message: str) -> "LedgerResult":
        return cls(status="failed", message=message)


class BlacklistService:
    """Tracks blocked IPs, revoked token ids and failed-attempt counters."""

    def __init__(
        self,
        store: AbstractKeyValueStore,
        config: BlacklistSettings,
        *,
        user_revocation_ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the ledger.

        Args:
            store: Shared key-value store.
            config: Blacklist durations, prefixes and attempt maxima.
            user_revocation_ttl_seconds: Lifetime of a user-wide revocation
                marker; the refresh-token lifetime, so every covered token
                expires before the marker does.
            clock: Time source function returning UNIX time in seconds.
        """
        self._store = store
        self._config = config
        self._user_revocation_ttl = user_revocation_ttl_seconds
        self._clock = clock
        self._max_attempts = {
            AttemptType.LOGIN: config.max_login_attempts,
            AttemptType.API: config.max_api_abuse,
            AttemptType.REFRESH: config.max_refresh_attempts,
            AttemptType.APPROACHING_LIMIT: config.max_approaching_limit,
        }

    def _key(self, *parts: str) -> str:
        return ":".join((self._config.prefix, *parts))

    def max_attempts(self, attempt_type: AttemptType) -> int:
        return self._max_attempts[attempt_type]

    async def is_ip_blacklisted(self, ip: str) -> BlacklistStatus:
        """Check whether an IP is currently blocked.

        Returns:
            BlacklistStatus; the remaining time is the entry's store TTL.
        """
        if not self._store.is_ready():
            return BlacklistStatus(blocked=False)

        key = self._key(ip)
        try:
            if await self._store.get(key) is None:
                return BlacklistStatus(blocked=False)
            ttl = await self._store.ttl(key)
        except StoreError as exc:
            logger.error("ledger.lookup_failed", extra={"ip": ip, "error_msg": str(exc)})
            return BlacklistStatus(blocked=False)

        return BlacklistStatus(blocked=True, remaining_seconds=max(ttl, 0))

    async def blacklist_ip(self, ip: str, reason: str) -> LedgerResult:
        """Block an IP for the configured duration (idempotent upsert)."""
        if not self._store.is_ready():
            return LedgerResult.failed("store unavailable")

        try:
            await self._store.set(self._key(ip), reason, self._config.duration_seconds)
        except StoreError as exc:
            logger.error("ledger.blacklist_ip_failed", extra={"ip": ip, "error_msg": str(exc)})
            return LedgerResult.failed(f"IP {ip} could not be blacklisted")

        logger.warning(
            "ledger.ip_blacklisted",
            extra={"ip": ip, "reason": reason, "duration_s": self._config.duration_seconds},
        )
        return LedgerResult.done()

    async def blacklist_token(self, payload: Mapping[str, Any], reason: str) -> LedgerResult:
        """Revoke a token by its jti until the token's own expiry.

        The entry never outlives the signature: TTL = ``exp - now`` (>= 0).
        A token that is already expired needs no entry.

        Returns:
            LedgerResult; never raises, callers decide whether failure matters.
        """
        jti = payload.get("jti")
        if not jti:
            return LedgerResult.failed("token has no jti")

        ttl = max(0, int(payload.get("exp", 0) - self._clock()))
        if ttl == 0:
            return LedgerResult.done("token already expired")

        if not self._store.is_ready():
            return LedgerResult.failed("store unavailable")

        try:
            await self._store.set(self._key(str(jti)), reason, ttl)
        except StoreError as exc:
            logger.warning("ledger.blacklist_token_failed", extra={"jti": jti, "error_msg": str(exc)})
            return LedgerResult.failed("token could not be blacklisted")

        logger.info(
            "ledger.token_blacklisted",
            extra={"jti": jti, "subject": payload.get("sub"), "reason": reason, "ttl_s": ttl},
        )
        return LedgerResult.done()

    async def blacklist_all_tokens(self, subject: str, reason: str) -> LedgerResult:
        """Revoke every token of a subject issued up to now."""
        if not self._store.is_ready():
            return LedgerResult.failed("store unavailable")

        try:
            await self._store.set(
                self._key("user", subject), str(self._clock()), self._user_revocation_ttl
            )
        except StoreError as exc:
            logger.warning(
                "ledger.blacklist_user_failed", extra={"subject": subject, "error_msg": str(exc)}
            )
            return LedgerResult.failed("tokens could not be blacklisted")

        logger.info("ledger.user_tokens_blacklisted", extra={"subject": subject, "reason": reason})
        return LedgerResult.done()

    async def is_token_blacklisted(self, payload: Mapping[str, Any]) -> bool:
        """Whether the token's jti, or its whole subject, has been revoked."""
        jti = payload.get("jti")
        if not jti or not self._store.is_ready():
            return False

        try:
            if await self._store.get(self._key(str(jti))) is not None:
                return True
            subject = payload.get("sub")
            if not subject:
                return False
            revoked_at = await self._store.get(self._key("user", str(subject)))
        except StoreError as exc:
            logger.error("ledger.lookup_failed", extra={"jti": jti, "error_msg": str(exc)})
            return False

        if revoked_at is None:
            return False
        return float(payload.get("iat", 0)) <= float(revoked_at)

    async def record_attempt(
        self, ip: str, attempt_type: AttemptType, max_attempts: int
    ) -> AttemptResult:
        """Count one failed attempt and blacklist the IP at the threshold.

        An IP that is already blacklisted short-circuits without growing the
        counter. The first increment of a window sets the window TTL; counters
        only ever reset by expiring.

        Args:
            ip: Client IP address.
            attempt_type: Counter to increment.
            max_attempts: Attempts allowed before blacklisting.

        Returns:
            AttemptResult; zero attempts and not blacklisted if the store is down.
        """
        unblocked = AttemptResult(attempts=0, attempts_left=max_attempts)
        if not self._store.is_ready():
            return unblocked

        attempt_key = self._key("attempts", attempt_type.value, ip)
        try:
            if await self._store.get(self._key(ip)) is not None:
                current = await self._store.get(attempt_key)
                return AttemptResult(
                    attempts=int(current or 0), attempts_left=0, blacklisted=True
                )

            attempts = await self._store.incr(attempt_key)
            if attempts == 1:
                await self._store.expire(attempt_key, self._config.attempt_reset_seconds)
        except StoreError as exc:
            logger.error(
                "ledger.record_attempt_failed",
                extra={"ip": ip, "attempt_type": attempt_type.value, "error_msg": str(exc)},
            )
            return unblocked

        if attempts >= max_attempts:
            await self.blacklist_ip(ip, f"Too many {attempt_type.value} attempts")
            return AttemptResult(attempts=attempts, attempts_left=0, blacklisted=True)

        logger.info(
            "ledger.attempt_recorded",
            extra={"ip": ip, "attempt_type": attempt_type.value, "attempts": attempts},
        )
        return AttemptResult(attempts=attempts, attempts_left=max_attempts - attempts)

    async def record_failed_login(self, ip: str) -> AttemptResult:
        return await self.record_attempt(ip, AttemptType.LOGIN, self.max_attempts(AttemptType.LOGIN))

    async def record_failed_api(self, ip: str) -> AttemptResult:
        return await self.record_attempt(ip, AttemptType.API, self.max_attempts(AttemptType.API))

    async def record_failed_refresh(self, ip: str) -> AttemptResult:
        return await self.record_attempt(
            ip, AttemptType.REFRESH, self.max_attempts(AttemptType.REFRESH)
        )

    async def record_approaching_limit(self, ip: str) -> AttemptResult:
        return await self.record_attempt(
            ip, AttemptType.APPROACHING_LIMIT, self.max_attempts(AttemptType.APPROACHING_LIMIT)
        )
