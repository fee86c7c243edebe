"""JWT issuance, verification and single-use refresh rotation.

Every issued pair shares one ``jti`` and is backed by a token record
(``token:{jti}``) living as long as the refresh token. Rotation claims the
record by deleting it; a refresh token whose record is gone is invalid even
when its signature still verifies.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

import jwt
from jwt.exceptions import PyJWTError

from freereads.adapters.store.base import AbstractKeyValueStore, StoreError
from freereads.core.config import AuthSettings
from freereads.core.errors import AppError, ErrorKind, token_error
from freereads.services.user_directory import Identity

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenService:
    """Issues and verifies token pairs against the shared store."""

    def __init__(
        self,
        store: AbstractKeyValueStore,
        config: AuthSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the service.

        Args:
            store: Shared key-value store holding token records.
            config: Secrets, lifetimes and key prefix.
            clock: Time source for ``iat``/``exp`` claims.
        """
        self._store = store
        self._config = config
        self._clock = clock
        self._secrets = {
            TokenType.ACCESS: config.access_secret,
            TokenType.REFRESH: config.refresh_secret,
        }
        self._lifetimes = {
            TokenType.ACCESS: config.access_ttl_seconds,
            TokenType.REFRESH: config.refresh_ttl_seconds,
        }

    def _record_key(self, jti: str) -> str:
        return f"{self._config.prefix}:{jti}"

    def _sign(self, identity: Identity, jti: str, token_type: TokenType, issued_at: float) -> str:
        payload = {
            "jti": jti,
            "sub": identity.id,
            "role": identity.role,
            "type": token_type.value,
            "iat": issued_at,
            "exp": int(issued_at) + self._lifetimes[token_type],
        }
        return jwt.encode(payload, self._secrets[token_type], algorithm=self._config.algorithm)

    async def issue_token_pair(self, identity: Identity) -> TokenPair:
        """Persist a token record and sign an access/refresh pair.

        Raises:
            AppError: ``token_storage`` when the record cannot be written.
        """
        jti = str(uuid.uuid4())
        issued_at = self._clock()
        record = json.dumps({"jti": jti, "subject": identity.id, "issued_at": issued_at})

        try:
            await self._store.set(self._record_key(jti), record, self._config.refresh_ttl_seconds)
        except StoreError as exc:
            logger.error(
                "tokens.storage_failed",
                extra={"subject": identity.id, "error_type": type(exc).__name__, "error_msg": str(exc)},
            )
            raise AppError(kind=ErrorKind.TOKEN_STORAGE) from exc

        pair = TokenPair(
            access_token=self._sign(identity, jti, TokenType.ACCESS, issued_at),
            refresh_token=self._sign(identity, jti, TokenType.REFRESH, issued_at),
        )
        logger.info("tokens.issued", extra={"subject": identity.id, "jti": jti})
        return pair

    def verify_token(self, token: str, expected_type: TokenType) -> dict[str, Any]:
        """Check signature, expiry and token type.

        Does not consult the abuse ledger; callers check revocation separately.

        Raises:
            AppError: ``expired`` or ``invalid``.
        """
        try:
            payload = jwt.decode(
                token,
                self._secrets[expected_type],
                algorithms=[self._config.algorithm],
                options={"require": ["jti", "sub", "type", "iat", "exp"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise token_error(ErrorKind.TOKEN_EXPIRED) from exc
        except PyJWTError as exc:
            raise token_error(ErrorKind.TOKEN_INVALID) from exc

        if payload.get("type") != expected_type.value:
            raise token_error(ErrorKind.TOKEN_INVALID)
        return payload

    @staticmethod
    def extract_token(authorization: str | None) -> str | None:
        """Return the token of a ``Bearer <token>`` header, None otherwise."""
        if not authorization or not authorization.startswith(BEARER_PREFIX):
            return None
        token = authorization[len(BEARER_PREFIX):].strip()
        return token or None

    async def refresh_access_token(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token into a brand-new pair.

        The old token record is claimed by deleting it, so only one of several
        concurrent requests presenting the same refresh token can win. If the
        new pair cannot be stored, the old record is put back and the storage
        error is raised so the client can retry with its current token.

        Returns:
            A brand-new pair sharing a fresh jti.

        Raises:
            AppError: ``expired``/``invalid`` for bad or already used tokens,
                ``token_storage`` when the store fails.
        """
        payload = self.verify_token(refresh_token, TokenType.REFRESH)
        jti = str(payload["jti"])
        key = self._record_key(jti)

        try:
            record = await self._store.get(key)
            claimed = record is not None and await self._store.delete(key)
        except StoreError as exc:
            logger.error(
                "tokens.storage_failed",
                extra={"subject": payload.get("sub"), "jti": jti, "error_msg": str(exc)},
            )
            raise AppError(kind=ErrorKind.TOKEN_STORAGE) from exc

        if not claimed:
            logger.warning(
                "tokens.refresh_replayed", extra={"subject": payload.get("sub"), "jti": jti}
            )
            raise token_error(ErrorKind.TOKEN_INVALID)

        identity = Identity(id=str(payload["sub"]), role=str(payload.get("role", "user")))
        try:
            pair = await self.issue_token_pair(identity)
        except AppError:
            await self._restore_record(key, record, payload)
            raise

        logger.info("tokens.rotated", extra={"subject": identity.id, "old_jti": jti})
        return pair

    async def _restore_record(self, key: str, record: str, payload: Mapping[str, Any]) -> None:
        remaining = int(payload["exp"] - self._clock())
        if remaining <= 0:
            return
        try:
            await self._store.set(key, record, remaining)
        except StoreError as exc:
            logger.error("tokens.restore_failed", extra={"jti": payload.get("jti"), "error_msg": str(exc)})

    async def revoke(self, payload: Mapping[str, Any]) -> bool:
        """Delete the token record behind a payload (logout).

        Returns:
            Whether a record was removed; False also when the store fails.
        """
        jti = payload.get("jti")
        if not jti:
            return False
        try:
            removed = await self._store.delete(self._record_key(str(jti)))
        except StoreError as exc:
            logger.warning("tokens.revoke_failed", extra={"jti": jti, "error_msg": str(exc)})
            return False
        logger.info("tokens.revoked", extra={"jti": jti, "subject": payload.get("sub")})
        return removed
