"""Registration, login, refresh and logout flows.

Orchestrates the user directory, token service and abuse ledger. Failed
credentials and failed refreshes are counted per IP so brute force ends in a
blacklist entry.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from freereads.core.errors import AppError, ErrorKind, token_error
from freereads.services.blacklist_service import BlacklistService
from freereads.services.token_service import TokenPair, TokenService, TokenType
from freereads.services.user_directory import AbstractUserDirectory

logger = logging.getLogger(__name__)


class SessionService:
    def __init__(
        self,
        directory: AbstractUserDirectory,
        tokens: TokenService,
        ledger: BlacklistService,
    ) -> None:
        self._directory = directory
        self._tokens = tokens
        self._ledger = ledger

    async def register(self, email: str, password: str, ip: str) -> TokenPair:
        """Create an account and sign it in.

        Raises:
            AppError: ``email_taken`` for a known email, or ``token_storage``
                when the pair cannot be stored.
        """
        identity = await self._directory.register(email, password)
        pair = await self._tokens.issue_token_pair(identity)
        logger.info("auth.registered", extra={"subject": identity.id, "ip": ip})
        return pair

    async def login(self, email: str, password: str, ip: str) -> TokenPair:
        """Authenticate credentials and issue a token pair.

        Raises:
            AppError: ``invalid_credentials`` with the attempts left, or
                ``token_storage`` when the pair cannot be stored.
        """
        identity = await self._directory.authenticate(email, password)
        if identity is None:
            attempt = await self._ledger.record_failed_login(ip)
            logger.warning(
                "auth.login_failed",
                extra={"ip": ip, "attempts": attempt.attempts, "blacklisted": attempt.blacklisted},
            )
            raise AppError(
                kind=ErrorKind.INVALID_CREDENTIALS,
                details={"attempts_left": attempt.attempts_left},
            )

        pair = await self._tokens.issue_token_pair(identity)
        logger.info("auth.login_succeeded", extra={"subject": identity.id, "ip": ip})
        return pair

    async def refresh(self, refresh_token: str, ip: str) -> TokenPair:
        """Rotate a refresh token; the consumed token is blacklisted.

        Raises:
            AppError: a token error (each one counted as a failed refresh) or
                ``token_storage``.
        """
        try:
            payload = self._tokens.verify_token(refresh_token, TokenType.REFRESH)
            if await self._ledger.is_token_blacklisted(payload):
                raise token_error(ErrorKind.TOKEN_BLACKLISTED)
            pair = await self._tokens.refresh_access_token(refresh_token)
        except AppError as exc:
            if exc.is_token_error:
                await self._ledger.record_failed_refresh(ip)
                logger.warning("auth.refresh_rejected", extra={"ip": ip, "reason": exc.code})
            raise

        result = await self._ledger.blacklist_token(payload, "Token refreshed")
        if not result.ok:
            logger.warning(
                "auth.old_token_not_blacklisted",
                extra={"jti": payload.get("jti"), "reason": result.message},
            )
        return pair

    async def logout(self, claims: Mapping[str, Any]) -> None:
        """End the session behind an access token's claims.

        Always succeeds from the client's point of view; a ledger failure is
        only logged.
        """
        result = await self._ledger.blacklist_token(claims, "User logged out")
        if not result.ok:
            logger.warning(
                "auth.logout_blacklist_failed",
                extra={"jti": claims.get("jti"), "reason": result.message},
            )
        await self._tokens.revoke(claims)
        logger.info("auth.logged_out", extra={"subject": claims.get("sub")})

    async def logout_everywhere(self, claims: Mapping[str, Any]) -> None:
        """Revoke every token the subject holds."""
        subject = str(claims.get("sub"))
        result = await self._ledger.blacklist_all_tokens(subject, "User logged out everywhere")
        if not result.ok:
            logger.warning(
                "auth.logout_all_failed", extra={"subject": subject, "reason": result.message}
            )
        await self._tokens.revoke(claims)
        logger.info("auth.logged_out_everywhere", extra={"subject": subject})
