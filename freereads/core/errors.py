"""Application-level error taxonomy.

Errors are tagged values: every ``AppError`` carries an ``ErrorKind`` and the
HTTP status is looked up from a single table, so the HTTP boundary maps kinds
exhaustively instead of walking an exception class hierarchy.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NotRequired, TypedDict


class ErrorKind(str, Enum):
    """Stable, machine-readable error discriminators."""

    TOKEN_MISSING = "missing"
    TOKEN_EXPIRED = "expired"
    TOKEN_INVALID = "invalid"
    TOKEN_BLACKLISTED = "blacklisted"
    TOKEN_STORAGE = "token_storage"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_TAKEN = "email_taken"
    RATE_LIMITED = "rate_limited"
    IP_BLACKLISTED = "ip_blacklisted"
    VALIDATION = "validation"


TOKEN_ERROR_KINDS = frozenset(
    {
        ErrorKind.TOKEN_MISSING,
        ErrorKind.TOKEN_EXPIRED,
        ErrorKind.TOKEN_INVALID,
        ErrorKind.TOKEN_BLACKLISTED,
    }
)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.TOKEN_MISSING: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.TOKEN_BLACKLISTED: 401,
    ErrorKind.TOKEN_STORAGE: 500,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.EMAIL_TAKEN: 409,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.IP_BLACKLISTED: 429,
    ErrorKind.VALIDATION: 400,
}

DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.TOKEN_MISSING: "Authentication required.",
    ErrorKind.TOKEN_EXPIRED: "Session expired. Please log in again.",
    ErrorKind.TOKEN_INVALID: "Invalid token. Please log in again.",
    ErrorKind.TOKEN_BLACKLISTED: "You have been signed out.",
    ErrorKind.TOKEN_STORAGE: "Failed to store authentication token.",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password.",
    ErrorKind.EMAIL_TAKEN: "An account with this email already exists. Try logging in instead.",
    ErrorKind.RATE_LIMITED: "You've hit the limit. Try again in a bit.",
    ErrorKind.IP_BLACKLISTED: "Too many requests. Try again later.",
    ErrorKind.VALIDATION: "Invalid request.",
}


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    hint: str
    limit: int
    tier: str
    retry_after: int
    remaining_seconds: int
    attempts_left: int
    request_id: str
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        kind: Discriminator selecting the HTTP status and client-facing code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    kind: ErrorKind
    message: str = ""
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        if not self.message:
            self.message = DEFAULT_MESSAGES[self.kind]
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.value

    @property
    def status_code(self) -> int:
        return STATUS_BY_KIND[self.kind]

    @property
    def is_token_error(self) -> bool:
        return self.kind in TOKEN_ERROR_KINDS


def token_error(kind: ErrorKind) -> AppError:
    """Build one of the four token errors (missing/expired/invalid/blacklisted)."""
    if kind not in TOKEN_ERROR_KINDS:
        raise ValueError(f"{kind!r} is not a token error kind")
    return AppError(kind=kind)
