"""User directory collaborator used by the login flow.

Durable account storage lives outside this service; the directory creates
accounts and answers "who is this, and is the password right?". The in-memory
implementation hashes passwords with Argon2id and keeps accounts for the life
of the process.
"""

from __future__ import annotations

import functools
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError

from freereads.core.errors import AppError, ErrorKind

logger = logging.getLogger(__name__)

# Argon2id, 64 MiB memory, 3 iterations
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


@dataclass(frozen=True)
class Identity:
    """Authenticated principal carried in token claims."""

    id: str
    role: str = "user"


def hash_password(password: str) -> str:
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        return ph.verify(password_hash, password)
    except (VerificationError, InvalidHashError):
        return False


@functools.cache
def _dummy_hash() -> str:
    return hash_password("freereads-dummy-password")


class AbstractUserDirectory(ABC):
    """Creates accounts and looks them up by credentials or id."""

    @abstractmethod
    async def register(self, email: str, password: str) -> Identity:
        """Create an account with the default role.

        Raises:
            AppError: ``email_taken`` when the email already has an account.
        """

    @abstractmethod
    async def authenticate(self, email: str, password: str) -> Identity | None:
        """Return the identity for valid credentials, None otherwise."""

    @abstractmethod
    async def get(self, user_id: str) -> Identity | None:
        """Return the identity for a user id, None when unknown."""


@dataclass
class _Account:
    identity: Identity
    email: str
    password_hash: str


class InMemoryUserDirectory(AbstractUserDirectory):
    """Process-local accounts keyed by lower-cased email."""

    def __init__(self) -> None:
        self._by_email: dict[str, _Account] = {}
        self._by_id: dict[str, _Account] = {}

    def add_user(self, user_id: str, email: str, password: str, role: str = "user") -> Identity:
        """Store an account under a caller-chosen id (seeding, tests).

        Raises:
            AppError: ``email_taken`` when the email already has an account.
        """
        normalized = email.strip().lower()
        if normalized in self._by_email:
            raise AppError(kind=ErrorKind.EMAIL_TAKEN)
        account = _Account(
            identity=Identity(id=user_id, role=role),
            email=normalized,
            password_hash=hash_password(password),
        )
        self._by_email[account.email] = account
        self._by_id[user_id] = account
        return account.identity

    async def register(self, email: str, password: str) -> Identity:
        identity = self.add_user(str(uuid.uuid4()), email, password)
        logger.info("directory.account_created", extra={"subject": identity.id})
        return identity

    async def authenticate(self, email: str, password: str) -> Identity | None:
        account = self._by_email.get(email.strip().lower())
        if account is None:
            # Same hashing cost as a wrong password
            verify_password(password, _dummy_hash())
            return None
        if not verify_password(password, account.password_hash):
            return None
        return account.identity

    async def get(self, user_id: str) -> Identity | None:
        account = self._by_id.get(user_id)
        return account.identity if account else None

