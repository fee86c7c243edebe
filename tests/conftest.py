"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests.
It sets the TESTING environment variable to prevent loading the .env file
and provides the JWT secrets the global settings require.
"""

import os

# CRITICAL: Set this before any imports that might load settings
# This prevents Pydantic from loading the .env file in tests
os.environ["TESTING"] = "true"

# Set default env vars that all tests might need
os.environ.setdefault("JWT_ACCESS_SECRET", "test-access-secret-0123456789abcdef")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-refresh-secret-0123456789abcdef")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from freereads.adapters.store import InMemoryKeyValueStore
from freereads.core.app_factory import create_app
from freereads.core.config import (
    AuthSettings,
    BlacklistSettings,
    RateLimitSettings,
    Settings,
    SpeedLimitSettings,
)
from freereads.core.container import ServiceContainer, build_services
from freereads.services.blacklist_service import BlacklistService
from freereads.services.token_service import TokenService
from freereads.services.user_directory import InMemoryUserDirectory

ACCESS_SECRET = "test-access-secret-0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef"

TEST_EMAIL = "reader@freereads.test"
TEST_PASSWORD = "correct horse battery staple"


@pytest.fixture
def clock() -> Mock:
    """Controllable UNIX clock; set ``clock.return_value`` to move time."""
    return Mock(return_value=1_000_000.0)


@pytest.fixture
def store(clock: Mock) -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore(clock=clock)


@pytest.fixture
def auth_settings() -> AuthSettings:
    return AuthSettings(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)


@pytest.fixture
def blacklist_settings() -> BlacklistSettings:
    return BlacklistSettings()


@pytest.fixture
def ledger(store: InMemoryKeyValueStore, blacklist_settings: BlacklistSettings, clock: Mock) -> BlacklistService:
    return BlacklistService(
        store,
        blacklist_settings,
        user_revocation_ttl_seconds=7 * 24 * 60 * 60,
        clock=clock,
    )


@pytest.fixture
def token_service(auth_settings: AuthSettings) -> TokenService:
    # Real clock: PyJWT checks exp against wall time
    return TokenService(InMemoryKeyValueStore(), auth_settings)


@pytest.fixture
def directory() -> InMemoryUserDirectory:
    users = InMemoryUserDirectory()
    users.add_user("user-1", TEST_EMAIL, TEST_PASSWORD, role="member")
    return users


@pytest.fixture
def app_settings(auth_settings: AuthSettings) -> Settings:
    """Small budgets so limits are reachable; delays flattened to zero."""
    return Settings(
        auth=auth_settings,
        rate_limit=RateLimitSettings(strict=5, default=8, authenticated=12, trusted_ips=""),
        speed_limit=SpeedLimitSettings(min_delay_ms=0, max_delay_ms=0, warn_percent=100),
        blacklist=BlacklistSettings(),
    )


@pytest.fixture
def services(app_settings: Settings, directory: InMemoryUserDirectory) -> ServiceContainer:
    return build_services(app_settings, store=InMemoryKeyValueStore(), directory=directory)


@pytest.fixture
def client(services: ServiceContainer):
    with TestClient(create_app(services)) as test_client:
        yield test_client
