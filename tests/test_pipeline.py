"""Unit tests for the security pipeline stages."""

from dataclasses import FrozenInstanceError

import pytest

from freereads.core.config import RateLimitSettings, Settings
from freereads.core.container import ServiceContainer, build_services
from freereads.core.errors import AppError, ErrorKind
from freereads.core.pipeline import (
    RequestContext,
    check_blacklist,
    is_exempt,
    load_identity,
    run_pipeline,
)
from freereads.services.token_service import TokenType
from freereads.services.user_directory import Identity

CLIENT_IP = "203.0.113.7"


def _ctx(authorization: str | None = None, ip: str = CLIENT_IP, path: str = "/api/v1/books") -> RequestContext:
    return RequestContext(ip=ip, path=path, method="GET", authorization=authorization)


def test_context_is_immutable() -> None:
    ctx = _ctx()

    with pytest.raises(FrozenInstanceError):
        ctx.ip = "198.51.100.1"  # type: ignore[misc]


@pytest.mark.parametrize(
    ("path", "exempt"),
    [
        ("/health", True),
        ("/docs", True),
        ("/docs/oauth2-redirect", True),
        ("/healthz", False),
        ("/api/v1/auth/login", False),
    ],
)
def test_is_exempt(path: str, exempt: bool) -> None:
    assert is_exempt(path, ["/health", "/docs", "/openapi.json"]) is exempt


@pytest.mark.asyncio
async def test_blacklisted_ip_is_rejected(services: ServiceContainer) -> None:
    await services.ledger.blacklist_ip(CLIENT_IP, "manual")

    with pytest.raises(AppError) as exc_info:
        await check_blacklist(_ctx(), services)

    assert exc_info.value.kind is ErrorKind.IP_BLACKLISTED
    assert exc_info.value.details["remaining_seconds"] > 0


@pytest.mark.asyncio
async def test_load_identity_without_token_is_anonymous(services: ServiceContainer) -> None:
    ctx = await load_identity(_ctx(), services)

    assert ctx.user is None
    assert ctx.auth_error is None


@pytest.mark.asyncio
async def test_load_identity_records_token_error(services: ServiceContainer) -> None:
    ctx = await load_identity(_ctx("Bearer garbage"), services)

    assert ctx.user is None
    assert ctx.auth_error is ErrorKind.TOKEN_INVALID


@pytest.mark.asyncio
async def test_load_identity_attaches_user_and_claims(services: ServiceContainer) -> None:
    pair = await services.tokens.issue_token_pair(Identity(id="user-1", role="member"))

    ctx = await load_identity(_ctx(f"Bearer {pair.access_token}"), services)

    assert ctx.user == Identity(id="user-1", role="member")
    assert ctx.claims["type"] == "access"
    assert ctx.user_id == "user-1"


@pytest.mark.asyncio
async def test_load_identity_flags_blacklisted_token(services: ServiceContainer) -> None:
    pair = await services.tokens.issue_token_pair(Identity(id="user-1"))
    claims = services.tokens.verify_token(pair.access_token, TokenType.ACCESS)
    await services.ledger.blacklist_token(claims, "logout")

    ctx = await load_identity(_ctx(f"Bearer {pair.access_token}"), services)

    assert ctx.user is None
    assert ctx.auth_error is ErrorKind.TOKEN_BLACKLISTED


@pytest.mark.asyncio
async def test_full_pipeline_returns_enriched_context(services: ServiceContainer) -> None:
    ctx = await run_pipeline(_ctx(), services)

    assert ctx.rate_limit is not None
    assert ctx.rate_limit.limit == services.settings.rate_limit.default
    assert ctx.delay_ms == 0


@pytest.mark.asyncio
async def test_trusted_ip_skips_limits_but_not_blacklist(
    services: ServiceContainer, app_settings: Settings
) -> None:
    config = app_settings.model_copy(
        update={"rate_limit": RateLimitSettings(trusted_ips="127.0.0.1")}
    )
    trusted_services = build_services(config, store=services.store, directory=services.directory)

    ctx = await run_pipeline(_ctx(ip="127.0.0.1"), trusted_services)
    assert ctx.rate_limit is None

    await trusted_services.ledger.blacklist_ip("127.0.0.1", "manual")
    with pytest.raises(AppError):
        await run_pipeline(_ctx(ip="127.0.0.1"), trusted_services)
