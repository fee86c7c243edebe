"""Security pipeline in front of the route handlers.

Every non-exempt request flows through four stages, each taking and returning
an immutable ``RequestContext``:

1. ``check_blacklist``: reject blacklisted IPs early (429).
2. ``load_identity``: optional authentication; a bad token is recorded on the
   context instead of failing, so anonymous routes keep working.
3. ``slow_down``: progressive delay.
4. ``limit``: hard rate limit (429).

The final context is exposed to handlers as ``request.state.context``.

Usage:
    app.middleware("http")(security_pipeline_middleware)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Mapping

from fastapi import Request, Response

from freereads.adapters.rate_limit import RateLimitResult
from freereads.core.config import parse_csv
from freereads.core.container import ServiceContainer
from freereads.core.errors import AppError, ErrorKind
from freereads.core.exception_handlers import build_error_response
from freereads.services.token_service import TokenType
from freereads.services.traffic_control import normalize_ip
from freereads.services.user_directory import Identity

logger = logging.getLogger(__name__)

UNKNOWN_IP = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """What the pipeline knows about a request."""

    ip: str
    path: str
    method: str
    authorization: str | None = None
    user: Identity | None = None
    claims: Mapping[str, Any] | None = None
    auth_error: ErrorKind | None = None
    delay_ms: int = 0
    rate_limit: RateLimitResult | None = None

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        host = request.client.host if request.client else None
        return cls(
            ip=normalize_ip(host) or host or UNKNOWN_IP,
            path=request.url.path,
            method=request.method,
            authorization=request.headers.get("Authorization"),
        )

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None


Stage = Callable[[RequestContext, ServiceContainer], Awaitable[RequestContext]]


async def check_blacklist(ctx: RequestContext, services: ServiceContainer) -> RequestContext:
    status = await services.ledger.is_ip_blacklisted(ctx.ip)
    if status.blocked:
        logger.warning(
            "pipeline.ip_blacklisted",
            extra={"ip": ctx.ip, "path": ctx.path, "remaining_s": status.remaining_seconds},
        )
        raise AppError(
            kind=ErrorKind.IP_BLACKLISTED,
            details={
                "remaining_seconds": status.remaining_seconds,
                "retry_after": max(1, status.remaining_seconds),
            },
        )
    return ctx


async def load_identity(ctx: RequestContext, services: ServiceContainer) -> RequestContext:
    """Attach the verified identity, or the reason it could not be verified."""
    token = services.tokens.extract_token(ctx.authorization)
    if token is None:
        return ctx

    try:
        claims = services.tokens.verify_token(token, TokenType.ACCESS)
    except AppError as exc:
        return replace(ctx, auth_error=exc.kind)

    if await services.ledger.is_token_blacklisted(claims):
        return replace(ctx, auth_error=ErrorKind.TOKEN_BLACKLISTED)

    user = Identity(id=str(claims["sub"]), role=str(claims.get("role", "user")))
    return replace(ctx, user=user, claims=claims)


async def slow_down(ctx: RequestContext, services: ServiceContainer) -> RequestContext:
    decision = await services.traffic.slow_down(ctx.ip, ctx.path, ctx.user_id)
    if decision is None:
        return ctx
    return replace(ctx, delay_ms=decision.delay_ms)


async def limit(ctx: RequestContext, services: ServiceContainer) -> RequestContext:
    result = await services.traffic.limit(ctx.ip, ctx.path, ctx.user_id)
    return replace(ctx, rate_limit=result)


STAGES: tuple[Stage, ...] = (check_blacklist, load_identity, slow_down, limit)


async def run_pipeline(ctx: RequestContext, services: ServiceContainer) -> RequestContext:
    for stage in STAGES:
        ctx = await stage(ctx, services)
    return ctx


def is_exempt(path: str, exempt_paths: list[str]) -> bool:
    """Whether a path skips the pipeline (exact match or sub-path)."""
    for exempt in exempt_paths:
        base = exempt.rstrip("/")
        if path == exempt or path.startswith(base + "/"):
            return True
    return False


def rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


async def security_pipeline_middleware(request: Request, call_next) -> Response:
    """HTTP middleware running the security stages before routing.

    Errors raised here happen outside the router, so they are rendered
    directly instead of going through the registered exception handlers.

    Args:
        request: The incoming HTTP request object.
        call_next: The next middleware/route handler in the stack.

    Returns:
        Response: The handler response, or the error response of the stage
            that stopped the request.
    """
    services: ServiceContainer = request.app.state.services
    config = services.settings.rate_limit

    if is_exempt(request.url.path, parse_csv(config.exempt_paths)):
        return await call_next(request)

    try:
        ctx = await run_pipeline(RequestContext.from_request(request), services)
    except AppError as exc:
        logger.warning(
            "pipeline.rejected",
            extra={"error_code": exc.code, "status_code": exc.status_code, "request_path": request.url.path},
        )
        return build_error_response(exc)

    request.state.context = ctx
    response: Response = await call_next(request)

    if config.include_headers and ctx.rate_limit is not None:
        response.headers.update(rate_limit_headers(ctx.rate_limit))
    return response
