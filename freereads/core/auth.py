"""Route-level authentication dependencies.

The security pipeline already verified (or failed to verify) the bearer
token; these dependencies turn its outcome into something a route can use:

- get_services: the process-wide service container
- get_context: the pipeline's RequestContext for this request
- require_user: the verified identity, or the recorded token error (401)

Usage:
    @router.get("/me")
    async def me(user: Identity = Depends(require_user)): ...
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import Depends, Request

from freereads.core.container import ServiceContainer
from freereads.core.errors import ErrorKind, token_error
from freereads.core.pipeline import RequestContext
from freereads.services.user_directory import Identity

logger = logging.getLogger(__name__)

# Rejections that look like forged or replayed credentials
_ABUSIVE_TOKEN_ERRORS = frozenset({ErrorKind.TOKEN_INVALID, ErrorKind.TOKEN_BLACKLISTED})


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_context(request: Request) -> RequestContext:
    """Return the pipeline context, building a bare one for exempt paths."""
    ctx = getattr(request.state, "context", None)
    if ctx is None:
        ctx = RequestContext.from_request(request)
    return ctx


async def require_user(
    ctx: Annotated[RequestContext, Depends(get_context)],
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> Identity:
    """FastAPI dependency requiring a verified identity.

    Raises:
        AppError: The token error recorded by the pipeline, ``missing`` when
            no bearer token was sent. Invalid or blacklisted tokens also count
            as API abuse for the client IP.
    """
    if ctx.user is not None:
        return ctx.user

    kind = ctx.auth_error or ErrorKind.TOKEN_MISSING
    if kind in _ABUSIVE_TOKEN_ERRORS:
        await services.ledger.record_failed_api(ctx.ip)
    logger.info("auth.rejected", extra={"reason": kind.value, "request_path": ctx.path})
    raise token_error(kind)
