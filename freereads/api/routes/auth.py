from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from freereads.core.auth import get_context, get_services, require_user
from freereads.core.container import ServiceContainer
from freereads.core.errors import ErrorKind, token_error
from freereads.core.pipeline import RequestContext
from freereads.schemas.auth import (
    LoginRequest,
    MeResponse,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
)
from freereads.services.token_service import TokenPair
from freereads.services.user_directory import Identity

router = APIRouter(prefix="/auth", tags=["Auth"])

Services = Annotated[ServiceContainer, Depends(get_services)]
Context = Annotated[RequestContext, Depends(get_context)]


def _pair_response(pair: TokenPair, services: ServiceContainer) -> TokenPairResponse:
    return TokenPairResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type=pair.token_type,
        expires_in=services.settings.auth.access_ttl_seconds,
    )


@router.post("/register", response_model=TokenPairResponse, status_code=201)
async def register(body: RegisterRequest, ctx: Context, services: Services) -> TokenPairResponse:
    """Create an account and return its first token pair."""
    pair = await services.sessions.register(body.email, body.password, ctx.ip)
    return _pair_response(pair, services)


@router.post("/login", response_model=TokenPairResponse)
async def login(body: LoginRequest, ctx: Context, services: Services) -> TokenPairResponse:
    """Exchange credentials for a token pair.

    Each failure counts against the client IP; after the configured number of
    failures the IP is blacklisted.
    """
    pair = await services.sessions.login(body.email, body.password, ctx.ip)
    return _pair_response(pair, services)


@router.post("/refresh", response_model=TokenPairResponse)
async def refresh(body: RefreshRequest, ctx: Context, services: Services) -> TokenPairResponse:
    """Rotate a refresh token. Each refresh token works exactly once."""
    pair = await services.sessions.refresh(body.refresh_token, ctx.ip)
    return _pair_response(pair, services)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    user: Annotated[Identity, Depends(require_user)], ctx: Context, services: Services
) -> MessageResponse:
    await services.sessions.logout(ctx.claims or {})
    return MessageResponse(message="Logged out.")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    user: Annotated[Identity, Depends(require_user)], ctx: Context, services: Services
) -> MessageResponse:
    """Sign the user out of every device."""
    await services.sessions.logout_everywhere(ctx.claims or {})
    return MessageResponse(message="Logged out from all devices.")


@router.get("/me", response_model=MeResponse)
async def me(user: Annotated[Identity, Depends(require_user)], services: Services) -> MeResponse:
    account = await services.directory.get(user.id)
    if account is None:
        # Token outlived its account
        raise token_error(ErrorKind.TOKEN_INVALID)
    return MeResponse(id=account.id, role=account.role)
