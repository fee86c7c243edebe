"""Pydantic schemas for the session endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Credentials submitted to the login endpoint."""

    email: str = Field(
        ..., min_length=3, max_length=254, description="Account email address."
    )
    password: str = Field(
        ..., min_length=1, max_length=1024, description="Account password."
    )


class RegisterRequest(BaseModel):
    """New account credentials."""

    email: str = Field(
        ..., min_length=3, max_length=254, description="Account email address."
    )
    password: str = Field(
        ..., min_length=8, max_length=1024, description="Account password, at least 8 characters."
    )


class RefreshRequest(BaseModel):
    refresh_token: str = Field(
        ..., min_length=1, description="Refresh token returned by login or a previous refresh."
    )


class TokenPairResponse(BaseModel):
    """A freshly issued access/refresh pair."""

    access_token: str = Field(..., description="Short-lived bearer token for API calls.")
    refresh_token: str = Field(..., description="Single-use token exchanged for a new pair.")
    token_type: str = Field(default="bearer", description="Always 'bearer'.")
    expires_in: int = Field(..., description="Access token lifetime in seconds.")


class MessageResponse(BaseModel):
    message: str


class MeResponse(BaseModel):
    """Identity carried by the current access token."""

    id: str = Field(..., description="User id (token subject).")
    role: str = Field(..., description="User role.")
