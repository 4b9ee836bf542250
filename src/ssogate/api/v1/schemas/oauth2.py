# OAuth2 schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, Field


class TokenResponse(BaseModel):
    """RFC 6749 §5.1 access token response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: str | None = None


class OAuth2ErrorResponse(BaseModel):
    """RFC 6749 §5.2 error response."""

    error: str
    error_description: str | None = None


class TokenInfoResponse(BaseModel):
    """Token introspection response (Google tokeninfo style)."""

    user_id: str | None = None
    client_id: str
    scope: str = Field("", description="Space-delimited granted scopes")
    expires_in: int


class RevokeRequest(BaseModel):
    """Token revocation request."""

    token: str


class RevokeResponse(BaseModel):
    revoked: bool


class MeResponse(BaseModel):
    """Identity behind a bearer token."""

    user_id: str | None = None
    client_id: str
    scope: list[str]


class CasProfileResponse(BaseModel):
    """CAS OAuth profile: the user id plus its attributes."""

    id: str
    attributes: dict[str, str] = Field(default_factory=dict)
