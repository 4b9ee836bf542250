# OAuth2 data models.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from ssogate.api.oauth2.scopes import parse_scope, restrict_to_allowed


class GrantType(str, Enum):
    """Token endpoint grant types."""

    AUTHORIZATION_CODE = "authorization_code"
    PASSWORD = "password"
    CLIENT_CREDENTIALS = "client_credentials"
    REFRESH_TOKEN = "refresh_token"


class ResponseType(str, Enum):
    """Authorization endpoint response types."""

    CODE = "code"  # authorization code grant
    TOKEN = "token"  # implicit grant


class TransactionState(str, Enum):
    INITIATED = "initiated"
    AWAITING_DECISION = "awaiting_decision"
    ALLOWED = "allowed"
    DENIED = "denied"


@dataclass(frozen=True)
class Client:
    """Registered OAuth2 client.

    ``redirect_uri`` is a prefix: a redirect URI is accepted when it starts
    with it. ``None`` accepts any redirect URI.
    """

    id: str
    name: str
    secret: str = ""
    redirect_uri: str | None = None
    allowed_scopes: list[str] = field(default_factory=lambda: ["*"])
    trusted: bool = False

    def has_allowed_scopes(self, required: str | list[str] | None) -> bool:
        """True when every scope in *required* may be granted to this client."""
        required = parse_scope(required)
        return restrict_to_allowed(self.allowed_scopes, required) == required

    def accepts_redirect_uri(self, redirect_uri: str | None) -> bool:
        if self.redirect_uri is None:
            return True
        return bool(redirect_uri) and redirect_uri.startswith(self.redirect_uri)


@dataclass(frozen=True)
class User:
    """Authenticated end user (resource owner)."""

    id: str
    username: str = ""
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class AuthorizationCode:
    """Single-use authorization code bound to client, redirect URI and user."""

    code: str
    client_id: str
    redirect_uri: str
    user_id: str
    scope: list[str]
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class AccessToken:
    """Bearer access token. ``user_id`` is None for client credentials."""

    token: str
    expires_at: datetime
    user_id: str | None
    client_id: str
    scope: list[str]

    def expires_in(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return max(0, int((self.expires_at - now).total_seconds()))

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or datetime.now(UTC)) >= self.expires_at


@dataclass(frozen=True)
class RefreshToken:
    """Refresh token. Never expires; lives until revoked."""

    token: str
    user_id: str | None
    client_id: str
    scope: list[str]


@dataclass(frozen=True)
class TokenGrant:
    """Result of a successful grant or exchange."""

    access_token: str
    expires_in: int
    refresh_token: str | None = None
    token_type: str = "Bearer"

    def to_dict(self) -> dict:
        body = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
        }
        if self.refresh_token:
            body["refresh_token"] = self.refresh_token
        return body


@dataclass(frozen=True)
class TokenInfo:
    """Token introspection result for the tokeninfo endpoint."""

    user_id: str | None
    client_id: str
    scope: list[str]
    expires_in: int


@dataclass
class TokenRequest:
    """Normalized token endpoint request, after client authentication."""

    client: Client
    grant_type: GrantType = GrantType.AUTHORIZATION_CODE
    code: str | None = None
    redirect_uri: str | None = None
    username: str | None = None
    password: str | None = None
    refresh_token: str | None = None
    scope: list[str] = field(default_factory=list)


@dataclass
class AuthorizationTransaction:
    """A pending authorization request awaiting the user's decision."""

    id: str
    client: Client
    redirect_uri: str
    scope: list[str]
    response_type: ResponseType
    user_id: str
    state: str = ""
    status: TransactionState = TransactionState.INITIATED


@dataclass(frozen=True)
class AuthorizationResponse:
    """Outcome of a resolved authorization transaction: where to send the user."""

    redirect_url: str
    allowed: bool
