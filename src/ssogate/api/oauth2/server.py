# OAuth2 Authorization Server: grant engine.
# Created: 2026-10-19
#
# Implements the authorization code, implicit, resource owner password,
# client credentials and refresh token grants (RFC 6749). One instance is
# built per process with its registry, store and credential verifier
# injected; request handlers receive it through app.state.

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from ssogate.api.oauth2.credentials import CredentialVerifier
from ssogate.api.oauth2.errors import (
    Denied,
    InvalidClientCredentials,
    InvalidCredentials,
    InvalidRequest,
    OAuth2Error,
    ReplayDetected,
    StoreFailure,
    UnknownAccessToken,
    UnknownClient,
    UnknownCode,
    UnknownRefreshToken,
    UnsupportedGrantType,
)
from ssogate.api.oauth2.models import (
    AccessToken,
    AuthorizationCode,
    Client,
    GrantType,
    RefreshToken,
    TokenGrant,
    TokenInfo,
    TokenRequest,
    User,
)
from ssogate.api.oauth2.registry import ClientRegistry, secrets_match
from ssogate.api.oauth2.scopes import grants_offline_access, restrict_to_allowed
from ssogate.api.oauth2.storage import ArtifactStore
from ssogate.api.oauth2.tokens import mint
from ssogate.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AuthorizationServer:
    """OAuth2 grant engine.

    Every public coroutine either returns its artifact, raises a ``Denied``
    subclass when the request may not be granted, or raises ``StoreFailure``
    when a backend call fails.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        store: ArtifactStore,
        verifier: CredentialVerifier | None = None,
        settings: Settings | None = None,
    ):
        self.registry = registry
        self.store = store
        self.verifier = verifier
        self.settings = settings or Settings()

    async def _io(self, call: Awaitable[T]) -> T:
        """Await a backend call under the configured deadline."""
        try:
            if self.settings.store_timeout is not None:
                return await asyncio.wait_for(call, self.settings.store_timeout)
            return await call
        except OAuth2Error:
            raise
        except Exception as exc:
            raise StoreFailure(f"Backend call failed: {exc!r}") from exc

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    async def find_client(self, client_id: str | None) -> Client:
        if not client_id:
            raise InvalidRequest("Missing required parameter: client_id")
        client = await self._io(self.registry.find(client_id))
        if client is None:
            raise UnknownClient()
        return client

    async def authenticate_client(self, client_id: str | None, secret: str | None) -> Client:
        """Resolve and authenticate a client for the token endpoint."""
        if not client_id:
            raise InvalidClientCredentials()
        client = await self._io(self.registry.find(client_id))
        if client is None or not secrets_match(client, secret):
            raise InvalidClientCredentials()
        return client

    async def find_user(self, user_id: str) -> User | None:
        """Look up a signed-in user through the credential verifier."""
        if self.verifier is None:
            return None
        return await self._io(self.verifier.find_user(user_id))

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    async def _issue(
        self,
        user_id: str | None,
        client_id: str,
        scope: list[str],
        allow_refresh: bool = True,
    ) -> TokenGrant:
        """Mint and store an access token, plus a refresh token when the
        scope carries offline_access and *allow_refresh* is set."""
        access = AccessToken(
            token=mint(self.settings.access_token_length),
            expires_at=self.settings.token_expires_at(),
            user_id=user_id,
            client_id=client_id,
            scope=scope,
        )
        await self._io(self.store.save_access_token(access))

        refresh_value = None
        if allow_refresh and grants_offline_access(scope):
            refresh = RefreshToken(
                token=mint(self.settings.refresh_token_length),
                user_id=user_id,
                client_id=client_id,
                scope=scope,
            )
            try:
                await self._io(self.store.save_refresh_token(refresh))
            except StoreFailure:
                # A failed grant must leave no usable access token.
                with contextlib.suppress(StoreFailure):
                    await self._io(self.store.delete_access_token(access.token))
                raise
            refresh_value = refresh.token

        return TokenGrant(
            access_token=access.token,
            expires_in=self.settings.access_token_ttl,
            refresh_token=refresh_value,
        )

    # ------------------------------------------------------------------
    # Authorization endpoint grants
    # ------------------------------------------------------------------

    async def grant_code(
        self, client: Client, redirect_uri: str, user: User, scope: list[str]
    ) -> str:
        """Issue an authorization code for an approved request."""
        code = AuthorizationCode(
            code=mint(self.settings.authorization_code_length),
            client_id=client.id,
            redirect_uri=redirect_uri,
            user_id=user.id,
            scope=restrict_to_allowed(client.allowed_scopes, scope),
        )
        await self._io(self.store.save_code(code))
        return code.code

    async def grant_token(self, client: Client, user: User, scope: list[str]) -> TokenGrant:
        """Implicit grant: issue an access token directly, never a refresh token."""
        effective = restrict_to_allowed(client.allowed_scopes, scope)
        return await self._issue(user.id, client.id, effective, allow_refresh=False)

    # ------------------------------------------------------------------
    # Token endpoint exchanges
    # ------------------------------------------------------------------

    async def exchange_code(self, client: Client, code: str, redirect_uri: str | None) -> TokenGrant:
        """Exchange an authorization code for an access token.

        The code is deleted before any token is minted. If the delete reports
        nothing removed, a concurrent request already redeemed it and this one
        is denied.
        """
        auth_code = await self._io(self.store.find_code(code))
        if auth_code is None:
            raise UnknownCode()
        if auth_code.client_id != client.id:
            raise Denied("Authorization code was issued to another client.")
        if auth_code.redirect_uri != (redirect_uri or ""):
            raise Denied("redirect_uri does not match the authorization request.")

        removed = await self._io(self.store.delete_code(code))
        if removed == 0:
            raise ReplayDetected()

        ttl = timedelta(seconds=self.settings.authorization_code_ttl)
        if datetime.now(UTC) - auth_code.created_at > ttl:
            raise UnknownCode()

        return await self._issue(auth_code.user_id, auth_code.client_id, auth_code.scope)

    async def exchange_password(
        self, client: Client, username: str, password: str, scope: list[str]
    ) -> TokenGrant:
        """Resource owner password credentials grant."""
        if self.verifier is None:
            raise InvalidCredentials("Password grant is not enabled.")
        user = await self._io(self.verifier.verify(username, password))
        if user is None:
            raise InvalidCredentials()
        effective = restrict_to_allowed(client.allowed_scopes, scope)
        return await self._issue(user.id, client.id, effective)

    async def exchange_client_credentials(self, client: Client, scope: list[str]) -> TokenGrant:
        """Client credentials grant: no user, no refresh token."""
        effective = restrict_to_allowed(client.allowed_scopes, scope)
        return await self._issue(None, client.id, effective, allow_refresh=False)

    async def exchange_refresh_token(
        self, client: Client, refresh_token: str, scope: list[str] | None = None
    ) -> TokenGrant:
        """Mint a new access token from a stored refresh token.

        The refresh token is neither rotated nor deleted. The new access token
        carries the refresh token's stored scope.
        """
        stored = await self._io(self.store.find_refresh_token(refresh_token))
        if stored is None:
            raise UnknownRefreshToken()
        if stored.client_id != client.id:
            raise Denied("Refresh token was issued to another client.")
        return await self._issue(stored.user_id, stored.client_id, stored.scope, allow_refresh=False)

    async def dispatch(self, request: TokenRequest) -> TokenGrant:
        """Route an authenticated token request to its grant handler."""
        grant_type = request.grant_type
        if grant_type is GrantType.AUTHORIZATION_CODE:
            if not request.code:
                raise InvalidRequest("Missing required parameter: code")
            return await self.exchange_code(request.client, request.code, request.redirect_uri)
        if grant_type is GrantType.PASSWORD:
            if not request.username or request.password is None:
                raise InvalidRequest("Missing required parameter: username or password")
            return await self.exchange_password(
                request.client, request.username, request.password, request.scope
            )
        if grant_type is GrantType.CLIENT_CREDENTIALS:
            return await self.exchange_client_credentials(request.client, request.scope)
        if grant_type is GrantType.REFRESH_TOKEN:
            if not request.refresh_token:
                raise InvalidRequest("Missing required parameter: refresh_token")
            return await self.exchange_refresh_token(
                request.client, request.refresh_token, request.scope
            )
        raise UnsupportedGrantType()

    # ------------------------------------------------------------------
    # Token introspection and revocation
    # ------------------------------------------------------------------

    async def verify_access_token(self, access_token: str | None) -> AccessToken:
        """Return the stored access token if it exists and has not expired."""
        if not access_token:
            raise UnknownAccessToken()
        token = await self._io(self.store.find_access_token(access_token))
        if token is None or token.is_expired():
            raise UnknownAccessToken()
        return token

    async def token_info(self, access_token: str | None) -> TokenInfo:
        token = await self.verify_access_token(access_token)
        return TokenInfo(
            user_id=token.user_id,
            client_id=token.client_id,
            scope=token.scope,
            expires_in=token.expires_in(),
        )

    async def revoke(self, token: str) -> bool:
        """Revoke an access or refresh token."""
        if await self._io(self.store.delete_access_token(token)):
            return True
        return bool(await self._io(self.store.delete_refresh_token(token)))
