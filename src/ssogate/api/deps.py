# Shared FastAPI dependencies for the API layer.
# Created: 2026-10-19

from __future__ import annotations

from urllib.parse import urlencode

from fastapi import Depends, HTTPException, Request

from ssogate.api.oauth2.errors import OAuth2Error, StoreFailure
from ssogate.api.oauth2.models import AccessToken, User
from ssogate.api.oauth2.scopes import satisfies_all, satisfies_any
from ssogate.api.oauth2.server import AuthorizationServer
from ssogate.api.oauth2.transactions import AuthorizationCoordinator

SESSION_USER_KEY = "user_id"


def get_oauth_server(request: Request) -> AuthorizationServer:
    """The process-wide AuthorizationServer built by ``create_app``."""
    server = getattr(request.app.state, "oauth_server", None)
    if server is None:
        raise HTTPException(status_code=500, detail="OAuth2 server is not configured")
    return server


def get_coordinator(
    server: AuthorizationServer = Depends(get_oauth_server),
) -> AuthorizationCoordinator:
    return AuthorizationCoordinator(server)


async def get_current_user(
    request: Request,
    server: AuthorizationServer = Depends(get_oauth_server),
) -> User:
    """Resolve the signed-in user from the session.

    Signing in is handled by the identity provider in front of this service;
    it only has to put the user's id under ``user_id`` in the session.
    Anonymous users are redirected to the login page and sent back here
    afterwards.
    """
    user_id = request.session.get(SESSION_USER_KEY) if "session" in request.scope else None
    if not user_id:
        login_url = server.settings.login_url
        target = f"{login_url}?{urlencode({'next': str(request.url)})}"
        raise HTTPException(status_code=302, headers={"Location": target})

    try:
        user = await server.find_user(user_id)
    except StoreFailure as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.to_dict()) from exc
    return user or User(id=user_id)


async def require_bearer(
    request: Request,
    server: AuthorizationServer = Depends(get_oauth_server),
) -> AccessToken:
    """Validate the ``Authorization: Bearer`` access token."""
    auth_header = request.headers.get("Authorization", "")
    bearer = (
        auth_header.removeprefix("Bearer ").strip() if auth_header.startswith("Bearer ") else ""
    )
    try:
        return await server.verify_access_token(bearer)
    except OAuth2Error as exc:
        raise HTTPException(
            status_code=401,
            detail=exc.description,
            headers={"WWW-Authenticate": f'Bearer error="{exc.error}"'},
        ) from exc


def require_scope(*scopes: str, all_of: bool = False):
    """FastAPI dependency that checks the bearer token's scopes.

    Usage::

        @router.get("/profile", dependencies=[Depends(require_scope("profile"))])
        async def profile(...): ...

    By default the token needs at least one of *scopes*; with ``all_of=True``
    it needs every one. A token granted ``*`` passes either check.
    """
    check = satisfies_all if all_of else satisfies_any

    async def _check(token: AccessToken = Depends(require_bearer)) -> AccessToken:
        if not check(list(scopes), token.scope):
            joiner = " and " if all_of else " or "
            raise HTTPException(
                status_code=403,
                detail=f"Access token missing required scope: {joiner.join(scopes)}",
                headers={"WWW-Authenticate": 'Bearer error="insufficient_scope"'},
            )
        return token

    return _check
