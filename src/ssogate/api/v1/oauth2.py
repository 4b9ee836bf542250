# OAuth2 router: authorize, decision, token, tokeninfo, revoke.
# Created: 2026-10-19
#
# Maps the grant engine's outcomes onto HTTP: Denied becomes an RFC 6749
# error body with a 4xx status, StoreFailure a 500. This layer owns logging
# and auditing; the engine does neither.

from __future__ import annotations

import html
import json
import logging
from urllib.parse import unquote, urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from ssogate.api.deps import (
    get_coordinator,
    get_current_user,
    get_oauth_server,
    require_bearer,
)
from ssogate.api.oauth2.errors import (
    Denied,
    InvalidClientCredentials,
    OAuth2Error,
    ReplayDetected,
    StoreFailure,
    UnknownAccessToken,
    UnsupportedGrantType,
)
from ssogate.api.oauth2.models import (
    AccessToken,
    AuthorizationResponse,
    GrantType,
    TokenRequest,
    User,
)
from ssogate.api.oauth2.scopes import format_scope, parse_scope
from ssogate.api.oauth2.server import AuthorizationServer
from ssogate.api.oauth2.transactions import AuthorizationCoordinator, TransactionStore
from ssogate.api.v1.schemas.oauth2 import (
    CasProfileResponse,
    RevokeRequest,
    RevokeResponse,
    TokenInfoResponse,
    TokenResponse,
)
from ssogate.security.audit import AuditSeverity, get_audit_logger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["OAuth2"])
cas_router = APIRouter(tags=["CAS"])

_basic = HTTPBasic(auto_error=False)

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}

_CONSENT_HTML = """<!DOCTYPE html>
<html><head><title>Authorize {client_name}</title>
<style>
body {{ font-family: system-ui; max-width: 480px; margin: 40px auto; padding: 20px; }}
.btn {{ padding: 10px 24px; border: none; border-radius: 6px; cursor: pointer; font-size: 16px; }}
.allow {{ background: #2563eb; color: white; }} .allow:hover {{ background: #1d4ed8; }}
.deny {{ background: #e5e7eb; color: #374151; margin-left: 12px; }}
.scopes {{ background: #f3f4f6; padding: 12px; border-radius: 8px; margin: 16px 0; }}
.scope {{ display: inline-block; background: #dbeafe; padding: 4px 8px;
  border-radius: 4px; margin: 2px; font-size: 14px; }}
</style></head><body>
<h2>Hi {user_name}!</h2>
<p><strong>{client_name}</strong> is requesting access to your account.</p>
<div class="scopes"><strong>Requested permissions:</strong><br>{scope_badges}</div>
<form method="POST" action="{decision_url}">
<input type="hidden" name="transaction_id" value="{transaction_id}">
<button type="submit" name="action" value="allow" class="btn allow">Allow</button>
<button type="submit" name="cancel" value="deny" class="btn deny">Deny</button>
</form></body></html>"""


def _audit(action: str, client_id: str | None, target: str, status: str, **context) -> None:
    severity = {
        "success": AuditSeverity.INFO,
        "denied": AuditSeverity.WARNING,
        "replay": AuditSeverity.ALERT,
        "error": AuditSeverity.CRITICAL,
    }.get(status, AuditSeverity.INFO)
    get_audit_logger().log_oauth_event(
        action=action,
        client_id=client_id,
        target=target,
        status=status,
        severity=severity,
        **context,
    )


def _error_response(exc: OAuth2Error) -> JSONResponse:
    headers = dict(_NO_STORE)
    if isinstance(exc, InvalidClientCredentials):
        headers["WWW-Authenticate"] = 'Basic realm="oauth2"'
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


def _redirect(response: AuthorizationResponse) -> RedirectResponse:
    return RedirectResponse(response.redirect_url, status_code=302)


# ---------------------------------------------------------------------------
# Authorization endpoint
# ---------------------------------------------------------------------------


async def _authorize(
    request: Request,
    client_id: str | None,
    redirect_uri: str | None,
    scope: str | None,
    response_type: str | None,
    state: str,
    user: User,
    coordinator: AuthorizationCoordinator,
) -> Response:
    try:
        outcome = await coordinator.initiate(
            user,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            response_type=response_type,
            state=state,
        )
    except StoreFailure as exc:
        logger.error("Authorization request failed for client %s: %s", client_id, exc)
        _audit("authorize", client_id, "authorize", "error", error=str(exc))
        return _error_response(exc)
    except Denied as exc:
        logger.info("Authorization request denied for client %s: %s", client_id, exc.error)
        _audit("authorize", client_id, "authorize", "denied", error=exc.error)
        return _error_response(exc)

    if isinstance(outcome, AuthorizationResponse):
        _audit("authorize", client_id, response_type or "code", "success", trusted=True)
        return _redirect(outcome)

    coordinator.stage(TransactionStore(request.session), outcome)
    scope_badges = " ".join(
        f'<span class="scope">{html.escape(s)}</span>' for s in outcome.scope
    ) or "<em>basic access</em>"
    page = _CONSENT_HTML.format(
        client_name=html.escape(outcome.client.name),
        user_name=html.escape(user.name or user.username or user.id),
        scope_badges=scope_badges,
        decision_url=html.escape(str(request.url_for("authorize_decision").path)),
        transaction_id=html.escape(outcome.id),
    )
    return HTMLResponse(page)


@router.get("/oauth2/authorize")
async def authorize(
    request: Request,
    client_id: str | None = Query(None),
    redirect_uri: str | None = Query(None),
    scope: str | None = Query(None),
    response_type: str | None = Query(None),
    state: str = Query(""),
    user: User = Depends(get_current_user),
    coordinator: AuthorizationCoordinator = Depends(get_coordinator),
):
    """Start an authorization transaction.

    Trusted clients are redirected straight back with a code or token; other
    clients get a consent page.
    """
    return await _authorize(
        request, client_id, redirect_uri, scope, response_type, state, user, coordinator
    )


@cas_router.get("/cas/oauth2.0/authorize")
async def cas_authorize(
    request: Request,
    client_id: str | None = Query(None),
    redirect_uri: str | None = Query(None),
    scope: str | None = Query(None),
    response_type: str | None = Query(None),
    state: str = Query(""),
    user: User = Depends(get_current_user),
    coordinator: AuthorizationCoordinator = Depends(get_coordinator),
):
    """CAS OAuth emulation alias of the authorization endpoint."""
    return await _authorize(
        request, client_id, redirect_uri, scope, response_type, state, user, coordinator
    )


@router.post("/oauth2/authorize/decision", name="authorize_decision")
async def authorize_decision(
    request: Request,
    user: User = Depends(get_current_user),
    coordinator: AuthorizationCoordinator = Depends(get_coordinator),
):
    """Process the consent form submission."""
    form = await request.form()
    transaction_id = str(form.get("transaction_id", ""))
    allow = form.get("cancel") is None and str(form.get("action", "allow")) == "allow"

    try:
        transaction = await coordinator.resume(TransactionStore(request.session), transaction_id)
        if transaction is None:
            return JSONResponse(
                status_code=403,
                content={
                    "error": "access_denied",
                    "error_description": "No active authorization transaction.",
                },
            )
        outcome = await coordinator.decide(transaction, user, allow=allow)
    except StoreFailure as exc:
        logger.error("Authorization decision failed: %s", exc)
        _audit("authorize_decision", None, "decision", "error", error=str(exc))
        return _error_response(exc)
    except Denied as exc:
        _audit("authorize_decision", None, "decision", "denied", error=exc.error)
        return _error_response(exc)

    _audit(
        "authorize_decision",
        transaction.client.id,
        transaction.response_type.value,
        "success" if outcome.allowed else "denied",
        user_id=user.id,
    )
    return _redirect(outcome)


# ---------------------------------------------------------------------------
# Token endpoint
# ---------------------------------------------------------------------------


async def _token_params(request: Request) -> dict[str, str]:
    """Form body merged with the query string (query wins)."""
    params: dict[str, str] = {}
    if request.method == "POST":
        form = await request.form()
        params.update({k: str(v) for k, v in form.items()})
    params.update(request.query_params)
    return params


async def issue_token(
    request: Request,
    server: AuthorizationServer,
    credentials: HTTPBasicCredentials | None,
) -> JSONResponse:
    """Authenticate the client and run the requested grant."""
    params = await _token_params(request)
    raw_grant = params.get("grant_type") or GrantType.AUTHORIZATION_CODE.value

    if credentials is not None:
        client_id, client_secret = unquote(credentials.username), unquote(credentials.password)
    else:
        client_id, client_secret = params.get("client_id"), params.get("client_secret")

    try:
        try:
            grant_type = GrantType(raw_grant)
        except ValueError:
            raise UnsupportedGrantType(f"Unsupported grant type: {raw_grant}") from None
        client = await server.authenticate_client(client_id, client_secret)
        grant = await server.dispatch(
            TokenRequest(
                client=client,
                grant_type=grant_type,
                code=params.get("code"),
                redirect_uri=params.get("redirect_uri"),
                username=params.get("username"),
                password=params.get("password"),
                refresh_token=params.get("refresh_token"),
                scope=parse_scope(params.get("scope")),
            )
        )
    except StoreFailure as exc:
        logger.error("Token request (%s) failed for client %s: %s", raw_grant, client_id, exc)
        _audit("token", client_id, raw_grant, "error", error=str(exc))
        return _error_response(exc)
    except Denied as exc:
        status = "replay" if isinstance(exc, ReplayDetected) else "denied"
        logger.info("Token request (%s) denied for client %s: %s", raw_grant, client_id, exc.error)
        _audit("token", client_id, raw_grant, status, error=exc.error)
        return _error_response(exc)

    _audit("token", client.id, grant_type.value, "success", refresh=grant.refresh_token is not None)
    body = TokenResponse(**grant.to_dict()).model_dump(exclude_none=True)
    return JSONResponse(content=body, headers=_NO_STORE)


@router.post("/oauth2/token", response_model=TokenResponse)
async def token(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """Exchange a grant for an access token."""
    return await issue_token(request, server, credentials)


@router.get("/oauth2/token", response_model=TokenResponse, include_in_schema=False)
async def token_get(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """Token endpoint via query string, kept for older clients."""
    return await issue_token(request, server, credentials)


def form_encoded(response: JSONResponse) -> Response:
    """Re-render a successful JSON token response as form data.

    Error responses pass through unchanged.
    """
    if response.status_code != 200:
        return response
    payload = json.loads(response.body)
    headers = {k: v for k, v in response.headers.items() if k.lower() in ("cache-control", "pragma")}
    return Response(
        content=urlencode(payload),
        media_type="application/x-www-form-urlencoded",
        headers=headers,
    )


@cas_router.get("/cas/oauth2.0/accessToken")
async def cas_access_token(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """CAS OAuth emulation: the token endpoint, form-encoded."""
    return form_encoded(await issue_token(request, server, credentials))


@cas_router.get("/cas/oauth2.0/profile", response_model=CasProfileResponse)
async def cas_profile(
    token: AccessToken = Depends(require_bearer),
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """CAS OAuth emulation: profile of the user behind a bearer token."""
    if token.user_id is None:
        return _error_response(UnknownAccessToken("Access token was not issued to a user."))
    try:
        user = await server.find_user(token.user_id)
    except StoreFailure as exc:
        return _error_response(exc)
    user = user or User(id=token.user_id)
    attributes = {
        key: value
        for key, value in (("username", user.username), ("name", user.name), ("email", user.email))
        if value
    }
    return CasProfileResponse(id=user.username or user.id, attributes=attributes)


# ---------------------------------------------------------------------------
# Token info and revocation
# ---------------------------------------------------------------------------


@router.get("/oauth2/tokeninfo", response_model=TokenInfoResponse)
async def tokeninfo(
    access_token: str | None = Query(None),
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """Describe an access token: user, client, scope and remaining lifetime."""
    try:
        info = await server.token_info(access_token)
    except OAuth2Error as exc:
        return _error_response(exc)
    return TokenInfoResponse(
        user_id=info.user_id,
        client_id=info.client_id,
        scope=format_scope(info.scope),
        expires_in=info.expires_in,
    )


@router.post("/oauth2/revoke", response_model=RevokeResponse)
async def revoke(
    body: RevokeRequest,
    server: AuthorizationServer = Depends(get_oauth_server),
):
    """Revoke an access or refresh token."""
    try:
        revoked = await server.revoke(body.token)
    except StoreFailure as exc:
        return _error_response(exc)
    _audit("revoke", None, "revoke", "success" if revoked else "denied")
    return RevokeResponse(revoked=revoked)
