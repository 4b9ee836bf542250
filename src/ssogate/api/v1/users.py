# Users router: identity behind a bearer token.
# Created: 2026-10-19

from __future__ import annotations

from fastapi import APIRouter, Depends

from ssogate.api.deps import require_scope
from ssogate.api.oauth2.models import AccessToken
from ssogate.api.v1.schemas.oauth2 import MeResponse

router = APIRouter(tags=["Users"])


@router.get("/api/me", response_model=MeResponse)
async def me(token: AccessToken = Depends(require_scope("login", "profile"))):
    """Return the user and client an access token was issued to."""
    return MeResponse(user_id=token.user_id, client_id=token.client_id, scope=token.scope)
