# Authorization transaction coordinator.
# Created: 2026-10-19
#
# Drives the user-facing half of the code and implicit grants:
#
#   initiate -> (trusted client) -> allow
#            -> (untrusted)      -> awaiting decision -> allow | deny
#
# Pending transactions live in the user's session between the authorize
# request and the decision post-back. Only the client id is stored; the
# client is looked up again when the transaction is read back.

from __future__ import annotations

import logging
import secrets
from collections.abc import MutableMapping
from typing import Any
from urllib.parse import urlencode, urlsplit, urlunsplit

from ssogate.api.oauth2.errors import (
    AccessDenied,
    InvalidRedirectUri,
    InvalidRequest,
    UnsupportedResponseType,
)
from ssogate.api.oauth2.models import (
    AuthorizationResponse,
    AuthorizationTransaction,
    ResponseType,
    TransactionState,
    User,
)
from ssogate.api.oauth2.scopes import parse_scope
from ssogate.api.oauth2.server import AuthorizationServer

logger = logging.getLogger(__name__)

SESSION_KEY = "authorize"

# Pending transactions kept per session; the oldest are evicted first.
MAX_PENDING_TRANSACTIONS = 5


def parse_response_type(value: str | None) -> ResponseType:
    """Missing response type defaults to the code grant."""
    if not value:
        return ResponseType.CODE
    try:
        return ResponseType(value)
    except ValueError:
        raise UnsupportedResponseType(f"Unsupported response type: {value}") from None


def _with_params(uri: str, params: dict[str, Any], fragment: bool = False) -> str:
    scheme, netloc, path, query, frag = urlsplit(uri)
    encoded = urlencode({k: v for k, v in params.items() if v not in (None, "")})
    if fragment:
        return urlunsplit((scheme, netloc, path, query, encoded))
    query = f"{query}&{encoded}" if query else encoded
    return urlunsplit((scheme, netloc, path, query, frag))


class TransactionStore:
    """Pending transactions kept in a session mapping, keyed by id."""

    def __init__(self, session: MutableMapping[str, Any]):
        self._session = session

    def _bucket(self) -> dict[str, dict]:
        return dict(self._session.get(SESSION_KEY) or {})

    def put(self, data: dict) -> None:
        bucket = self._bucket()
        bucket.pop(data["id"], None)
        bucket[data["id"]] = data
        while len(bucket) > MAX_PENDING_TRANSACTIONS:
            oldest = next(iter(bucket))
            del bucket[oldest]
            logger.debug("Evicted abandoned authorization transaction %s", oldest)
        # Reassign so cookie-backed sessions notice the change.
        self._session[SESSION_KEY] = bucket

    def get(self, transaction_id: str) -> dict | None:
        return self._bucket().get(transaction_id)

    def pop(self, transaction_id: str) -> dict | None:
        bucket = self._bucket()
        data = bucket.pop(transaction_id, None)
        if bucket:
            self._session[SESSION_KEY] = bucket
        else:
            self._session.pop(SESSION_KEY, None)
        return data


class AuthorizationCoordinator:
    """Runs authorization transactions against an AuthorizationServer."""

    def __init__(self, server: AuthorizationServer):
        self.server = server

    async def initiate(
        self,
        user: User,
        client_id: str | None,
        redirect_uri: str | None,
        scope: str | list[str] | None = None,
        response_type: str | None = None,
        state: str = "",
    ) -> AuthorizationTransaction | AuthorizationResponse:
        """Validate an authorization request.

        Returns an ``AuthorizationResponse`` straight away for trusted
        clients, otherwise a transaction awaiting the user's decision.
        """
        kind = parse_response_type(response_type)
        client = await self.server.find_client(client_id)

        if not redirect_uri:
            if not client.redirect_uri:
                raise InvalidRequest("Missing required parameter: redirect_uri")
            redirect_uri = client.redirect_uri
        if not client.accepts_redirect_uri(redirect_uri):
            raise InvalidRedirectUri()

        transaction = AuthorizationTransaction(
            id=secrets.token_urlsafe(12),
            client=client,
            redirect_uri=redirect_uri,
            scope=parse_scope(scope),
            response_type=kind,
            user_id=user.id,
            state=state or "",
        )

        if client.trusted:
            # No consent dialog and no stored consent; the next visit
            # re-approves automatically.
            return await self.decide(transaction, user, allow=True)

        transaction.status = TransactionState.AWAITING_DECISION
        return transaction

    async def decide(
        self, transaction: AuthorizationTransaction, user: User, allow: bool
    ) -> AuthorizationResponse:
        """Resolve a transaction with the user's decision."""
        if user.id != transaction.user_id:
            raise AccessDenied("Transaction belongs to another user.")

        fragment = transaction.response_type is ResponseType.TOKEN
        if not allow:
            transaction.status = TransactionState.DENIED
            url = _with_params(
                transaction.redirect_uri,
                {"error": AccessDenied.error, "state": transaction.state},
                fragment=fragment,
            )
            return AuthorizationResponse(redirect_url=url, allowed=False)

        transaction.status = TransactionState.ALLOWED
        kind = transaction.response_type
        if kind is ResponseType.CODE:
            code = await self.server.grant_code(
                transaction.client, transaction.redirect_uri, user, transaction.scope
            )
            params = {"code": code, "state": transaction.state}
        elif kind is ResponseType.TOKEN:
            grant = await self.server.grant_token(transaction.client, user, transaction.scope)
            params = {
                "access_token": grant.access_token,
                "expires_in": grant.expires_in,
                "token_type": grant.token_type,
                "state": transaction.state,
            }
        else:
            raise UnsupportedResponseType()

        url = _with_params(transaction.redirect_uri, params, fragment=fragment)
        return AuthorizationResponse(redirect_url=url, allowed=True)

    # ------------------------------------------------------------------
    # Session serialization
    # ------------------------------------------------------------------

    def encode(self, transaction: AuthorizationTransaction) -> dict[str, Any]:
        return {
            "id": transaction.id,
            "client_id": transaction.client.id,
            "redirect_uri": transaction.redirect_uri,
            "scope": list(transaction.scope),
            "response_type": transaction.response_type.value,
            "user_id": transaction.user_id,
            "state": transaction.state,
            "status": transaction.status.value,
        }

    async def decode(self, data: dict[str, Any]) -> AuthorizationTransaction:
        client = await self.server.find_client(data.get("client_id"))
        return AuthorizationTransaction(
            id=data["id"],
            client=client,
            redirect_uri=data["redirect_uri"],
            scope=list(data.get("scope", [])),
            response_type=ResponseType(data["response_type"]),
            user_id=data["user_id"],
            state=data.get("state", ""),
            status=TransactionState(data.get("status", TransactionState.AWAITING_DECISION.value)),
        )

    def stage(self, transactions: TransactionStore, transaction: AuthorizationTransaction) -> None:
        transactions.put(self.encode(transaction))

    async def resume(
        self, transactions: TransactionStore, transaction_id: str | None
    ) -> AuthorizationTransaction | None:
        """Load and consume a staged transaction. None if there is none."""
        if not transaction_id:
            return None
        data = transactions.pop(transaction_id)
        if data is None:
            return None
        return await self.decode(data)
