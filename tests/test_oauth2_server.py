# Tests for the OAuth2 grant engine.
# Created: 2026-10-19

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from ssogate.api.oauth2.credentials import InMemoryUserStore
from ssogate.api.oauth2.errors import (
    Denied,
    InvalidClientCredentials,
    InvalidCredentials,
    InvalidRequest,
    ReplayDetected,
    StoreFailure,
    UnknownAccessToken,
    UnknownClient,
    UnknownCode,
    UnknownRefreshToken,
)
from ssogate.api.oauth2.models import AuthorizationCode, Client, GrantType, TokenRequest, User
from ssogate.api.oauth2.registry import InMemoryClientRegistry
from ssogate.api.oauth2.server import AuthorizationServer
from ssogate.api.oauth2.storage import InMemoryArtifactStore
from ssogate.config import Settings

REDIRECT = "http://localhost:3000"

UNTRUSTED = Client(
    id="abc123", name="Samplr", secret="ssh-secret", redirect_uri=REDIRECT,
    allowed_scopes=["*", "offline_access"],
)
TRUSTED = Client(
    id="trustedClient", name="Samplr3", secret="ssh-otherpassword", trusted=True,
    allowed_scopes=["*", "offline_access"],
)
READ_ONLY = Client(id="readOnly", name="Reader", secret="ro-secret", allowed_scopes=["read"])
# Registered without allowed_scopes, so it gets the default ["*"].
DEFAULT = Client(id="defaultClient", name="Default", secret="d-secret", redirect_uri=REDIRECT)

BOB = User(id="1", username="bob", name="Bob Smith")


class SlowFindStore(InMemoryArtifactStore):
    """Yields to the event loop after every code lookup so that concurrent
    redemptions all see the code before any of them deletes it."""

    async def find_code(self, code):
        found = await super().find_code(code)
        await asyncio.sleep(0)
        return found


class BrokenStore(InMemoryArtifactStore):
    async def save_access_token(self, token):
        raise RuntimeError("database unavailable")


class HangingStore(InMemoryArtifactStore):
    async def find_refresh_token(self, token):
        await asyncio.sleep(5)


class RefreshWriteFailsStore(InMemoryArtifactStore):
    async def save_refresh_token(self, token):
        raise OSError("disk full")


class BrokenUserStore(InMemoryUserStore):
    async def find_user(self, user_id):
        raise ConnectionError("directory unavailable")


@pytest.fixture
def users():
    verifier = InMemoryUserStore()
    verifier.add_user(BOB, "secret")
    return verifier


@pytest.fixture
def registry():
    return InMemoryClientRegistry([UNTRUSTED, TRUSTED, READ_ONLY, DEFAULT])


@pytest.fixture
def store():
    return InMemoryArtifactStore()


@pytest.fixture
def server(registry, store, users):
    return AuthorizationServer(registry, store, users, Settings())


class TestClients:
    @pytest.mark.asyncio
    async def test_find_client(self, server):
        assert (await server.find_client("abc123")).name == "Samplr"

    @pytest.mark.asyncio
    async def test_unknown_client(self, server):
        with pytest.raises(UnknownClient):
            await server.find_client("someinvalidclientid")

    @pytest.mark.asyncio
    async def test_missing_client_id(self, server):
        with pytest.raises(InvalidRequest):
            await server.find_client(None)

    @pytest.mark.asyncio
    async def test_authenticate_client(self, server):
        assert (await server.authenticate_client("abc123", "ssh-secret")).id == "abc123"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "client_id, secret",
        [("abc123", "wrong"), ("abc123", None), ("nobody", "ssh-secret"), (None, None)],
    )
    async def test_authenticate_client_fails(self, server, client_id, secret):
        with pytest.raises(InvalidClientCredentials):
            await server.authenticate_client(client_id, secret)


class TestCodeGrant:
    @pytest.mark.asyncio
    async def test_grant_code_persists_code(self, server, store):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, ["profile"])
        assert len(code) == server.settings.authorization_code_length
        stored = await store.find_code(code)
        assert stored.user_id == "1"
        assert stored.client_id == "abc123"
        assert stored.scope == ["profile"]

    @pytest.mark.asyncio
    async def test_grant_code_restricts_scope(self, server, store):
        code = await server.grant_code(READ_ONLY, REDIRECT, BOB, ["read", "write"])
        assert (await store.find_code(code)).scope == ["read"]

    @pytest.mark.asyncio
    async def test_exchange_code(self, server, store):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, ["profile"])
        grant = await server.exchange_code(UNTRUSTED, code, REDIRECT)

        assert len(grant.access_token) == 256
        assert grant.expires_in == 3600
        assert grant.token_type == "Bearer"
        assert grant.refresh_token is None
        assert await store.find_code(code) is None

        token = await store.find_access_token(grant.access_token)
        assert token.user_id == "1"
        assert token.client_id == "abc123"
        assert token.scope == ["profile"]

    @pytest.mark.asyncio
    async def test_exchange_code_with_offline_access(self, server, store):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, ["offline_access", "profile"])
        grant = await server.exchange_code(UNTRUSTED, code, REDIRECT)
        assert grant.refresh_token is not None
        refresh = await store.find_refresh_token(grant.refresh_token)
        assert refresh.user_id == "1"
        assert refresh.scope == ["offline_access", "profile"]

    @pytest.mark.asyncio
    async def test_default_client_never_gets_refresh_token(self, server, store):
        code = await server.grant_code(DEFAULT, REDIRECT, BOB, ["offline_access", "profile"])
        assert (await store.find_code(code)).scope == ["profile"]
        grant = await server.exchange_code(DEFAULT, code, REDIRECT)
        assert grant.refresh_token is None
        token = await store.find_access_token(grant.access_token)
        assert token.scope == ["profile"]

    @pytest.mark.asyncio
    async def test_unknown_code(self, server):
        with pytest.raises(UnknownCode):
            await server.exchange_code(UNTRUSTED, "nonexistent", REDIRECT)

    @pytest.mark.asyncio
    async def test_wrong_client(self, server, store):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, [])
        with pytest.raises(Denied):
            await server.exchange_code(TRUSTED, code, REDIRECT)
        # A mismatched client does not burn the code
        assert await store.find_code(code) is not None

    @pytest.mark.asyncio
    async def test_wrong_redirect_uri(self, server):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, [])
        with pytest.raises(Denied):
            await server.exchange_code(UNTRUSTED, code, "http://localhost:3000/other")

    @pytest.mark.asyncio
    async def test_code_reuse(self, server):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, [])
        await server.exchange_code(UNTRUSTED, code, REDIRECT)
        with pytest.raises(UnknownCode):
            await server.exchange_code(UNTRUSTED, code, REDIRECT)

    @pytest.mark.asyncio
    async def test_expired_code_is_consumed(self, server, store):
        await store.save_code(
            AuthorizationCode(
                code="stale",
                client_id="abc123",
                redirect_uri=REDIRECT,
                user_id="1",
                scope=[],
                created_at=datetime.now(UTC) - timedelta(hours=1),
            )
        )
        with pytest.raises(UnknownCode):
            await server.exchange_code(UNTRUSTED, "stale", REDIRECT)
        assert await store.find_code("stale") is None

    @pytest.mark.asyncio
    async def test_concurrent_redemption_single_winner(self, registry, users):
        store = SlowFindStore()
        server = AuthorizationServer(registry, store, users, Settings())
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, ["profile"])

        results = await asyncio.gather(
            *(server.exchange_code(UNTRUSTED, code, REDIRECT) for _ in range(10)),
            return_exceptions=True,
        )

        winners = [r for r in results if not isinstance(r, Exception)]
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(winners) == 1
        assert len(losers) == 9
        assert all(isinstance(r, ReplayDetected) for r in losers)
        assert len(store._access_tokens) == 1

    def test_replay_indistinguishable_from_unknown(self):
        assert ReplayDetected().to_dict() == UnknownCode().to_dict()


class TestImplicitGrant:
    @pytest.mark.asyncio
    async def test_grant_token(self, server, store):
        grant = await server.grant_token(TRUSTED, BOB, ["profile"])
        assert grant.expires_in == 3600
        assert grant.refresh_token is None
        assert (await store.find_access_token(grant.access_token)).user_id == "1"

    @pytest.mark.asyncio
    async def test_never_refresh_token(self, server):
        grant = await server.grant_token(TRUSTED, BOB, ["offline_access"])
        assert grant.refresh_token is None


class TestPasswordGrant:
    @pytest.mark.asyncio
    async def test_offline_access_returns_refresh_token(self, server):
        grant = await server.exchange_password(TRUSTED, "bob", "secret", ["offline_access"])
        assert grant.access_token
        assert grant.refresh_token

    @pytest.mark.asyncio
    async def test_default_client_offline_access_dropped(self, server, store):
        grant = await server.exchange_password(DEFAULT, "bob", "secret", ["offline_access"])
        assert grant.refresh_token is None
        assert (await store.find_access_token(grant.access_token)).scope == []
        assert store._refresh_tokens == {}

    @pytest.mark.asyncio
    async def test_empty_scope_access_only(self, server):
        grant = await server.exchange_password(TRUSTED, "bob", "secret", [])
        assert grant.access_token
        assert grant.refresh_token is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, server):
        with pytest.raises(InvalidCredentials):
            await server.exchange_password(TRUSTED, "alice", "secret", [])

    @pytest.mark.asyncio
    async def test_bad_password(self, server):
        with pytest.raises(InvalidCredentials):
            await server.exchange_password(TRUSTED, "bob", "wrong", [])

    @pytest.mark.asyncio
    async def test_scope_restricted_to_client(self, server, store):
        grant = await server.exchange_password(READ_ONLY, "bob", "secret", ["read", "write"])
        token = await store.find_access_token(grant.access_token)
        assert token.scope == ["read"]

    @pytest.mark.asyncio
    async def test_no_verifier(self, registry, store):
        server = AuthorizationServer(registry, store, None, Settings())
        with pytest.raises(InvalidCredentials):
            await server.exchange_password(TRUSTED, "bob", "secret", [])


class TestClientCredentialsGrant:
    @pytest.mark.asyncio
    async def test_token_without_user(self, server, store):
        grant = await server.exchange_client_credentials(UNTRUSTED, ["offline_access"])
        assert grant.refresh_token is None
        token = await store.find_access_token(grant.access_token)
        assert token.user_id is None
        assert token.client_id == "abc123"


class TestRefreshTokenGrant:
    @pytest.mark.asyncio
    async def test_refresh(self, server, store):
        first = await server.exchange_password(TRUSTED, "bob", "secret", ["offline_access"])
        second = await server.exchange_refresh_token(TRUSTED, first.refresh_token)

        assert second.access_token != first.access_token
        assert second.refresh_token is None
        # Not rotated, still usable
        assert await store.find_refresh_token(first.refresh_token) is not None
        third = await server.exchange_refresh_token(TRUSTED, first.refresh_token)
        assert third.access_token not in (first.access_token, second.access_token)

        token = await store.find_access_token(second.access_token)
        assert token.user_id == "1"
        assert token.scope == ["offline_access"]

    @pytest.mark.asyncio
    async def test_unknown_refresh_token(self, server):
        with pytest.raises(UnknownRefreshToken):
            await server.exchange_refresh_token(TRUSTED, "invalid-refresh")

    @pytest.mark.asyncio
    async def test_wrong_client(self, server):
        first = await server.exchange_password(TRUSTED, "bob", "secret", ["offline_access"])
        with pytest.raises(Denied):
            await server.exchange_refresh_token(UNTRUSTED, first.refresh_token)


class TestDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_each_grant(self, server):
        code = await server.grant_code(UNTRUSTED, REDIRECT, BOB, [])
        grant = await server.dispatch(
            TokenRequest(client=UNTRUSTED, code=code, redirect_uri=REDIRECT)
        )
        assert grant.access_token

        grant = await server.dispatch(
            TokenRequest(
                client=TRUSTED,
                grant_type=GrantType.PASSWORD,
                username="bob",
                password="secret",
                scope=["offline_access"],
            )
        )
        assert grant.refresh_token

        refreshed = await server.dispatch(
            TokenRequest(
                client=TRUSTED,
                grant_type=GrantType.REFRESH_TOKEN,
                refresh_token=grant.refresh_token,
            )
        )
        assert refreshed.access_token

        grant = await server.dispatch(
            TokenRequest(client=UNTRUSTED, grant_type=GrantType.CLIENT_CREDENTIALS)
        )
        assert grant.access_token

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "grant_type", [GrantType.AUTHORIZATION_CODE, GrantType.PASSWORD, GrantType.REFRESH_TOKEN]
    )
    async def test_missing_parameters(self, server, grant_type):
        with pytest.raises(InvalidRequest):
            await server.dispatch(TokenRequest(client=TRUSTED, grant_type=grant_type))


class TestTokenInfo:
    @pytest.mark.asyncio
    async def test_token_info(self, server):
        grant = await server.exchange_password(TRUSTED, "bob", "secret", ["profile"])
        info = await server.token_info(grant.access_token)
        assert info.user_id == "1"
        assert info.client_id == "trustedClient"
        assert info.scope == ["profile"]
        assert 3590 <= info.expires_in <= 3600

    @pytest.mark.asyncio
    async def test_expired_token(self, registry, store, users):
        server = AuthorizationServer(registry, store, users, Settings(access_token_ttl=1))
        grant = await server.exchange_client_credentials(UNTRUSTED, [])
        token = await store.find_access_token(grant.access_token)
        later = token.expires_at + timedelta(seconds=1)
        assert token.is_expired(later)
        assert token.expires_in(later) == 0

    @pytest.mark.asyncio
    async def test_unknown_token(self, server):
        with pytest.raises(UnknownAccessToken):
            await server.token_info("nope")
        with pytest.raises(UnknownAccessToken):
            await server.token_info(None)

    @pytest.mark.asyncio
    async def test_revoke(self, server):
        grant = await server.exchange_password(TRUSTED, "bob", "secret", ["offline_access"])
        assert await server.revoke(grant.access_token) is True
        assert await server.revoke(grant.refresh_token) is True
        assert await server.revoke("unknown") is False
        with pytest.raises(UnknownAccessToken):
            await server.token_info(grant.access_token)


class TestStoreFailures:
    @pytest.mark.asyncio
    async def test_backend_error_is_store_failure(self, registry, users):
        server = AuthorizationServer(registry, BrokenStore(), users, Settings())
        with pytest.raises(StoreFailure):
            await server.exchange_client_credentials(UNTRUSTED, [])

    def test_store_failure_is_not_denied(self):
        assert not issubclass(StoreFailure, Denied)
        assert StoreFailure().status_code == 500

    @pytest.mark.asyncio
    async def test_deadline(self, registry, users):
        server = AuthorizationServer(
            registry, HangingStore(), users, Settings(store_timeout=0.01)
        )
        with pytest.raises(StoreFailure):
            await server.exchange_refresh_token(TRUSTED, "anything")

    @pytest.mark.asyncio
    async def test_refresh_write_failure_withdraws_access_token(self, registry, users):
        store = RefreshWriteFailsStore()
        server = AuthorizationServer(registry, store, users, Settings())
        with pytest.raises(StoreFailure):
            await server.exchange_password(TRUSTED, "bob", "secret", ["offline_access"])
        assert store._access_tokens == {}
        assert store._refresh_tokens == {}


class TestFindUser:
    @pytest.mark.asyncio
    async def test_find_user(self, server):
        assert (await server.find_user("1")).username == "bob"
        assert await server.find_user("2") is None

    @pytest.mark.asyncio
    async def test_without_verifier(self, registry, store):
        server = AuthorizationServer(registry, store, None, Settings())
        assert await server.find_user("1") is None

    @pytest.mark.asyncio
    async def test_backend_error_is_store_failure(self, registry, store):
        server = AuthorizationServer(registry, store, BrokenUserStore(), Settings())
        with pytest.raises(StoreFailure):
            await server.find_user("1")
