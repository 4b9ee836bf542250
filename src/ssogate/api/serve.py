"""Application factory and server runner for ``ssogate serve``.

``create_app`` wires one ``AuthorizationServer`` per process from settings
(client registrations, token store, credential verifier) and exposes it to
request handlers through ``app.state``.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from starlette.middleware.sessions import SessionMiddleware

from ssogate.api.oauth2.credentials import CredentialVerifier, InMemoryUserStore
from ssogate.api.oauth2.registry import InMemoryClientRegistry
from ssogate.api.oauth2.server import AuthorizationServer
from ssogate.api.oauth2.storage import InMemoryArtifactStore
from ssogate.api.v1 import mount_routers
from ssogate.config import Settings, get_settings

logger = logging.getLogger(__name__)


def build_server(
    settings: Settings,
    verifier: CredentialVerifier | None = None,
) -> AuthorizationServer:
    """Build an AuthorizationServer backed by the in-memory collaborators."""
    registry = InMemoryClientRegistry.from_config(settings.clients)
    store = InMemoryArtifactStore(persist_path=settings.token_store_path)
    if verifier is None:
        verifier = InMemoryUserStore.from_config(settings.users)
    logger.info("Loaded %d OAuth2 clients", len(registry))
    return AuthorizationServer(
        registry=registry,
        store=store,
        verifier=verifier,
        settings=settings,
    )


def create_app(
    server: AuthorizationServer | None = None,
    settings: Settings | None = None,
) -> FastAPI:
    """Build the FastAPI application."""
    if settings is None:
        settings = server.settings if server is not None else get_settings()
    if server is None:
        server = build_server(settings)

    app = FastAPI(
        title="ssogate",
        description="OAuth2 authorization server.",
        version="1.0.0",
    )
    app.state.oauth_server = server

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        same_site="lax",
    )

    mount_routers(app)
    return app


def run_server(
    host: str = "127.0.0.1",
    port: int = 3000,
    dev: bool = False,
) -> None:
    """Start the authorization server under uvicorn."""
    import uvicorn

    logger.info("Serving OAuth2 endpoints on http://%s:%d/oauth2/", host, port)

    if dev:
        uvicorn.run(
            "ssogate.api.serve:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="debug",
        )
    else:
        uvicorn.run(create_app(), host=host, port=port)
