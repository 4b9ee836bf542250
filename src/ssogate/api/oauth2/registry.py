# OAuth2 client registry.
# Created: 2026-10-19
#
# The registry is an external collaborator: the core only needs lookups by
# client id and by redirect URI. InMemoryClientRegistry backs development,
# tests and config-file driven deployments.

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable
from typing import Any, Protocol

from ssogate.api.oauth2.models import Client

logger = logging.getLogger(__name__)


class ClientRegistry(Protocol):
    """Protocol for client lookup backends."""

    async def find(self, client_id: str) -> Client | None:
        """Return the client registered under *client_id*, or None."""
        ...

    async def find_by_redirect_uri(self, redirect_uri: str) -> Client | None:
        """Return the client whose redirect URI prefix matches *redirect_uri*."""
        ...


class InMemoryClientRegistry:
    """Dict-backed client registry."""

    def __init__(self, clients: Iterable[Client] = ()):
        self._clients: dict[str, Client] = {}
        for client in clients:
            self.register(client)

    @classmethod
    def from_config(cls, entries: Iterable[dict[str, Any]]) -> InMemoryClientRegistry:
        """Build a registry from config entries (``Settings.clients``)."""
        clients = []
        for entry in entries:
            clients.append(
                Client(
                    id=entry["id"],
                    name=entry.get("name", entry["id"]),
                    secret=entry.get("secret", ""),
                    redirect_uri=entry.get("redirect_uri"),
                    allowed_scopes=list(entry.get("allowed_scopes") or ["*"]),
                    trusted=bool(entry.get("trusted", False)),
                )
            )
        return cls(clients)

    def register(self, client: Client) -> None:
        if client.id in self._clients:
            raise ValueError(f"Client already registered: {client.id}")
        self._clients[client.id] = client
        logger.debug("Registered OAuth2 client %s (trusted=%s)", client.id, client.trusted)

    async def find(self, client_id: str) -> Client | None:
        return self._clients.get(client_id)

    async def find_by_redirect_uri(self, redirect_uri: str) -> Client | None:
        for client in self._clients.values():
            if client.redirect_uri and redirect_uri.startswith(client.redirect_uri):
                return client
        return None

    def __len__(self) -> int:
        return len(self._clients)


def secrets_match(client: Client, secret: str | None) -> bool:
    """Constant-time comparison of a presented client secret."""
    if not client.secret or secret is None:
        return False
    return hmac.compare_digest(client.secret.encode(), secret.encode())
