# Resource owner credential verification.
# Created: 2026-10-19
#
# The password grant only needs "is this username/password pair valid, and
# who is it". Hashing is the verifier's business; the core never sees a
# stored password.

from __future__ import annotations

import asyncio
import hashlib
import hmac
import secrets
from collections.abc import Iterable
from typing import Any, Protocol

from ssogate.api.oauth2.models import User

_PBKDF2_ITERATIONS = 200_000


class CredentialVerifier(Protocol):
    """Protocol for user credential backends."""

    async def verify(self, username: str, password: str) -> User | None:
        """Return the user when the credentials are valid, None otherwise."""
        ...

    async def find_user(self, user_id: str) -> User | None:
        """Look up a user by id."""
        ...


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, _PBKDF2_ITERATIONS)


class InMemoryUserStore:
    """Stores salted PBKDF2 password hashes in memory."""

    def __init__(self):
        self._users: dict[str, User] = {}  # username -> user
        self._hashes: dict[str, tuple[bytes, bytes]] = {}  # username -> (salt, hash)

    @classmethod
    def from_config(cls, entries: Iterable[dict[str, Any]]) -> InMemoryUserStore:
        """Build a store from config entries (``Settings.users``)."""
        store = cls()
        for entry in entries:
            user = User(
                id=str(entry["id"]),
                username=entry.get("username", ""),
                name=entry.get("name", ""),
                email=entry.get("email", ""),
            )
            store.add_user(user, entry["password"])
        return store

    def add_user(self, user: User, password: str) -> None:
        username = user.username or user.id
        salt = secrets.token_bytes(16)
        self._users[username] = user
        self._hashes[username] = (salt, _hash_password(password, salt))

    async def verify(self, username: str, password: str) -> User | None:
        user = self._users.get(username)
        if user is None:
            return None
        salt, expected = self._hashes[username]
        # PBKDF2 is CPU bound; hash in a worker thread to keep the loop free.
        digest = await asyncio.to_thread(_hash_password, password, salt)
        if not hmac.compare_digest(digest, expected):
            return None
        return user

    async def find_user(self, user_id: str) -> User | None:
        for user in self._users.values():
            if user.id == user_id:
                return user
        return None
