# OAuth2 artifact storage.
# Created: 2026-10-19
#
# Authorization codes live in memory only (single-use, short TTL).
# Access and refresh tokens can optionally be persisted to a JSON file so
# that refresh tokens survive restarts.

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol

from ssogate.api.oauth2.models import AccessToken, AuthorizationCode, RefreshToken

logger = logging.getLogger(__name__)


class ArtifactStore(Protocol):
    """Protocol for code and token persistence backends.

    Every ``delete_*`` call must be atomic and report how many records it
    removed: a second delete of the same key returns 0. Code exchange relies
    on that count to reject concurrent redemptions of one code.
    """

    async def save_code(self, code: AuthorizationCode) -> None: ...

    async def find_code(self, code: str) -> AuthorizationCode | None: ...

    async def delete_code(self, code: str) -> int: ...

    async def save_access_token(self, token: AccessToken) -> None: ...

    async def find_access_token(self, token: str) -> AccessToken | None: ...

    async def delete_access_token(self, token: str) -> int: ...

    async def save_refresh_token(self, token: RefreshToken) -> None: ...

    async def find_refresh_token(self, token: str) -> RefreshToken | None: ...

    async def delete_refresh_token(self, token: str) -> int: ...


class InMemoryArtifactStore:
    """Dict-backed artifact store with optional JSON persistence for tokens.

    Deletes use ``dict.pop`` with no await in between lookup and removal, so
    they are atomic with respect to other tasks on the event loop.
    """

    def __init__(self, persist_path: Path | None = None):
        self._codes: dict[str, AuthorizationCode] = {}
        self._access_tokens: dict[str, AccessToken] = {}
        self._refresh_tokens: dict[str, RefreshToken] = {}
        self._persist_path = persist_path
        self._load_tokens()

    def _load_tokens(self) -> None:
        """Load tokens from disk on startup."""
        path = self._persist_path
        if path is None or not path.exists():
            return
        try:
            data = json.loads(path.read_text())
            for entry in data.get("access_tokens", []):
                token = AccessToken(
                    token=entry["token"],
                    expires_at=datetime.fromisoformat(entry["expires_at"]),
                    user_id=entry.get("user_id"),
                    client_id=entry["client_id"],
                    scope=list(entry.get("scope", [])),
                )
                self._access_tokens[token.token] = token
            for entry in data.get("refresh_tokens", []):
                refresh = RefreshToken(
                    token=entry["token"],
                    user_id=entry.get("user_id"),
                    client_id=entry["client_id"],
                    scope=list(entry.get("scope", [])),
                )
                self._refresh_tokens[refresh.token] = refresh
            logger.debug(
                "Loaded %d access and %d refresh tokens from %s",
                len(self._access_tokens),
                len(self._refresh_tokens),
                path,
            )
        except (json.JSONDecodeError, OSError, KeyError, ValueError) as exc:
            logger.warning("Failed to load OAuth2 tokens from %s: %s", path, exc)

    def _save_tokens(self) -> None:
        """Persist tokens to disk. Raises OSError on write failure; callers roll back."""
        path = self._persist_path
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "access_tokens": [
                {
                    "token": t.token,
                    "expires_at": t.expires_at.isoformat(),
                    "user_id": t.user_id,
                    "client_id": t.client_id,
                    "scope": t.scope,
                }
                for t in self._access_tokens.values()
            ],
            "refresh_tokens": [
                {
                    "token": t.token,
                    "user_id": t.user_id,
                    "client_id": t.client_id,
                    "scope": t.scope,
                }
                for t in self._refresh_tokens.values()
            ],
        }
        path.write_text(json.dumps(data, indent=2))
        try:
            path.chmod(0o600)
        except OSError:
            pass

    # -- authorization codes --------------------------------------------

    async def save_code(self, code: AuthorizationCode) -> None:
        self._codes[code.code] = code

    async def find_code(self, code: str) -> AuthorizationCode | None:
        return self._codes.get(code)

    async def delete_code(self, code: str) -> int:
        return 1 if self._codes.pop(code, None) is not None else 0

    # -- access tokens --------------------------------------------------

    async def save_access_token(self, token: AccessToken) -> None:
        self._access_tokens[token.token] = token
        try:
            self._save_tokens()
        except OSError:
            del self._access_tokens[token.token]
            raise

    async def find_access_token(self, token: str) -> AccessToken | None:
        return self._access_tokens.get(token)

    async def delete_access_token(self, token: str) -> int:
        if self._access_tokens.pop(token, None) is None:
            return 0
        self._save_tokens()
        return 1

    # -- refresh tokens -------------------------------------------------

    async def save_refresh_token(self, token: RefreshToken) -> None:
        self._refresh_tokens[token.token] = token
        try:
            self._save_tokens()
        except OSError:
            del self._refresh_tokens[token.token]
            raise

    async def find_refresh_token(self, token: str) -> RefreshToken | None:
        return self._refresh_tokens.get(token)

    async def delete_refresh_token(self, token: str) -> int:
        if self._refresh_tokens.pop(token, None) is None:
            return 0
        self._save_tokens()
        return 1

    def cleanup_expired(self, code_ttl: timedelta = timedelta(minutes=10)) -> int:
        """Drop expired codes and access tokens. Returns count removed."""
        now = datetime.now(UTC)
        expired_codes = [k for k, v in self._codes.items() if now - v.created_at > code_ttl]
        for k in expired_codes:
            del self._codes[k]

        expired_tokens = [k for k, v in self._access_tokens.items() if v.is_expired(now)]
        for k in expired_tokens:
            del self._access_tokens[k]
        if expired_tokens:
            self._save_tokens()

        return len(expired_codes) + len(expired_tokens)
