"""Configuration for ssogate.

Settings come from, in increasing precedence:

1. field defaults below
2. a ``.env`` file in the working directory
3. ``~/.ssogate/config.json`` (or ``$SSOGATE_CONFIG_DIR/config.json``)
4. ``SSOGATE_*`` environment variables

``Settings.load()`` reads a fresh instance; ``get_settings()`` caches one per
process.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

CONFIG_DIR_ENV_VAR = "SSOGATE_CONFIG_DIR"


def get_config_dir() -> Path:
    """Return the configuration directory, creating it if needed."""
    override = os.environ.get(CONFIG_DIR_ENV_VAR)
    config_dir = Path(override) if override else Path.home() / ".ssogate"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_config_path() -> Path:
    return get_config_dir() / "config.json"


class Settings(BaseSettings):
    """Authorization server settings."""

    model_config = SettingsConfigDict(
        env_prefix="SSOGATE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Token minting
    authorization_code_length: int = Field(default=16, gt=0)
    access_token_length: int = Field(default=256, gt=0)
    refresh_token_length: int = Field(default=256, gt=0)

    # Lifetimes, in seconds
    access_token_ttl: int = Field(default=3600, gt=0)
    authorization_code_ttl: int = Field(default=600, gt=0)

    # Deadline applied to store and registry calls; None waits forever
    store_timeout: float | None = None

    # Optional JSON persistence for issued tokens
    token_store_path: Path | None = None

    # Client registrations: [{"id", "name", "secret", "redirect_uri",
    # "allowed_scopes", "trusted"}]
    clients: list[dict[str, Any]] = Field(default_factory=list)

    # Resource owner accounts for the password grant: [{"id", "username",
    # "password", "name", "email"}]. Passwords are hashed on load.
    users: list[dict[str, Any]] = Field(default_factory=list)

    # HTTP layer
    session_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(32))
    session_cookie: str = "ssogate_session"
    login_url: str = "/signin"
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    @field_validator("store_timeout")
    @classmethod
    def _positive_timeout(cls, value: float | None) -> float | None:
        if value is not None and value <= 0:
            raise ValueError("store_timeout must be positive")
        return value

    def token_expires_at(self, now: datetime | None = None) -> datetime:
        """Expiry timestamp for an access token issued at *now*."""
        return (now or datetime.now(UTC)) + timedelta(seconds=self.access_token_ttl)

    @classmethod
    def load(cls) -> Settings:
        """Load settings from the config file, overridden by the environment."""
        path = get_config_path()
        file_values: dict[str, Any] = {}
        if path.exists():
            try:
                file_values = json.loads(path.read_text())
            except (json.JSONDecodeError, OSError) as exc:
                logger.warning("Failed to read config from %s: %s", path, exc)
        # Environment wins over the file: only pass file keys not set in env.
        overrides = {
            key: value
            for key, value in file_values.items()
            if f"SSOGATE_{key.upper()}" not in os.environ
        }
        return cls(**overrides)

    def save(self) -> None:
        """Write settings back to the config file."""
        path = get_config_path()
        path.write_text(self.model_dump_json(indent=2, exclude={"session_secret", "users"}))
        try:
            path.chmod(0o600)
        except OSError:
            pass


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.load()
