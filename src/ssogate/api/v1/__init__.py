# API router aggregation.
# Created: 2026-10-19
#
# mount_routers(app) registers the OAuth2 endpoints, the CAS emulation
# aliases and the bearer-protected user API.

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("ssogate.api.v1.oauth2", "router", "OAuth2"),
    ("ssogate.api.v1.oauth2", "cas_router", "CAS"),
    ("ssogate.api.v1.users", "router", "Users"),
]


def mount_routers(app: FastAPI) -> None:
    """Mount every router on *app*. Import errors propagate."""
    from fastapi import APIRouter

    for module_path, attr_name, tag in _ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router)
        logger.debug("Mounted router: %s.%s (%s)", module_path, attr_name, tag)
