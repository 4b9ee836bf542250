# Scope evaluation.
# Created: 2026-10-19
#
# Scopes are opaque strings without whitespace. Two have special meaning:
#   "*"              satisfies every scope check, and allows every scope
#                    except offline_access when granting
#   "offline_access" allows a refresh token to be issued
#
# A refresh token is only minted when offline_access is literally present,
# so a "*" grant never implies one.

from __future__ import annotations

from collections.abc import Iterable

WILDCARD = "*"
OFFLINE_ACCESS = "offline_access"


def parse_scope(scope: str | Iterable[str] | None) -> list[str]:
    """Normalize a scope parameter to an ordered list without duplicates.

    Accepts the space-delimited wire form (commas are tolerated) or any
    iterable of strings.
    """
    if not scope:
        return []
    if isinstance(scope, str):
        items = scope.replace(",", " ").split()
    else:
        items = [s.strip() for s in scope if s and s.strip()]
    return list(dict.fromkeys(items))


def format_scope(scope: Iterable[str]) -> str:
    return " ".join(scope)


def _as_list(required: str | Iterable[str] | None) -> list[str]:
    if required is None:
        return []
    if isinstance(required, str):
        return [required] if required else []
    return list(required)


def satisfies_any(required: str | Iterable[str] | None, granted: Iterable[str] | None) -> bool:
    """True if at least one of *required* is in *granted*.

    An empty requirement is always satisfied, and a wildcard grant satisfies
    any requirement.
    """
    required = _as_list(required)
    if not required:
        return True
    granted = set(granted or ())
    if WILDCARD in granted:
        return True
    return any(scope in granted for scope in required)


def satisfies_all(required: str | Iterable[str] | None, granted: Iterable[str] | None) -> bool:
    """True if every scope in *required* is in *granted*.

    An empty requirement is always satisfied, and a wildcard grant satisfies
    any requirement.
    """
    required = _as_list(required)
    if not required:
        return True
    granted = set(granted or ())
    if WILDCARD in granted:
        return True
    return all(scope in granted for scope in required)


def restrict_to_allowed(allowed: Iterable[str] | None, requested: Iterable[str] | None) -> list[str]:
    """Effective scope of a token issued to a client.

    Keeps the requested scopes the client may hold, in request order. A
    wildcard allowance keeps every requested scope except offline_access,
    which must be listed explicitly.
    """
    allowed = set(allowed) if allowed else {WILDCARD}
    if WILDCARD in allowed:
        return [
            scope
            for scope in parse_scope(requested)
            if scope != OFFLINE_ACCESS or OFFLINE_ACCESS in allowed
        ]
    return [scope for scope in parse_scope(requested) if scope in allowed]


def grants_offline_access(scope: Iterable[str] | None) -> bool:
    return OFFLINE_ACCESS in (scope or ())
