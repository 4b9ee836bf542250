# Opaque token minting.
# Created: 2026-10-19

from __future__ import annotations

import secrets
import string

_ALPHABET = string.ascii_letters + string.digits


def mint(length: int) -> str:
    """Return a random opaque identifier of exactly *length* characters.

    Characters are drawn from ``[A-Za-z0-9]`` using the ``secrets`` CSPRNG, so
    the value is safe in URLs, form bodies and headers without escaping.
    """
    if length <= 0:
        raise ValueError(f"Token length must be positive, got {length}")
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))
