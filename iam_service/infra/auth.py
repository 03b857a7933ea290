from __future__ import annotations

import hashlib

BEARER_PREFIX = "Bearer"
LEGACY_TOKEN_PREFIX = "Token"


class InvalidAuthorizationHeader(Exception):
    pass


def extract_bearer_token(header: str | None, *, allow_legacy: bool = False) -> str:
    """Return the raw token carried by an ``Authorization`` header value.

    The header must be exactly ``<prefix> <token>``. ``Bearer`` is always accepted;
    ``Token`` only when ``allow_legacy`` is set.
    """
    if not header:
        raise InvalidAuthorizationHeader("Authorization header is required")
    parts = header.split(" ")
    prefixes = {BEARER_PREFIX, LEGACY_TOKEN_PREFIX} if allow_legacy else {BEARER_PREFIX}
    if len(parts) != 2 or parts[0] not in prefixes:
        raise InvalidAuthorizationHeader("Invalid authorization header format")
    token = parts[1].strip()
    if not token:
        raise InvalidAuthorizationHeader("Invalid authorization header format")
    return token


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()
