from __future__ import annotations

import logging
import os

from iam_service.clients.identity_provider import IdentityProviderClient, IdentityProviderError
from iam_service.domain.models import IdentityRead
from iam_service.infra.auth import InvalidAuthorizationHeader, extract_bearer_token, hash_token
from iam_service.infra.cache import CacheBackend, CacheError, TypedCache
from iam_service.services.identity_service import IdentityService

IDENTITY_CACHE_TTL_SECONDS = int(os.getenv("IDENTITY_CACHE_TTL_SECONDS", str(30 * 60)))
IDENTITY_CACHE_NAMESPACE = "middleware"
AUTH_ALLOW_LEGACY_TOKEN = os.getenv("AUTH_ALLOW_LEGACY_TOKEN", "false").lower() in {"1", "true", "yes"}

logger = logging.getLogger(__name__)


class AuthenticationError(Exception):
    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason or message


def build_identity_cache(backend: CacheBackend) -> TypedCache[IdentityRead]:
    return TypedCache(
        backend,
        IdentityRead,
        namespace=IDENTITY_CACHE_NAMESPACE,
        ttl_seconds=IDENTITY_CACHE_TTL_SECONDS,
    )


class HybridAuthenticator:
    """Resolves bearer tokens to local identities.

    A warm cache entry short-circuits everything else. On a miss the token is
    re-validated against the external provider, the local identity is looked up
    or provisioned, and the result is cached on a best-effort basis.
    """

    def __init__(
        self,
        provider: IdentityProviderClient,
        identity_cache: TypedCache[IdentityRead],
        identities: IdentityService,
        *,
        allow_legacy: bool = AUTH_ALLOW_LEGACY_TOKEN,
    ) -> None:
        self.provider = provider
        self.identity_cache = identity_cache
        self.identities = identities
        self.allow_legacy = allow_legacy

    def _cached_identity(self, token_hash: str) -> IdentityRead | None:
        try:
            return self.identity_cache.get(token_hash)
        except CacheError as exc:
            logger.warning("identity cache read failed for %s...: %s", token_hash[:12], exc)
            return None

    def _remember(self, token_hash: str, identity: IdentityRead) -> None:
        try:
            self.identity_cache.set(token_hash, identity)
        except CacheError as exc:
            logger.error("failed to cache identity %s: %s", identity.id, exc)

    def authenticate(self, authorization_header: str | None) -> IdentityRead:
        try:
            token = extract_bearer_token(authorization_header, allow_legacy=self.allow_legacy)
        except InvalidAuthorizationHeader as exc:
            raise AuthenticationError("Authorization header is required", str(exc)) from exc

        token_hash = hash_token(token)
        identity = self._cached_identity(token_hash)
        if identity is not None:
            return identity

        try:
            profile = self.provider.get_profile(authorization_header or "")
        except IdentityProviderError as exc:
            logger.info("identity provider rejected token %s...: %s", token_hash[:12], exc)
            raise AuthenticationError("Invalid token") from exc

        if not profile.is_complete():
            raise AuthenticationError("Invalid token", "Invalid token data")

        identity = self.identities.resolve_profile(profile)
        self._remember(token_hash, identity)
        return identity

    def close(self) -> None:
        self.provider.close()
