from __future__ import annotations

import logging
import os
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from iam_service.api.errors import (
    CODE_INTERNAL,
    CODE_INVALID_TENANT,
    CODE_RATE_LIMIT,
    CODE_TENANT_LOOKUP_FAILED,
    CODE_TENANT_NOT_FOUND,
    CODE_UNAUTHORIZED,
    ApiError,
    field_error,
)
from iam_service.clients.identity_provider import IdentityProviderClient
from iam_service.clients.keto import KetoClient
from iam_service.domain.models import IdentityRead, TenantRead
from iam_service.domain.permissions import TenantRelation
from iam_service.infra.cache import get_cache_backend
from iam_service.infra.rate_limit import FixedWindowRateLimiter
from iam_service.services.authentication_service import (
    AuthenticationError,
    HybridAuthenticator,
    build_identity_cache,
)
from iam_service.services.identity_service import IdentityService, IdentityStoreError
from iam_service.services.permission_service import PermissionService, RelationEngine
from iam_service.services.tenant_service import (
    TenantNotFoundError,
    TenantService,
    TenantStoreError,
)

TENANT_HEADER = os.getenv("TENANT_HEADER", "X-Tenant-Id")
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "change-me")

basic_scheme = HTTPBasic(auto_error=False)
logger = logging.getLogger(__name__)


def get_tenant_service() -> TenantService:
    return TenantService()


def get_identity_service() -> IdentityService:
    return IdentityService()


@lru_cache(maxsize=1)
def get_authenticator() -> HybridAuthenticator:
    return HybridAuthenticator(
        provider=IdentityProviderClient(),
        identity_cache=build_identity_cache(get_cache_backend()),
        identities=IdentityService(),
    )


@lru_cache(maxsize=1)
def get_relation_engine() -> RelationEngine:
    return KetoClient()


@lru_cache(maxsize=1)
def get_rate_limiter() -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(get_cache_backend())


def close_clients() -> None:
    """Close the outbound HTTP clients created for this process, if any."""
    if get_authenticator.cache_info().currsize:
        get_authenticator().close()
        get_authenticator.cache_clear()
    if get_relation_engine.cache_info().currsize:
        get_relation_engine().close()
        get_relation_engine.cache_clear()


def get_permission_service(
    engine: Annotated[RelationEngine, Depends(get_relation_engine)],
    identities: Annotated[IdentityService, Depends(get_identity_service)],
) -> PermissionService:
    return PermissionService(engine, identities)


def get_current_tenant(
    request: Request,
    service: Annotated[TenantService, Depends(get_tenant_service)],
) -> TenantRead:
    raw_tenant_id = request.headers.get(TENANT_HEADER, "").strip()
    if not raw_tenant_id:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            CODE_INVALID_TENANT,
            "Tenant ID header is required",
            field_error(TENANT_HEADER, "Tenant ID header is required"),
        )
    try:
        tenant_id = UUID(raw_tenant_id)
    except ValueError as exc:
        raise ApiError(
            status.HTTP_400_BAD_REQUEST,
            CODE_INVALID_TENANT,
            "Invalid tenant ID format",
            field_error(TENANT_HEADER, "Invalid tenant ID format"),
        ) from exc

    try:
        tenant = TenantRead.model_validate(service.get_tenant(str(tenant_id)))
    except TenantNotFoundError as exc:
        raise ApiError(status.HTTP_404_NOT_FOUND, CODE_TENANT_NOT_FOUND, "Tenant not found") from exc
    except TenantStoreError as exc:
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CODE_TENANT_LOOKUP_FAILED,
            "Error verifying tenant",
        ) from exc

    request.state.tenant = tenant
    return tenant


def get_current_identity(
    request: Request,
    authenticator: Annotated[HybridAuthenticator, Depends(get_authenticator)],
) -> IdentityRead:
    try:
        identity = authenticator.authenticate(request.headers.get("Authorization"))
    except AuthenticationError as exc:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            CODE_UNAUTHORIZED,
            exc.message,
            field_error("Authorization", exc.reason),
        ) from exc
    except IdentityStoreError as exc:
        logger.exception("failed to provision identity")
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CODE_INTERNAL,
            "Failed to resolve user from identity profile",
            field_error("Authorization", str(exc)),
        ) from exc

    request.state.identity = identity
    return identity


@dataclass(frozen=True)
class RequestContext:
    tenant: TenantRead
    identity: IdentityRead

    @property
    def tenant_relation(self) -> TenantRelation:
        return TenantRelation(tenant_id=self.tenant.id, identifier=self.identity.id)


def get_request_context(
    tenant: Annotated[TenantRead, Depends(get_current_tenant)],
    identity: Annotated[IdentityRead, Depends(get_current_identity)],
) -> RequestContext:
    return RequestContext(tenant=tenant, identity=identity)


def rate_limit(action: str) -> Callable[..., None]:
    def _limiter(
        request: Request,
        tenant: Annotated[TenantRead, Depends(get_current_tenant)],
        limiter: Annotated[FixedWindowRateLimiter, Depends(get_rate_limiter)],
    ) -> None:
        client_ip = request.client.host if request.client is not None else None
        key = limiter.make_key(tenant.id, action, client_ip)
        if limiter.hit(key):
            raise ApiError(
                status.HTTP_429_TOO_MANY_REQUESTS,
                CODE_RATE_LIMIT,
                f"Too many requests from IP {client_ip or 'unknown'}. Please try again later.",
            )

    return _limiter


def require_admin(
    credentials: Annotated[HTTPBasicCredentials | None, Depends(basic_scheme)],
) -> str:
    if credentials is None:
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            CODE_UNAUTHORIZED,
            "Authorization header is required",
            field_error("Authorization", "Authorization header is required"),
            headers={"WWW-Authenticate": 'Basic realm="admin"'},
        )
    email_ok = secrets.compare_digest(credentials.username.encode(), ADMIN_EMAIL.encode())
    password_ok = secrets.compare_digest(credentials.password.encode(), ADMIN_PASSWORD.encode())
    if not (email_ok and password_ok):
        raise ApiError(
            status.HTTP_401_UNAUTHORIZED,
            CODE_UNAUTHORIZED,
            "Invalid admin credentials",
            field_error("Authorization", "Invalid admin credentials"),
            headers={"WWW-Authenticate": 'Basic realm="admin"'},
        )
    return credentials.username
