from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response, status

from iam_service.api.deps import get_tenant_service, require_admin
from iam_service.api.errors import CODE_TENANT_CONFLICT, CODE_TENANT_NOT_FOUND, ApiError
from iam_service.domain.models import TenantCreate, TenantRead, TenantUpdate
from iam_service.infra.audit import record_audit
from iam_service.services.tenant_service import (
    TenantConflictError,
    TenantNotFoundError,
    TenantService,
)

router = APIRouter(dependencies=[Depends(require_admin)])

Service = Annotated[TenantService, Depends(get_tenant_service)]


def _handle_tenant_error(exc: Exception) -> None:
    if isinstance(exc, TenantNotFoundError):
        raise ApiError(status.HTTP_404_NOT_FOUND, CODE_TENANT_NOT_FOUND, str(exc)) from exc
    if isinstance(exc, TenantConflictError):
        raise ApiError(status.HTTP_409_CONFLICT, CODE_TENANT_CONFLICT, str(exc)) from exc
    raise exc


@router.post("/tenants", response_model=TenantRead, status_code=status.HTTP_201_CREATED)
def create_tenant(payload: TenantCreate, request: Request, service: Service) -> TenantRead:
    record_audit(request, "tenant.create", tenant=payload.model_dump())
    try:
        return TenantRead.model_validate(service.create_tenant(payload))
    except TenantConflictError as exc:
        _handle_tenant_error(exc)
        raise


@router.get("/tenants", response_model=list[TenantRead])
def list_tenants(service: Service) -> list[TenantRead]:
    return [TenantRead.model_validate(item) for item in service.list_tenants()]


@router.get("/tenants/{tenant_id}", response_model=TenantRead)
def get_tenant(tenant_id: str, service: Service) -> TenantRead:
    try:
        return TenantRead.model_validate(service.get_tenant(tenant_id))
    except TenantNotFoundError as exc:
        _handle_tenant_error(exc)
        raise


@router.patch("/tenants/{tenant_id}", response_model=TenantRead)
def update_tenant(
    tenant_id: str,
    payload: TenantUpdate,
    request: Request,
    service: Service,
) -> TenantRead:
    record_audit(request, "tenant.update", tenant_id=tenant_id, changes=payload.model_dump(exclude_none=True))
    try:
        return TenantRead.model_validate(service.update_tenant(tenant_id, payload))
    except (TenantNotFoundError, TenantConflictError) as exc:
        _handle_tenant_error(exc)
        raise


@router.delete("/tenants/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(tenant_id: str, request: Request, service: Service) -> Response:
    record_audit(request, "tenant.delete", tenant_id=tenant_id)
    try:
        service.delete_tenant(tenant_id)
    except TenantNotFoundError as exc:
        _handle_tenant_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
