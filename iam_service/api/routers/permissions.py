from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request, status

from iam_service.api.deps import (
    RequestContext,
    get_permission_service,
    get_request_context,
    rate_limit,
)
from iam_service.api.errors import (
    CODE_CREATE_RELATION_TUPLE_FAILED,
    CODE_DELEGATE_ACCESS_FAILED,
    CODE_DELEGATION_NOT_ALLOWED,
    CODE_IDENTITY_NOT_FOUND,
    CODE_INVALID_PAYLOAD,
    CODE_PERMISSION_CHECK_FAILED,
    ApiError,
    field_error,
)
from iam_service.clients.keto import RelationEngineError
from iam_service.domain.models import (
    BatchCheckPermissionBody,
    CheckPermissionResponse,
    DelegateAccessBody,
    MessageResponse,
    RelationTupleBody,
)
from iam_service.domain.permissions import (
    DENIED_REASON,
    CheckPermissionRequest,
    CreateRelationTupleRequest,
    DelegateAccessRequest,
    RequestValidationFailed,
)
from iam_service.infra.audit import record_audit
from iam_service.services.identity_service import IdentityNotFoundError, IdentityStoreError
from iam_service.services.permission_service import DelegationNotAllowedError, PermissionService

router = APIRouter()
logger = logging.getLogger(__name__)

Context = Annotated[RequestContext, Depends(get_request_context)]
Service = Annotated[PermissionService, Depends(get_permission_service)]


def _invalid_payload(exc: RequestValidationFailed) -> ApiError:
    logger.info("invalid permission payload: %s", exc)
    return ApiError(
        status.HTTP_400_BAD_REQUEST,
        CODE_INVALID_PAYLOAD,
        "Invalid request payload",
        field_error("body", str(exc)),
    )


def _check_response(allowed: bool) -> CheckPermissionResponse:
    return CheckPermissionResponse(allowed=allowed, reason=None if allowed else DENIED_REASON)


@router.post(
    "/relation-tuples",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("relation_tuple_create"))],
)
def create_relation_tuple(
    payload: RelationTupleBody,
    request: Request,
    ctx: Context,
    service: Service,
) -> MessageResponse:
    tuple_request = CreateRelationTupleRequest(
        namespace=payload.namespace,
        relation=payload.relation,
        object=payload.object,
        subject=ctx.tenant_relation,
    )
    record_audit(request, "permission.relation_tuple.create", tuple=payload.model_dump())
    try:
        service.create_relation_tuple(tuple_request)
    except RequestValidationFailed as exc:
        raise _invalid_payload(exc) from exc
    except RelationEngineError as exc:
        logger.error("failed to create relation tuple: %s", exc)
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CODE_CREATE_RELATION_TUPLE_FAILED,
            "Failed to create relation tuple",
        ) from exc
    return MessageResponse(message="Relation tuple created successfully")


@router.post(
    "/check",
    response_model=CheckPermissionResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("permission_check"))],
)
def check_permission(
    payload: RelationTupleBody,
    ctx: Context,
    service: Service,
) -> CheckPermissionResponse:
    check_request = CheckPermissionRequest(
        namespace=payload.namespace,
        relation=payload.relation,
        object=payload.object,
        subject=ctx.tenant_relation,
    )
    try:
        allowed = service.check_permission(check_request)
    except RequestValidationFailed as exc:
        raise _invalid_payload(exc) from exc
    except RelationEngineError as exc:
        logger.error("failed to check permission: %s", exc)
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CODE_PERMISSION_CHECK_FAILED,
            "Failed to check permission",
        ) from exc
    return _check_response(allowed)


@router.post(
    "/batch-check",
    response_model=CheckPermissionResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(rate_limit("permission_check"))],
)
def batch_check_permission(
    payload: BatchCheckPermissionBody,
    ctx: Context,
    service: Service,
) -> CheckPermissionResponse:
    check_requests = [
        CheckPermissionRequest(
            namespace=item.namespace,
            relation=item.relation,
            object=item.object,
            subject=ctx.tenant_relation,
        )
        for item in payload.tuples
    ]
    try:
        allowed = service.batch_check_permission(check_requests)
    except RequestValidationFailed as exc:
        raise _invalid_payload(exc) from exc
    except RelationEngineError as exc:
        logger.error("failed to batch check permissions: %s", exc)
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CODE_PERMISSION_CHECK_FAILED,
            "Failed to check permission",
        ) from exc
    return _check_response(allowed)


@router.post(
    "/delegate",
    response_model=MessageResponse,
    dependencies=[Depends(rate_limit("delegate_access"))],
)
def delegate_access(
    payload: DelegateAccessBody,
    request: Request,
    ctx: Context,
    service: Service,
) -> MessageResponse:
    delegate_request = DelegateAccessRequest(
        resource_type=payload.resource_type,
        resource_id=payload.resource_id,
        permission=payload.permission,
        tenant_id=ctx.tenant.id,
        identifier=payload.identifier,
    )
    record_audit(request, "permission.delegate", delegation=payload.model_dump())
    try:
        service.delegate_access(ctx.tenant_relation, delegate_request)
    except RequestValidationFailed as exc:
        raise _invalid_payload(exc) from exc
    except DelegationNotAllowedError as exc:
        raise ApiError(status.HTTP_403_FORBIDDEN, CODE_DELEGATION_NOT_ALLOWED, str(exc)) from exc
    except IdentityNotFoundError as exc:
        raise ApiError(
            status.HTTP_404_NOT_FOUND,
            CODE_IDENTITY_NOT_FOUND,
            "Delegation target not found",
            field_error("identifier", str(exc)),
        ) from exc
    except (RelationEngineError, IdentityStoreError) as exc:
        logger.error("failed to delegate access: %s", exc)
        raise ApiError(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            CODE_DELEGATE_ACCESS_FAILED,
            "Failed to delegate access",
        ) from exc
    return MessageResponse(message="Access delegated successfully")
