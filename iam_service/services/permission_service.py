from __future__ import annotations

import logging
from typing import Protocol

from iam_service.domain.permissions import (
    RELATION_DELEGATE,
    CheckPermissionRequest,
    CreateRelationTupleRequest,
    DelegateAccessRequest,
    TenantRelation,
)
from iam_service.services.identity_service import IdentityNotFoundError, IdentityService

logger = logging.getLogger(__name__)


class RelationEngine(Protocol):
    def create_relation_tuple(self, request: CreateRelationTupleRequest) -> None: ...

    def check_permission(self, request: CheckPermissionRequest) -> bool: ...

    def batch_check_permission(self, requests: list[CheckPermissionRequest]) -> list[bool]: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...


class DelegationNotAllowedError(Exception):
    pass


class PermissionService:
    """Tenant-scoped gateway to the relation engine.

    Every request is validated before dispatch; engine errors propagate to the
    caller unchanged.
    """

    def __init__(self, engine: RelationEngine, identities: IdentityService) -> None:
        self.engine = engine
        self.identities = identities

    def create_relation_tuple(self, request: CreateRelationTupleRequest) -> None:
        request.validate()
        self.engine.create_relation_tuple(request)

    def check_permission(self, request: CheckPermissionRequest) -> bool:
        request.validate()
        return self.engine.check_permission(request)

    def batch_check_permission(self, requests: list[CheckPermissionRequest]) -> bool:
        for request in requests:
            request.validate()
        if not requests:
            return False
        return all(self.engine.batch_check_permission(requests))

    def delegate_access(self, delegator: TenantRelation, request: DelegateAccessRequest) -> None:
        request.validate()
        can_delegate = self.check_permission(
            CheckPermissionRequest(
                namespace=request.resource_type,
                relation=RELATION_DELEGATE,
                object=request.object,
                subject=delegator,
            )
        )
        if not can_delegate:
            raise DelegationNotAllowedError(
                "You don't have permission to delegate access to this resource"
            )

        target = self.identities.find_by_identifier(request.identifier)
        if target is None:
            raise IdentityNotFoundError("delegation target not found")

        self.create_relation_tuple(
            CreateRelationTupleRequest(
                namespace=request.resource_type,
                relation=request.permission,
                object=request.object,
                subject=TenantRelation(tenant_id=request.tenant_id, identifier=target.id),
            )
        )
        logger.info(
            "identity %s delegated %s on %s to %s",
            delegator.identifier,
            request.permission,
            request.object,
            target.id,
        )
