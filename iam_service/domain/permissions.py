from __future__ import annotations

from dataclasses import dataclass, field

DENIED_REASON = "Permission denied by policy"
RELATION_DELEGATE = "delegate"


class RequestValidationFailed(ValueError):
    pass


@dataclass(frozen=True)
class TenantRelation:
    tenant_id: str
    identifier: str

    def scoped(self, value: str) -> str:
        return f"{self.tenant_id}:{value}"

    @property
    def subject_id(self) -> str:
        return self.scoped(self.identifier)


@dataclass(frozen=True)
class _TupleRequest:
    namespace: str
    relation: str
    object: str
    subject: TenantRelation = field(default_factory=lambda: TenantRelation("", ""))

    def validate(self) -> None:
        missing = [
            name
            for name, value in (
                ("namespace", self.namespace),
                ("relation", self.relation),
                ("object", self.object),
                ("tenant_id", self.subject.tenant_id),
                ("identifier", self.subject.identifier),
            )
            if not value
        ]
        if missing:
            raise RequestValidationFailed(f"missing required fields: {', '.join(missing)}")

    @property
    def scoped_object(self) -> str:
        return self.subject.scoped(self.object)


@dataclass(frozen=True)
class CreateRelationTupleRequest(_TupleRequest):
    pass


@dataclass(frozen=True)
class CheckPermissionRequest(_TupleRequest):
    pass


@dataclass(frozen=True)
class DelegateAccessRequest:
    resource_type: str
    resource_id: str
    permission: str
    tenant_id: str
    identifier: str

    def validate(self) -> None:
        if not all(
            (self.resource_type, self.resource_id, self.permission, self.tenant_id, self.identifier)
        ):
            raise RequestValidationFailed(
                "resource_type, resource_id, permission, tenant_id and identifier are required"
            )

    @property
    def object(self) -> str:
        return f"{self.resource_type}:{self.resource_id}"
