from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    tenant_id: str = Field(index=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    public_url: str = ""
    admin_url: str = ""
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class IdentityUser(SQLModel, table=True):
    __tablename__ = "identity_users"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    external_id: str | None = Field(default=None, unique=True, index=True)
    email: str | None = Field(default=None, index=True)
    phone: str | None = Field(default=None, index=True)
    username: str = Field(index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class TenantCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    public_url: str = ""
    admin_url: str = ""


class TenantUpdate(BaseModel):
    name: str | None = None
    public_url: str | None = None
    admin_url: str | None = None


class TenantRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    public_url: str
    admin_url: str
    created_at: datetime
    updated_at: datetime


class IdentityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    external_id: str | None = None
    email: str | None = None
    phone: str | None = None
    username: str
    created_at: datetime
    updated_at: datetime


class ExternalProfile(BaseModel):
    id: str = ""
    email: str = ""
    phone: str = ""

    def is_complete(self) -> bool:
        return bool(self.id) and bool(self.email or self.phone)


class RelationTupleBody(BaseModel):
    namespace: str
    relation: str
    object: str


class BatchCheckPermissionBody(BaseModel):
    tuples: list[RelationTupleBody] = PydanticField(min_length=1, max_length=100)


class DelegateAccessBody(BaseModel):
    resource_type: str
    resource_id: str
    permission: str
    identifier: str


class CheckPermissionResponse(BaseModel):
    allowed: bool
    reason: str | None = None


class MessageResponse(BaseModel):
    message: str
