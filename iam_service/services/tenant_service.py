from __future__ import annotations

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from iam_service.domain.models import Tenant, TenantCreate, TenantUpdate, now_utc
from iam_service.infra.db import get_engine


class TenantError(Exception):
    pass


class TenantNotFoundError(TenantError):
    pass


class TenantConflictError(TenantError):
    pass


class TenantStoreError(TenantError):
    pass


class TenantService:
    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def get_tenant(self, tenant_id: str) -> Tenant:
        try:
            with self._session() as session:
                tenant = session.get(Tenant, tenant_id)
        except SQLAlchemyError as exc:
            raise TenantStoreError("failed to load tenant") from exc
        if tenant is None:
            raise TenantNotFoundError("tenant not found")
        return tenant

    def list_tenants(self) -> list[Tenant]:
        with self._session() as session:
            statement = select(Tenant).order_by(Tenant.created_at)
            return list(session.exec(statement).all())

    def create_tenant(self, payload: TenantCreate) -> Tenant:
        tenant = Tenant(
            name=payload.name,
            public_url=payload.public_url,
            admin_url=payload.admin_url,
        )
        with self._session() as session:
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise TenantConflictError("tenant name already exists") from exc
            session.refresh(tenant)
            return tenant

    def update_tenant(self, tenant_id: str, payload: TenantUpdate) -> Tenant:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotFoundError("tenant not found")
            updated = False
            for field_name in ("name", "public_url", "admin_url"):
                value = getattr(payload, field_name)
                if value and value != getattr(tenant, field_name):
                    setattr(tenant, field_name, value)
                    updated = True
            if not updated:
                return tenant
            tenant.updated_at = now_utc()
            session.add(tenant)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise TenantConflictError("tenant name already exists") from exc
            session.refresh(tenant)
            return tenant

    def delete_tenant(self, tenant_id: str) -> None:
        with self._session() as session:
            tenant = session.get(Tenant, tenant_id)
            if tenant is None:
                raise TenantNotFoundError("tenant not found")
            session.delete(tenant)
            session.commit()
