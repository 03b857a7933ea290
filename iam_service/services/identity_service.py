from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from iam_service.domain.models import ExternalProfile, IdentityRead, IdentityUser
from iam_service.infra.db import get_engine

logger = logging.getLogger(__name__)


class IdentityError(Exception):
    pass


class IdentityNotFoundError(IdentityError):
    pass


class IdentityStoreError(IdentityError):
    pass


class IdentityService:
    """Local identity records, created lazily from external profiles."""

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _find_one(self, column, value: str) -> IdentityRead | None:
        try:
            with self._session() as session:
                statement = select(IdentityUser).where(column == value).order_by(IdentityUser.created_at)
                row = session.exec(statement).first()
        except SQLAlchemyError as exc:
            raise IdentityStoreError("failed to query identity store") from exc
        return IdentityRead.model_validate(row) if row is not None else None

    def find_by_external_id(self, external_id: str) -> IdentityRead | None:
        return self._find_one(IdentityUser.external_id, external_id)

    def find_by_phone(self, phone: str) -> IdentityRead | None:
        return self._find_one(IdentityUser.phone, phone)

    def find_by_email(self, email: str) -> IdentityRead | None:
        return self._find_one(IdentityUser.email, email)

    def find_by_identifier(self, identifier: str) -> IdentityRead | None:
        try:
            with self._session() as session:
                statement = (
                    select(IdentityUser)
                    .where(
                        or_(
                            IdentityUser.id == identifier,
                            IdentityUser.email == identifier,
                            IdentityUser.phone == identifier,
                        )
                    )
                    .order_by(IdentityUser.created_at)
                )
                row = session.exec(statement).first()
        except SQLAlchemyError as exc:
            raise IdentityStoreError("failed to query identity store") from exc
        return IdentityRead.model_validate(row) if row is not None else None

    def create_identity(self, user: IdentityUser) -> IdentityRead:
        try:
            with self._session() as session:
                session.add(user)
                session.commit()
                session.refresh(user)
                return IdentityRead.model_validate(user)
        except SQLAlchemyError as exc:
            raise IdentityStoreError("failed to create identity") from exc

    def resolve_profile(self, profile: ExternalProfile) -> IdentityRead:
        """Return the local identity for ``profile``, creating it on first sight.

        Lookup order is external id, then phone, then email. A new identity uses
        the phone as username, falling back to the email.
        """
        identity = self.find_by_external_id(profile.id)
        if identity is None and profile.phone:
            identity = self.find_by_phone(profile.phone)
        if identity is None and profile.email:
            identity = self.find_by_email(profile.email)
        if identity is not None:
            return identity

        user = IdentityUser(
            external_id=profile.id,
            email=profile.email or None,
            phone=profile.phone or None,
            username=profile.phone or profile.email,
        )
        try:
            identity = self.create_identity(user)
        except IdentityStoreError as exc:
            # A concurrent first login may have won the unique external id.
            if not isinstance(exc.__cause__, IntegrityError):
                raise
            winner = self.find_by_external_id(profile.id)
            if winner is None:
                raise
            logger.info("identity for external id %s was provisioned concurrently", profile.id)
            return winner
        logger.info("provisioned identity %s for external id %s", identity.id, profile.id)
        return identity
