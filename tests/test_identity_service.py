from __future__ import annotations

import pytest
from sqlmodel import Session, select

from iam_service.domain.models import ExternalProfile, IdentityUser
from iam_service.infra import db
from iam_service.services.identity_service import IdentityService


def _count_identities() -> int:
    with Session(db.get_engine()) as session:
        return len(session.exec(select(IdentityUser)).all())


def test_new_profile_prefers_phone_as_username(sqlite_engine) -> None:
    service = IdentityService()
    identity = service.resolve_profile(ExternalProfile(id="ext-1", email="a@example.com", phone="+1555"))
    assert identity.username == "+1555"
    assert identity.external_id == "ext-1"

    email_only = service.resolve_profile(ExternalProfile(id="ext-2", email="b@example.com"))
    assert email_only.username == "b@example.com"
    assert email_only.phone is None


def test_lookup_order_is_external_id_then_phone_then_email(sqlite_engine) -> None:
    service = IdentityService()
    by_phone = service.create_identity(IdentityUser(username="+1555", phone="+1555"))
    by_email = service.create_identity(IdentityUser(username="c@example.com", email="c@example.com"))

    resolved = service.resolve_profile(ExternalProfile(id="ext-9", email="c@example.com", phone="+1555"))
    assert resolved.id == by_phone.id

    resolved = service.resolve_profile(ExternalProfile(id="ext-10", email="c@example.com"))
    assert resolved.id == by_email.id

    linked = service.create_identity(IdentityUser(external_id="ext-11", username="linked"))
    resolved = service.resolve_profile(ExternalProfile(id="ext-11", email="c@example.com", phone="+1555"))
    assert resolved.id == linked.id
    assert _count_identities() == 3


def test_repeat_resolution_does_not_duplicate(sqlite_engine) -> None:
    service = IdentityService()
    profile = ExternalProfile(id="ext-1", phone="+1555")
    first = service.resolve_profile(profile)
    second = service.resolve_profile(profile)
    assert first.id == second.id
    assert _count_identities() == 1


def test_concurrent_provisioning_returns_winning_row(
    sqlite_engine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = IdentityService()
    winner = service.create_identity(IdentityUser(external_id="ext-1", username="+1555", phone="+1555"))

    original = IdentityService.find_by_external_id
    calls = {"count": 0}

    def _stale_first_read(self, external_id: str):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return original(self, external_id)

    monkeypatch.setattr(IdentityService, "find_by_external_id", _stale_first_read)
    monkeypatch.setattr(IdentityService, "find_by_phone", lambda self, phone: None)

    resolved = service.resolve_profile(ExternalProfile(id="ext-1", phone="+1555"))

    assert resolved.id == winner.id
    assert calls["count"] == 2
    assert _count_identities() == 1


def test_find_by_identifier_matches_id_email_or_phone(sqlite_engine) -> None:
    service = IdentityService()
    identity = service.create_identity(
        IdentityUser(external_id="ext-1", username="+1555", phone="+1555", email="a@example.com")
    )
    for identifier in (identity.id, "a@example.com", "+1555"):
        assert service.find_by_identifier(identifier).id == identity.id
    assert service.find_by_identifier("ext-1") is None
