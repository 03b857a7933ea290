from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from iam_service.domain.models import ExternalProfile, IdentityUser
from iam_service.infra import db
from iam_service.infra.auth import hash_token
from iam_service.infra.cache import MemoryCacheBackend
from iam_service.services.authentication_service import (
    AuthenticationError,
    HybridAuthenticator,
    build_identity_cache,
)
from iam_service.services.identity_service import IdentityService

from stubs import FailingCacheBackend, StubIdentityProvider


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _identities() -> list[IdentityUser]:
    with Session(db.get_engine()) as session:
        return list(session.exec(select(IdentityUser)).all())


def test_cold_cache_calls_provider_once_and_populates_cache(
    authenticator: HybridAuthenticator,
    provider: StubIdentityProvider,
) -> None:
    provider.profiles["Bearer t-1"] = ExternalProfile(id="ext-1", phone="+1555")

    identity = authenticator.authenticate("Bearer t-1")

    assert provider.calls == ["Bearer t-1"]
    assert identity.username == "+1555"
    assert authenticator.identity_cache.get(hash_token("t-1")) == identity


def test_warm_cache_never_calls_provider(
    authenticator: HybridAuthenticator,
    provider: StubIdentityProvider,
) -> None:
    provider.profiles["Bearer t-1"] = ExternalProfile(id="ext-1", email="a@example.com")
    first = authenticator.authenticate("Bearer t-1")
    provider.calls.clear()
    provider.profiles.clear()

    for _ in range(3):
        assert authenticator.authenticate("Bearer t-1") == first
    assert provider.calls == []


def test_provider_rejection_is_unauthorized(authenticator: HybridAuthenticator) -> None:
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate("Bearer unknown")
    assert exc_info.value.message == "Invalid token"


@pytest.mark.parametrize(
    "profile",
    [
        ExternalProfile(id="", phone="+1555"),
        ExternalProfile(id="ext-1"),
    ],
)
def test_incomplete_profile_is_unauthorized(
    authenticator: HybridAuthenticator,
    provider: StubIdentityProvider,
    profile: ExternalProfile,
) -> None:
    provider.profiles["Bearer t-1"] = profile
    with pytest.raises(AuthenticationError) as exc_info:
        authenticator.authenticate("Bearer t-1")
    assert exc_info.value.reason == "Invalid token data"
    assert _identities() == []


def test_malformed_header_skips_provider(
    authenticator: HybridAuthenticator,
    provider: StubIdentityProvider,
) -> None:
    for header in (None, "Token abc", "Bearer"):
        with pytest.raises(AuthenticationError):
            authenticator.authenticate(header)
    assert provider.calls == []


def test_undecodable_cache_entry_is_treated_as_miss(
    authenticator: HybridAuthenticator,
    provider: StubIdentityProvider,
    cache_backend: MemoryCacheBackend,
) -> None:
    cache = authenticator.identity_cache
    cache_backend.set(cache.make_key(hash_token("t-1")), '{"unexpected": true}', 60)
    provider.profiles["Bearer t-1"] = ExternalProfile(id="ext-1", phone="+1555")

    identity = authenticator.authenticate("Bearer t-1")

    assert provider.calls == ["Bearer t-1"]
    assert cache.get(hash_token("t-1")) == identity


def test_cache_outage_degrades_to_resolution(
    sqlite_engine,
    provider: StubIdentityProvider,
) -> None:
    authenticator = HybridAuthenticator(
        provider=provider,  # type: ignore[arg-type]
        identity_cache=build_identity_cache(FailingCacheBackend()),  # type: ignore[arg-type]
        identities=IdentityService(),
    )
    provider.profiles["Bearer t-1"] = ExternalProfile(id="ext-1", phone="+1555")

    first = authenticator.authenticate("Bearer t-1")
    second = authenticator.authenticate("Bearer t-1")

    assert first.id == second.id
    assert len(provider.calls) == 2
    assert len(_identities()) == 1


def test_identity_cache_uses_thirty_minute_ttl(authenticator: HybridAuthenticator) -> None:
    assert authenticator.identity_cache.ttl_seconds == 30 * 60
    assert authenticator.identity_cache.make_key("abc").endswith("_middleware_abc")


def test_missing_authorization_header_returns_401(client: TestClient) -> None:
    response = client.get("/api/v1/users/me")
    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "UNAUTHORIZED"
    assert body["details"] == [{"field": "Authorization", "error": "Authorization header is required"}]


def test_unknown_token_provisions_identity_once(
    client: TestClient,
    provider: StubIdentityProvider,
    cache_backend: MemoryCacheBackend,
    authenticator: HybridAuthenticator,
) -> None:
    provider.profiles["Bearer fresh-token"] = ExternalProfile(id="ext-1", phone="+1555")

    first = client.get("/api/v1/users/me", headers=_auth_header("fresh-token"))
    second = client.get("/api/v1/users/me", headers=_auth_header("fresh-token"))

    assert first.status_code == 200
    assert first.json()["username"] == "+1555"
    assert first.json()["external_id"] == "ext-1"
    assert second.json()["id"] == first.json()["id"]
    assert len(provider.calls) == 1

    rows = _identities()
    assert len(rows) == 1
    assert rows[0].username == "+1555"
    cache_key = authenticator.identity_cache.make_key(hash_token("fresh-token"))
    assert cache_backend.get(cache_key) is not None


def test_provider_rejection_returns_invalid_token(client: TestClient) -> None:
    response = client.get("/api/v1/users/me", headers=_auth_header("revoked"))
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid token"


def test_provisioning_store_failure_returns_500(
    client: TestClient,
    provider: StubIdentityProvider,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from iam_service.services.identity_service import IdentityStoreError

    def _broken(self, external_id: str):
        raise IdentityStoreError("failed to query identity store")

    monkeypatch.setattr(IdentityService, "find_by_external_id", _broken)
    provider.profiles["Bearer t-1"] = ExternalProfile(id="ext-1", phone="+1555")

    response = client.get("/api/v1/users/me", headers=_auth_header("t-1"))

    assert response.status_code == 500
    assert response.json()["code"] == "INTERNAL_SERVER_ERROR"


def test_legacy_token_prefix_accepted_when_enabled(
    sqlite_engine,
    provider: StubIdentityProvider,
    cache_backend: MemoryCacheBackend,
) -> None:
    legacy = HybridAuthenticator(
        provider=provider,  # type: ignore[arg-type]
        identity_cache=build_identity_cache(cache_backend),
        identities=IdentityService(),
        allow_legacy=True,
    )
    provider.profiles["Token t-1"] = ExternalProfile(id="ext-1", email="a@example.com")

    identity = legacy.authenticate("Token t-1")

    assert identity.external_id == "ext-1"
    assert provider.calls == ["Token t-1"]
    assert legacy.identity_cache.get(hash_token("t-1")) == identity
