from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel

from iam_service import main as app_main
from iam_service.api import deps
from iam_service.domain.models import TenantCreate
from iam_service.infra import db
from iam_service.infra.cache import MemoryCacheBackend
from iam_service.infra.rate_limit import FixedWindowRateLimiter
from iam_service.services.authentication_service import HybridAuthenticator, build_identity_cache
from iam_service.services.identity_service import IdentityService
from iam_service.services.tenant_service import TenantService

from stubs import StubIdentityProvider, StubRelationEngine


@pytest.fixture()
def sqlite_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Engine:
    db_path = tmp_path / "iam_test.db"
    test_engine = db.build_engine(f"sqlite:///{db_path}")
    SQLModel.metadata.create_all(test_engine)
    monkeypatch.setattr(db, "engine", test_engine)
    return test_engine


@pytest.fixture()
def provider() -> StubIdentityProvider:
    return StubIdentityProvider()


@pytest.fixture()
def relation_engine() -> StubRelationEngine:
    return StubRelationEngine()


@pytest.fixture()
def cache_backend() -> MemoryCacheBackend:
    return MemoryCacheBackend()


@pytest.fixture()
def authenticator(
    sqlite_engine: Engine,
    provider: StubIdentityProvider,
    cache_backend: MemoryCacheBackend,
) -> HybridAuthenticator:
    return HybridAuthenticator(
        provider=provider,  # type: ignore[arg-type]
        identity_cache=build_identity_cache(cache_backend),
        identities=IdentityService(),
    )


@pytest.fixture()
def client(
    authenticator: HybridAuthenticator,
    relation_engine: StubRelationEngine,
    cache_backend: MemoryCacheBackend,
) -> Generator[TestClient, None, None]:
    app = app_main.app
    app.dependency_overrides[deps.get_authenticator] = lambda: authenticator
    app.dependency_overrides[deps.get_relation_engine] = lambda: relation_engine
    app.dependency_overrides[deps.get_rate_limiter] = lambda: FixedWindowRateLimiter(
        cache_backend,
        limit=1000,
        window_seconds=60,
    )
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()


@pytest.fixture()
def tenant_id(sqlite_engine: Engine) -> str:
    return TenantService().create_tenant(TenantCreate(name="tenant-a")).id