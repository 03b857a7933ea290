from __future__ import annotations

from iam_service.clients.identity_provider import IdentityProviderError
from iam_service.clients.keto import RelationEngineError
from iam_service.domain.models import ExternalProfile
from iam_service.domain.permissions import CheckPermissionRequest, CreateRelationTupleRequest
from iam_service.infra.cache import CacheError


class StubIdentityProvider:
    def __init__(self) -> None:
        self.profiles: dict[str, ExternalProfile] = {}
        self.calls: list[str] = []
        self.closed = False

    def get_profile(self, authorization_header: str) -> ExternalProfile:
        self.calls.append(authorization_header)
        profile = self.profiles.get(authorization_header)
        if profile is None:
            raise IdentityProviderError("unexpected status code: 401")
        return profile

    def close(self) -> None:
        self.closed = True


class StubRelationEngine:
    """Set-backed relation store: writing the same tuple twice is a no-op."""

    def __init__(self) -> None:
        self.tuples: set[tuple[str, str, str, str]] = set()
        self.write_calls = 0
        self.check_calls = 0
        self.fail = False
        self.ready = True
        self.closed = False

    @staticmethod
    def _key(request: CreateRelationTupleRequest | CheckPermissionRequest) -> tuple[str, str, str, str]:
        return (request.namespace, request.scoped_object, request.relation, request.subject.subject_id)

    def create_relation_tuple(self, request: CreateRelationTupleRequest) -> None:
        self.write_calls += 1
        if self.fail:
            raise RelationEngineError("keto unavailable")
        self.tuples.add(self._key(request))

    def check_permission(self, request: CheckPermissionRequest) -> bool:
        self.check_calls += 1
        if self.fail:
            raise RelationEngineError("keto unavailable")
        return self._key(request) in self.tuples

    def batch_check_permission(self, requests: list[CheckPermissionRequest]) -> list[bool]:
        self.check_calls += 1
        if self.fail:
            raise RelationEngineError("keto unavailable")
        return [self._key(item) in self.tuples for item in requests]

    def ping(self) -> bool:
        return self.ready

    def close(self) -> None:
        self.closed = True


class FailingCacheBackend:
    def get(self, key: str) -> str | None:
        raise CacheError("cache down")

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        raise CacheError("cache down")

    def incr(self, key: str, ttl_seconds: int) -> int:
        raise CacheError("cache down")

    def ping(self) -> bool:
        return False
