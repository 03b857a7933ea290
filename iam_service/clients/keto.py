from __future__ import annotations

import logging
import os
from typing import Any

import httpx

from iam_service.domain.permissions import CheckPermissionRequest, CreateRelationTupleRequest

KETO_DEFAULT_READ_URL = os.getenv("KETO_DEFAULT_READ_URL", "http://keto:4466")
KETO_DEFAULT_WRITE_URL = os.getenv("KETO_DEFAULT_WRITE_URL", "http://keto:4467")
KETO_TIMEOUT_SECONDS = float(os.getenv("KETO_TIMEOUT_SECONDS", "10"))

RELATION_TUPLES_PATH = "/admin/relation-tuples"
CHECK_PATH = "/relation-tuples/check/openapi"
BATCH_CHECK_PATH = "/relation-tuples/batch/check"
READY_PATH = "/health/ready"

logger = logging.getLogger(__name__)


class RelationEngineError(Exception):
    pass


def _tuple_body(request: CreateRelationTupleRequest | CheckPermissionRequest) -> dict[str, Any]:
    return {
        "namespace": request.namespace,
        "object": request.scoped_object,
        "relation": request.relation,
        "subject_id": request.subject.subject_id,
    }


def _allowed_flag(payload: Any) -> bool:
    # Anything but a literal boolean is a malformed reply, never a grant.
    allowed = payload.get("allowed") if isinstance(payload, dict) else None
    if not isinstance(allowed, bool):
        raise RelationEngineError(f"relation engine returned a non-boolean allowed flag: {allowed!r}")
    return allowed


class KetoClient:
    """Thin client for the Keto read and write APIs.

    Objects and subjects are sent tenant-qualified, so tuples written for one
    tenant never satisfy a check made for another.
    """

    def __init__(
        self,
        read_url: str = KETO_DEFAULT_READ_URL,
        write_url: str = KETO_DEFAULT_WRITE_URL,
        *,
        http_client: httpx.Client | None = None,
        timeout: float = KETO_TIMEOUT_SECONDS,
    ) -> None:
        self.read_url = read_url.rstrip("/")
        self.write_url = write_url.rstrip("/")
        self._http = http_client or httpx.Client(timeout=timeout)

    def _send(self, method: str, url: str, body: dict[str, Any]) -> httpx.Response:
        try:
            return self._http.request(method, url, json=body)
        except httpx.HTTPError as exc:
            raise RelationEngineError(f"keto request to {url} failed: {exc}") from exc

    def create_relation_tuple(self, request: CreateRelationTupleRequest) -> None:
        body = _tuple_body(request)
        logger.debug(
            "creating relation tuple %s:%s#%s",
            body["namespace"],
            body["object"],
            body["relation"],
        )
        response = self._send("PUT", f"{self.write_url}{RELATION_TUPLES_PATH}", body)
        if response.status_code != httpx.codes.CREATED:
            raise RelationEngineError(
                f"failed to create relation tuple: unexpected status code {response.status_code}"
            )

    def check_permission(self, request: CheckPermissionRequest) -> bool:
        response = self._send("POST", f"{self.read_url}{CHECK_PATH}", _tuple_body(request))
        if response.status_code != httpx.codes.OK:
            raise RelationEngineError(
                f"permission check failed: unexpected status code {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise RelationEngineError("failed to decode permission check response") from exc
        return _allowed_flag(payload)

    def batch_check_permission(self, requests: list[CheckPermissionRequest]) -> list[bool]:
        body = {"tuples": [_tuple_body(item) for item in requests]}
        response = self._send("POST", f"{self.read_url}{BATCH_CHECK_PATH}", body)
        if response.status_code != httpx.codes.OK:
            raise RelationEngineError(
                f"batch permission check failed: unexpected status code {response.status_code}"
            )
        try:
            results = response.json()["results"]
        except (ValueError, KeyError, TypeError) as exc:
            raise RelationEngineError("failed to decode batch permission check response") from exc
        if not isinstance(results, list) or len(results) != len(requests):
            raise RelationEngineError("batch permission check returned a mismatched result count")
        return [_allowed_flag(item) for item in results]

    def ping(self) -> bool:
        try:
            response = self._http.get(f"{self.read_url}{READY_PATH}")
        except httpx.HTTPError:
            return False
        return response.status_code == httpx.codes.OK

    def close(self) -> None:
        self._http.close()
