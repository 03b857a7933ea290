from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from iam_service.domain.models import AuditLog
from iam_service.infra.db import get_engine

WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
# Checks are POSTs but change nothing.
READ_ONLY_POST_SUFFIXES = ("/permissions/check", "/permissions/batch-check")
SYSTEM_TENANT = "system"

logger = logging.getLogger(__name__)


def record_audit(request: Request, action: str, **payload: Any) -> None:
    """Name the audited action for this request and attach what it acted on."""
    request.state.audit_action = action
    request.state.audit_payload = payload


def is_audited(method: str, path: str) -> bool:
    return method in WRITE_METHODS and not path.endswith(READ_ONLY_POST_SUFFIXES)


def outcome_for(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code in {401, 403, 404, 429}:
        return "denied"
    if status_code >= 400:
        return "rejected"
    return "success"


def write_audit_log(entry: AuditLog) -> None:
    with Session(get_engine()) as session:
        session.add(entry)
        session.commit()


def build_audit_entry(request: Request, status_code: int) -> AuditLog:
    state = request.state
    tenant = getattr(state, "tenant", None)
    identity = getattr(state, "identity", None)
    route = request.scope.get("route")
    tenant_id = tenant.id if tenant is not None else SYSTEM_TENANT
    actor_id = identity.id if identity is not None else None
    path = request.url.path
    return AuditLog(
        tenant_id=tenant_id,
        actor_id=actor_id,
        action=getattr(state, "audit_action", None) or f"{request.method}:{path}",
        resource=path,
        method=request.method,
        status_code=status_code,
        detail={
            "route": getattr(route, "path", path),
            "client_ip": request.client.host if request.client is not None else None,
            "outcome": outcome_for(status_code),
            "payload": getattr(state, "audit_payload", {}),
        },
    )


class AuditMiddleware(BaseHTTPMiddleware):
    """Records write requests, with tenant and actor when they were resolved."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if not is_audited(request.method, request.url.path):
            return response

        entry = build_audit_entry(request, response.status_code)
        try:
            await run_in_threadpool(write_audit_log, entry)
        except Exception:
            logger.exception("failed to write audit log for %s %s", entry.method, entry.resource)
        return response
