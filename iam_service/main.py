from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from iam_service.api.deps import close_clients, get_relation_engine
from iam_service.api.errors import (
    ApiError,
    api_error_handler,
    request_validation_error_handler,
    unhandled_error_handler,
)
from iam_service.api.routers import permissions, tenants, users
from iam_service.infra.audit import AuditMiddleware
from iam_service.infra.cache import check_cache_ready
from iam_service.infra.db import check_db_ready
from iam_service.infra.logging_setup import setup_logging
from iam_service.services.permission_service import RelationEngine

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    logger.info("closing outbound clients")
    close_clients()


app = FastAPI(
    title="iam-service",
    description="Tenant-scoped identity resolution and relation-based permission checks.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(AuditMiddleware)
app.add_exception_handler(ApiError, api_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(Exception, unhandled_error_handler)

app.include_router(permissions.router, prefix="/api/v1/permissions", tags=["permissions"])
app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
app.include_router(tenants.router, prefix="/api/v1/admin", tags=["admin"])


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz(engine: Annotated[RelationEngine, Depends(get_relation_engine)]) -> dict[str, object]:
    db_ok = check_db_ready()
    cache_ok = check_cache_ready()
    keto_ok = engine.ping()
    checks = {
        "db": "ok" if db_ok else "fail",
        "cache": "ok" if cache_ok else "fail",
        "keto": "ok" if keto_ok else "fail",
    }
    if not (db_ok and cache_ok and keto_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
