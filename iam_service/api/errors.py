from __future__ import annotations

import logging
from typing import Any

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

CODE_INVALID_TENANT = "MSG_INVALID_TENANT"
CODE_TENANT_NOT_FOUND = "MSG_TENANT_NOT_FOUND"
CODE_TENANT_LOOKUP_FAILED = "MSG_TENANT_LOOKUP_FAILED"
CODE_TENANT_CONFLICT = "MSG_TENANT_CONFLICT"
CODE_UNAUTHORIZED = "UNAUTHORIZED"
CODE_INTERNAL = "INTERNAL_SERVER_ERROR"
CODE_INVALID_PAYLOAD = "MSG_INVALID_PAYLOAD"
CODE_CREATE_RELATION_TUPLE_FAILED = "MSG_CREATE_RELATION_TUPLE_FAILED"
CODE_PERMISSION_CHECK_FAILED = "MSG_PERMISSION_CHECK_FAILED"
CODE_DELEGATION_NOT_ALLOWED = "MSG_DELEGATION_NOT_ALLOWED"
CODE_DELEGATE_ACCESS_FAILED = "MSG_DELEGATE_ACCESS_FAILED"
CODE_IDENTITY_NOT_FOUND = "MSG_IDENTITY_NOT_FOUND"
CODE_RATE_LIMIT = "MSG_RATE_LIMIT"

logger = logging.getLogger(__name__)


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: list[dict[str, Any]] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or []
        self.headers = headers


def field_error(field: str, error: str) -> list[dict[str, Any]]:
    return [{"field": field, "error": error}]


def error_body(code: str, message: str, details: list[Any] | None = None) -> dict[str, Any]:
    return {"code": code, "message": message, "details": details or []}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.code, exc.message, exc.details),
        headers=exc.headers,
    )


async def request_validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    logger.info("invalid payload for %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body(
            CODE_INVALID_PAYLOAD,
            "Invalid request payload",
            jsonable_encoder(exc.errors()),
        ),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled error for %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body(CODE_INTERNAL, "Internal server error"),
    )
