from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from modulehub.apps.api.response import error_response, is_versioned_request
from modulehub.core.errors import (
    BusinessDataAccessError,
    ConflictError,
    ForbiddenError,
    InvalidActorError,
    InvalidRequestError,
    ModuleAccessDeniedError,
    ModuleHubError,
    NotFoundError,
    PermissionDeniedError,
)
from modulehub.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}

# Most specific class first; the first isinstance match wins.
_DOMAIN_ERRORS: tuple[tuple[type[ModuleHubError], int, str], ...] = (
    (ModuleAccessDeniedError, 403, "MODULE_ACCESS_DENIED"),
    (PermissionDeniedError, 403, "PERMISSION_DENIED"),
    (BusinessDataAccessError, 403, "BUSINESS_DATA_FORBIDDEN"),
    (ForbiddenError, 403, "AUTH_FORBIDDEN"),
    (NotFoundError, 404, "NOT_FOUND"),
    (ConflictError, 409, "CONFLICT"),
    (InvalidActorError, 422, "INVALID_ACTOR"),
    (InvalidRequestError, 422, "INVALID_REQUEST"),
)


def _default_code(status_code: int) -> str:
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _json_error(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    # Versioned routes get the envelope; unversioned ones keep FastAPI's detail shape.
    if is_versioned_request(request):
        payload = error_response(request=request, code=code, message=message, details=details)
    else:
        payload = {"detail": {"code": code, "message": message}}
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


def domain_status(exc: ModuleHubError) -> tuple[int, str]:
    for error_type, status_code, code in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Covers both FastAPI and Starlette HTTPExceptions.
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": exc.detail}, status_code=exc.status_code, headers=exc.headers)
    code, message, details = _split_detail(exc.detail, exc.status_code)
    return _json_error(
        request,
        status_code=exc.status_code,
        code=code,
        message=message,
        details=details,
        headers=exc.headers,
    )


async def domain_exception_handler(request: Request, exc: ModuleHubError) -> JSONResponse:
    status_code, code = domain_status(exc)
    if status_code >= 500:
        logger.error("domain_error_unmapped path=%s error=%s", request.url.path, type(exc).__name__)
        return _json_error(request, status_code=500, code=code, message="Internal server error")
    return _json_error(request, status_code=status_code, code=code, message=str(exc))


async def tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError) -> JSONResponse:
    # A tenant-scoped query without a tenant id is a server bug, never a client error.
    logger.error("tenant_predicate_missing path=%s error=%s", request.url.path, exc.message)
    return _json_error(
        request,
        status_code=500,
        code="TENANT_PREDICATE_REQUIRED",
        message="Tenant scope missing for query",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    if not is_versioned_request(request):
        return JSONResponse(content={"detail": jsonable_encoder(exc.errors())}, status_code=422)
    payload = error_response(
        request=request,
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=422)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; the log carries the traceback.
    logger.exception("unhandled_exception path=%s", request.url.path, exc_info=exc)
    return _json_error(request, status_code=500, code="INTERNAL_ERROR", message="Internal server error")
