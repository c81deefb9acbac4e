from __future__ import annotations

from typing import Any

from modulehub.apps.api.response import ErrorEnvelope


def _error_response(*, description: str, code: str, message: str) -> dict[str, Any]:
    # Document every error status with the shared envelope and a representative code.
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": {
                    "error": {"code": code, "message": message},
                    "meta": {"request_id": "req_example", "api_version": "v1"},
                }
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _error_response(
        description="Unauthorized",
        code="AUTH_UNAUTHORIZED",
        message="Missing or invalid bearer token",
    ),
    403: _error_response(
        description="Forbidden",
        code="MODULE_ACCESS_DENIED",
        message="Access denied to module: simple-text",
    ),
    404: _error_response(description="Not found", code="NOT_FOUND", message="Module not found"),
    409: _error_response(
        description="Conflict",
        code="CONFLICT",
        message="User with this email already exists",
    ),
    422: _error_response(
        description="Validation error",
        code="REQUEST_VALIDATION_ERROR",
        message="Validation error",
    ),
    500: _error_response(
        description="Internal server error",
        code="INTERNAL_ERROR",
        message="Internal server error",
    ),
}
