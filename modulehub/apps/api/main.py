from __future__ import annotations

import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from modulehub.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from modulehub.apps.api.response import API_VERSION
from modulehub.apps.api.routes.admin import router as admin_router
from modulehub.apps.api.routes.company import router as company_router
from modulehub.apps.api.routes.health import router as health_router
from modulehub.apps.api.routes.modules import router as modules_router
from modulehub.apps.api.routes.simple_text import router as simple_text_router
from modulehub.core.config import get_settings
from modulehub.core.errors import ModuleHubError
from modulehub.core.logging import configure_logging
from modulehub.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_PUBLIC_PATHS = {"/health", f"/{API_VERSION}/health"}


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="modulehub API")

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        response = await call_next(request)
        latency_ms = (time.monotonic() - start) * 1000.0
        logger.info(
            "http_request method=%s path=%s status=%s latency_ms=%.1f request_id=%s",
            request.method,
            request.url.path,
            response.status_code,
            latency_ms,
            request_id,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ModuleHubError, domain_exception_handler)
    app.add_exception_handler(TenantPredicateError, tenant_predicate_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Business-data routes mount before the generic /modules/{slug} routes.
    app.include_router(simple_text_router, prefix=f"/{API_VERSION}")
    app.include_router(modules_router, prefix=f"/{API_VERSION}")
    app.include_router(admin_router, prefix=f"/{API_VERSION}")
    app.include_router(company_router, prefix=f"/{API_VERSION}")
    app.include_router(health_router, prefix=f"/{API_VERSION}")
    # Load balancers probe the unversioned path.
    app.include_router(health_router, include_in_schema=False)

    @app.get(f"/{API_VERSION}/openapi.json", include_in_schema=False)
    async def openapi_json() -> JSONResponse:
        return JSONResponse(app.openapi())

    def custom_openapi() -> dict:
        # Inject bearer auth into every non-public operation.
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(title="modulehub API", version=API_VERSION, routes=app.routes)
        components = schema.setdefault("components", {})
        components.setdefault("securitySchemes", {})["BearerAuth"] = {"type": "http", "scheme": "bearer"}
        for path, operations in schema.get("paths", {}).items():
            if path in _PUBLIC_PATHS:
                continue
            for operation in operations.values():
                operation.setdefault("security", [{"BearerAuth": []}])
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi
    logger.info("app_created name=%s auth_enabled=%s", settings.app_name, settings.auth_enabled)
    return app


app = create_app()
