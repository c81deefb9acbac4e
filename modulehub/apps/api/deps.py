from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Any, AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.apps.api.errors import domain_status
from modulehub.core.config import get_settings
from modulehub.core.errors import ForbiddenError
from modulehub.domain.actors import scope_from_parts
from modulehub.domain.models import ApiKey, User
from modulehub.persistence.db import get_session
from modulehub.persistence.repos import directory as directory_repo
from modulehub.services.audit import get_request_context, record_event
from modulehub.services.auth.api_keys import hash_api_key
from modulehub.services.authz.gate import enforce_module_access


logger = logging.getLogger(__name__)

DEV_USER_HEADER = "X-User-Id"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


class Principal(BaseModel):
    # Authenticated identity; every authorization decision re-reads the directory by subject_id.
    subject_id: str
    tenant_id: str | None = None
    role: str
    api_key_id: str
    auth_method: str = "api_key"


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _forbidden_error(message: str, code: str = "AUTH_FORBIDDEN") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": code, "message": message},
    )


def _error_code(exc: HTTPException) -> str | None:
    detail = exc.detail
    if isinstance(detail, dict):
        return detail.get("code")
    return None


def _request_metadata(request: Request) -> dict[str, str]:
    # Minimal request context for traceability without sensitive headers.
    return {"path": request.url.path, "method": request.method}


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC for comparisons.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_bearer_token(header_value: str | None) -> str | None:
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise _auth_error("Missing or invalid bearer token")
    return parts[1]


async def reject_tenant_id_in_body(request: Request) -> None:
    # Tenant-scoped writes take the tenant from the caller's credential, never the payload.
    content_type = (request.headers.get("content-type") or "").lower()
    if not content_type.startswith("application/json"):
        return
    try:
        payload = await request.json()
    except ValueError:
        return
    if isinstance(payload, dict) and "tenant_id" in payload:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "TENANT_ID_NOT_ALLOWED",
                "message": "tenant_id must be derived from the caller's credential",
            },
        )


def request_context(request: Request) -> dict[str, Any]:
    # Request identifiers forwarded into strict audit writes made by services.
    return get_request_context(request)


async def _audit_auth(
    db: AsyncSession,
    request: Request,
    *,
    event_type: str,
    outcome: str,
    actor_type: str,
    actor_id: str | None = None,
    actor_role: str | None = None,
    tenant_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    error: HTTPException | None = None,
) -> None:
    # Auth outcomes are recorded best-effort so audit outages never block requests.
    ctx = get_request_context(request)
    await record_event(
        session=db,
        tenant_id=tenant_id,
        actor_type=actor_type,
        actor_id=actor_id,
        actor_role=actor_role,
        event_type=event_type,
        outcome=outcome,
        resource_type="auth",
        request_id=ctx["request_id"],
        ip_address=ctx["ip_address"],
        user_agent=ctx["user_agent"],
        metadata={**_request_metadata(request), **(metadata or {})},
        error_code=_error_code(error) if error is not None else None,
        commit=True,
        best_effort=True,
    )


def _principal_for(user: User, *, api_key_id: str, auth_method: str) -> Principal | None:
    # Rows that break the role/tenant invariant never become principals.
    if scope_from_parts(user.id, user.role, user.tenant_id) is None:
        return None
    return Principal(
        subject_id=user.id,
        tenant_id=user.tenant_id,
        role=user.role,
        api_key_id=api_key_id,
        auth_method=auth_method,
    )


async def _principal_from_dev_header(request: Request, db: AsyncSession) -> Principal:
    # Local dev only: trust X-User-Id, but still resolve the actor from the directory.
    user_id = request.headers.get(DEV_USER_HEADER)
    if not user_id:
        raise _auth_error(f"{DEV_USER_HEADER} header is required in dev bypass mode")
    user = await directory_repo.get_user(db, user_id)
    if user is None or not user.is_active:
        raise _auth_error("Unknown or inactive user")
    principal = _principal_for(user, api_key_id="dev-bypass", auth_method="dev_bypass")
    if principal is None:
        raise _forbidden_error("User role and tenant are inconsistent")
    return principal


async def _touch_last_used(db: AsyncSession, api_key_id: str) -> None:
    try:
        await db.execute(update(ApiKey).where(ApiKey.id == api_key_id).values(last_used_at=func.now()))
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning("api_key_touch_failed api_key_id=%s", api_key_id, exc_info=exc)


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    settings = get_settings()
    try:
        bearer_token = _parse_bearer_token(request.headers.get(settings.auth_api_key_header))
    except HTTPException as exc:
        await _audit_auth(db, request, event_type="auth.access.failure", outcome="failure", actor_type="anonymous", error=exc)
        raise

    if not bearer_token and settings.auth_dev_bypass:
        try:
            principal = await _principal_from_dev_header(request, db)
        except HTTPException as exc:
            await _audit_auth(
                db, request, event_type="auth.access.failure", outcome="failure", actor_type="anonymous", error=exc
            )
            raise
        await _audit_auth(
            db,
            request,
            event_type="auth.access.success",
            outcome="success",
            actor_type="user",
            actor_id=principal.subject_id,
            actor_role=principal.role,
            tenant_id=principal.tenant_id,
            metadata={"auth_mode": "dev_bypass"},
        )
        return principal

    if not settings.auth_enabled:
        error = _auth_error("Authentication disabled; set AUTH_DEV_BYPASS=true for dev access")
        await _audit_auth(db, request, event_type="auth.access.failure", outcome="failure", actor_type="anonymous", error=error)
        raise error

    if not bearer_token:
        error = _auth_error("Missing API key")
        await _audit_auth(db, request, event_type="auth.access.failure", outcome="failure", actor_type="anonymous", error=error)
        raise error

    try:
        result = await db.execute(
            select(ApiKey, User)
            .join(User, ApiKey.user_id == User.id)
            .where(ApiKey.key_hash == hash_api_key(bearer_token))
        )
    except SQLAlchemyError as exc:
        error = HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "AUTH_UNAVAILABLE", "message": "Authentication unavailable"},
        )
        await db.rollback()
        await _audit_auth(db, request, event_type="auth.access.failure", outcome="failure", actor_type="system", error=error)
        raise error from exc

    row = result.first()
    if row is None:
        error = _auth_error("Invalid API key")
        await _audit_auth(db, request, event_type="auth.access.failure", outcome="failure", actor_type="anonymous", error=error)
        raise error
    api_key, user = row

    failure: HTTPException | None = None
    event_type = "auth.access.failure"
    if api_key.revoked_at is not None or not user.is_active:
        failure = _auth_error("API key is revoked or inactive")
    elif api_key.expires_at is not None and _as_utc(api_key.expires_at) <= datetime.now(timezone.utc):
        # Expiry is reported separately so operators can tell it apart from revocation.
        failure = _auth_error("API key expired")
        event_type = "auth.api_key.expired"
    principal = _principal_for(user, api_key_id=api_key.id, auth_method="api_key") if failure is None else None
    if principal is None:
        failure = failure or _forbidden_error("User role and tenant are inconsistent")
        await _audit_auth(
            db,
            request,
            event_type=event_type,
            outcome="failure",
            actor_type="api_key",
            actor_id=api_key.id,
            actor_role=user.role,
            tenant_id=user.tenant_id,
            metadata={"user_id": user.id},
            error=failure,
        )
        raise failure

    await _touch_last_used(db, api_key.id)
    await _audit_auth(
        db,
        request,
        event_type="auth.access.success",
        outcome="success",
        actor_type="api_key",
        actor_id=principal.api_key_id,
        actor_role=principal.role,
        tenant_id=principal.tenant_id,
        metadata={"user_id": principal.subject_id},
    )
    return principal


def require_role(*allowed_roles: str):
    # Dependency factory to enforce role membership at the route level.
    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        if principal.role not in allowed_roles:
            ctx = get_request_context(request)
            await record_event(
                session=db,
                tenant_id=principal.tenant_id,
                actor_type="user",
                actor_id=principal.subject_id,
                actor_role=principal.role,
                event_type="rbac.forbidden",
                outcome="failure",
                resource_type="rbac",
                request_id=ctx["request_id"],
                ip_address=ctx["ip_address"],
                user_agent=ctx["user_agent"],
                metadata={**_request_metadata(request), "required_roles": list(allowed_roles)},
                error_code="AUTH_FORBIDDEN",
                commit=True,
                best_effort=True,
            )
            raise _forbidden_error("Insufficient role for this operation")
        return principal

    return _dependency


def require_module(module_slug: str | None, permission: str | None = None):
    """Dependency factory declaring the module (and optional permission) a route needs.

    Routes without a declared module are not gated. Denials are audited and
    surfaced as 403 with MODULE_ACCESS_DENIED or PERMISSION_DENIED.
    """

    async def _dependency(
        request: Request,
        principal: Principal = Depends(get_current_principal),
        db: AsyncSession = Depends(get_db),
    ) -> Principal:
        try:
            await enforce_module_access(
                db,
                actor_id=principal.subject_id,
                module_slug=module_slug,
                permission=permission,
            )
        except ForbiddenError as exc:
            _status, code = domain_status(exc)
            ctx = get_request_context(request)
            await record_event(
                session=db,
                tenant_id=principal.tenant_id,
                actor_type="user",
                actor_id=principal.subject_id,
                actor_role=principal.role,
                event_type="authz.gate.denied",
                outcome="failure",
                resource_type="module",
                resource_id=module_slug,
                request_id=ctx["request_id"],
                ip_address=ctx["ip_address"],
                user_agent=ctx["user_agent"],
                metadata={**_request_metadata(request), "permission": permission},
                error_code=code,
                commit=True,
                best_effort=True,
            )
            raise _forbidden_error(str(exc), code=code) from exc
        return principal

    return _dependency
