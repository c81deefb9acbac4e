from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.apps.api.deps import Principal, get_current_principal, get_db, request_context, require_role
from modulehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from modulehub.apps.api.response import SuccessEnvelope, success_response
from modulehub.domain.actors import ROLE_SYSTEM_ADMIN, ROLE_TENANT_OWNER
from modulehub.domain.models import Module, TenantModuleGrant, UserModulePermission
from modulehub.services.authz.engine import can_access_module, has_permission, list_available_modules
from modulehub.services.authz.grants import grant_module_access, revoke_module_access


router = APIRouter(prefix="/modules", tags=["modules"], responses=DEFAULT_ERROR_RESPONSES)


class ModuleResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: str | None
    created_at: datetime | None


class ModuleListResponse(BaseModel):
    items: list[ModuleResponse]


class AccessResponse(BaseModel):
    module_slug: str
    permission: str | None
    allowed: bool


class GrantRequest(BaseModel):
    # Ignored for system admins, who grant whole modules to tenants.
    permissions: list[str] = Field(default_factory=list)


class GrantResponse(BaseModel):
    # "tenant" for admin grants, "member" for owner grants to their staff.
    level: str
    module_slug: str
    target_id: str
    enabled: bool | None = None
    permissions: list[str] | None = None


class RevokeResponse(BaseModel):
    module_slug: str
    target_id: str
    changed: bool


def _module_payload(module: Module) -> ModuleResponse:
    return ModuleResponse(
        id=module.id,
        name=module.name,
        slug=module.slug,
        description=module.description,
        created_at=module.created_at,
    )


def _grant_payload(
    row: TenantModuleGrant | UserModulePermission | None,
    *,
    module_slug: str,
    target_id: str,
) -> GrantResponse:
    if isinstance(row, TenantModuleGrant):
        return GrantResponse(level="tenant", module_slug=module_slug, target_id=target_id, enabled=row.enabled)
    # An owner grant with no tokens removes the member's row.
    permissions = list(row.permissions) if row is not None else []
    return GrantResponse(level="member", module_slug=module_slug, target_id=target_id, permissions=permissions)


@router.get("", response_model=SuccessEnvelope[ModuleListResponse] | ModuleListResponse)
async def list_my_modules(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> ModuleListResponse:
    # Navigation view: exactly the modules the caller can currently open.
    modules = await list_available_modules(db, actor_id=principal.subject_id)
    payload = ModuleListResponse(items=[_module_payload(module) for module in modules])
    return success_response(request=request, data=payload)


@router.get("/{module_slug}/access", response_model=SuccessEnvelope[AccessResponse] | AccessResponse)
async def check_module_access(
    module_slug: str,
    request: Request,
    permission: str | None = Query(default=None, max_length=64),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> AccessResponse:
    if permission:
        allowed = await has_permission(
            db, actor_id=principal.subject_id, module_slug=module_slug, permission=permission
        )
    else:
        allowed = await can_access_module(db, actor_id=principal.subject_id, module_slug=module_slug)
    payload = AccessResponse(module_slug=module_slug, permission=permission, allowed=allowed)
    return success_response(request=request, data=payload)


@router.put(
    "/{module_slug}/grants/{target_id}",
    response_model=SuccessEnvelope[GrantResponse] | GrantResponse,
)
async def put_module_grant(
    module_slug: str,
    target_id: str,
    request: Request,
    payload: GrantRequest,
    principal: Principal = Depends(require_role(ROLE_SYSTEM_ADMIN, ROLE_TENANT_OWNER)),
    db: AsyncSession = Depends(get_db),
) -> GrantResponse:
    row = await grant_module_access(
        db,
        granter_id=principal.subject_id,
        target_id=target_id,
        module_slug=module_slug,
        permissions=payload.permissions,
        request_ctx=request_context(request),
    )
    return success_response(
        request=request,
        data=_grant_payload(row, module_slug=module_slug, target_id=target_id),
    )


@router.delete(
    "/{module_slug}/grants/{target_id}",
    response_model=SuccessEnvelope[RevokeResponse] | RevokeResponse,
)
async def delete_module_grant(
    module_slug: str,
    target_id: str,
    request: Request,
    principal: Principal = Depends(require_role(ROLE_SYSTEM_ADMIN, ROLE_TENANT_OWNER)),
    db: AsyncSession = Depends(get_db),
) -> RevokeResponse:
    # Idempotent: revoking an absent grant reports changed=false.
    changed = await revoke_module_access(
        db,
        granter_id=principal.subject_id,
        target_id=target_id,
        module_slug=module_slug,
        request_ctx=request_context(request),
    )
    payload = RevokeResponse(module_slug=module_slug, target_id=target_id, changed=changed)
    return success_response(request=request, data=payload)
