from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.apps.api.deps import Principal, get_db, require_role
from modulehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from modulehub.apps.api.response import SuccessEnvelope, success_response
from modulehub.domain.actors import ROLE_SYSTEM_ADMIN
from modulehub.domain.models import Module, Tenant, TenantModuleGrant, User
from modulehub.services import admin as admin_service


router = APIRouter(prefix="/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)

require_admin = require_role(ROLE_SYSTEM_ADMIN)


class UserResponse(BaseModel):
    id: str
    email: str
    first_name: str | None
    last_name: str | None
    role: str
    tenant_id: str | None
    is_active: bool
    created_at: datetime | None


class UserListResponse(BaseModel):
    items: list[UserResponse]


class UserCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    role: str
    tenant_id: str | None = None
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)


class ActivePatchRequest(BaseModel):
    is_active: bool


class TenantResponse(BaseModel):
    id: str
    name: str
    owner_id: str
    is_active: bool
    created_at: datetime | None


class TenantListResponse(BaseModel):
    items: list[TenantResponse]


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    owner_email: str = Field(min_length=3, max_length=320)
    owner_first_name: str | None = Field(default=None, max_length=128)
    owner_last_name: str | None = Field(default=None, max_length=128)


class TenantCreateResponse(BaseModel):
    tenant: TenantResponse
    owner: UserResponse


class AdminModuleResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: str | None
    is_active: bool
    created_at: datetime | None


class AdminModuleListResponse(BaseModel):
    items: list[AdminModuleResponse]


class ModuleCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=256)
    slug: str = Field(min_length=1, max_length=64)
    description: str | None = None
    is_active: bool = True


class ModulePatchRequest(BaseModel):
    # Slug is intentionally absent: it is the stable key policies refer to.
    name: str | None = Field(default=None, min_length=1, max_length=256)
    description: str | None = None
    is_active: bool | None = None


class TenantModuleResponse(BaseModel):
    tenant_id: str
    module_id: str
    module_slug: str
    module_name: str
    enabled: bool


class TenantModuleListResponse(BaseModel):
    items: list[TenantModuleResponse]


def _user_payload(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        role=user.role,
        tenant_id=user.tenant_id,
        is_active=user.is_active,
        created_at=user.created_at,
    )


def _tenant_payload(tenant: Tenant) -> TenantResponse:
    return TenantResponse(
        id=tenant.id,
        name=tenant.name,
        owner_id=tenant.owner_id,
        is_active=tenant.is_active,
        created_at=tenant.created_at,
    )


def _module_payload(module: Module) -> AdminModuleResponse:
    return AdminModuleResponse(
        id=module.id,
        name=module.name,
        slug=module.slug,
        description=module.description,
        is_active=module.is_active,
        created_at=module.created_at,
    )


def _tenant_module_payload(grant: TenantModuleGrant, module: Module) -> TenantModuleResponse:
    return TenantModuleResponse(
        tenant_id=grant.tenant_id,
        module_id=module.id,
        module_slug=module.slug,
        module_name=module.name,
        enabled=grant.enabled,
    )


@router.get("/users", response_model=SuccessEnvelope[UserListResponse] | UserListResponse)
async def list_users(
    request: Request,
    tenant_id: str | None = Query(default=None),
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserListResponse:
    users = await admin_service.list_users(db, tenant_id=tenant_id)
    payload = UserListResponse(items=[_user_payload(user) for user in users])
    return success_response(request=request, data=payload)


@router.post(
    "/users",
    response_model=SuccessEnvelope[UserResponse] | UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_user(
    request: Request,
    payload: UserCreateRequest,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await admin_service.create_user(
        db,
        email=payload.email,
        role=payload.role,
        tenant_id=payload.tenant_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    return success_response(request=request, data=_user_payload(user))


@router.patch("/users/{user_id}/active", response_model=SuccessEnvelope[UserResponse] | UserResponse)
async def patch_user_active(
    user_id: str,
    request: Request,
    payload: ActivePatchRequest,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await admin_service.set_user_active(db, user_id=user_id, is_active=payload.is_active)
    return success_response(request=request, data=_user_payload(user))


@router.get("/tenants", response_model=SuccessEnvelope[TenantListResponse] | TenantListResponse)
async def list_tenants(
    request: Request,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TenantListResponse:
    tenants = await admin_service.list_tenants(db)
    payload = TenantListResponse(items=[_tenant_payload(tenant) for tenant in tenants])
    return success_response(request=request, data=payload)


@router.post(
    "/tenants",
    response_model=SuccessEnvelope[TenantCreateResponse] | TenantCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_tenant(
    request: Request,
    payload: TenantCreateRequest,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TenantCreateResponse:
    tenant, owner = await admin_service.create_tenant(
        db,
        name=payload.name,
        owner_email=payload.owner_email,
        owner_first_name=payload.owner_first_name,
        owner_last_name=payload.owner_last_name,
    )
    data = TenantCreateResponse(tenant=_tenant_payload(tenant), owner=_user_payload(owner))
    return success_response(request=request, data=data)


@router.delete("/tenants/{tenant_id}", response_model=SuccessEnvelope[TenantResponse] | TenantResponse)
async def deactivate_tenant(
    tenant_id: str,
    request: Request,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TenantResponse:
    # Soft delete: the tenant and its rows stay for audit, every check denies.
    tenant = await admin_service.deactivate_tenant(db, tenant_id=tenant_id)
    return success_response(request=request, data=_tenant_payload(tenant))


@router.get("/modules", response_model=SuccessEnvelope[AdminModuleListResponse] | AdminModuleListResponse)
async def list_modules(
    request: Request,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminModuleListResponse:
    modules = await admin_service.list_modules(db)
    payload = AdminModuleListResponse(items=[_module_payload(module) for module in modules])
    return success_response(request=request, data=payload)


@router.post(
    "/modules",
    response_model=SuccessEnvelope[AdminModuleResponse] | AdminModuleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_module(
    request: Request,
    payload: ModuleCreateRequest,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminModuleResponse:
    module = await admin_service.create_module(
        db,
        name=payload.name,
        slug=payload.slug,
        description=payload.description,
        is_active=payload.is_active,
    )
    return success_response(request=request, data=_module_payload(module))


@router.patch("/modules/{module_id}", response_model=SuccessEnvelope[AdminModuleResponse] | AdminModuleResponse)
async def patch_module(
    module_id: str,
    request: Request,
    payload: ModulePatchRequest,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> AdminModuleResponse:
    module = await admin_service.update_module(
        db,
        module_id=module_id,
        name=payload.name,
        description=payload.description,
        is_active=payload.is_active,
    )
    return success_response(request=request, data=_module_payload(module))


@router.get(
    "/tenants/{tenant_id}/modules",
    response_model=SuccessEnvelope[TenantModuleListResponse] | TenantModuleListResponse,
)
async def list_tenant_modules(
    tenant_id: str,
    request: Request,
    _principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TenantModuleListResponse:
    rows = await admin_service.list_tenant_modules(db, tenant_id=tenant_id)
    payload = TenantModuleListResponse(items=[_tenant_module_payload(grant, module) for grant, module in rows])
    return success_response(request=request, data=payload)


@router.post(
    "/tenants/{tenant_id}/modules/{module_id}",
    response_model=SuccessEnvelope[TenantModuleResponse] | TenantModuleResponse,
)
async def grant_tenant_module(
    tenant_id: str,
    module_id: str,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TenantModuleResponse:
    grant = await admin_service.grant_module_to_tenant(
        db,
        tenant_id=tenant_id,
        module_id=module_id,
        actor_id=principal.subject_id,
        actor_role=principal.role,
    )
    module = await admin_service.get_module(db, module_id)
    return success_response(request=request, data=_tenant_module_payload(grant, module))


@router.delete(
    "/tenants/{tenant_id}/modules/{module_id}",
    response_model=SuccessEnvelope[TenantModuleResponse] | TenantModuleResponse,
)
async def revoke_tenant_module(
    tenant_id: str,
    module_id: str,
    request: Request,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> TenantModuleResponse:
    grant = await admin_service.revoke_module_from_tenant(
        db,
        tenant_id=tenant_id,
        module_id=module_id,
        actor_id=principal.subject_id,
        actor_role=principal.role,
    )
    module = await admin_service.get_module(db, module_id)
    return success_response(request=request, data=_tenant_module_payload(grant, module))
