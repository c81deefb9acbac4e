from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_role
from modulehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from modulehub.apps.api.response import SuccessEnvelope, success_response
from modulehub.domain.actors import ROLE_TENANT_OWNER
from modulehub.domain.models import User
from modulehub.services import company as company_service


router = APIRouter(prefix="/company", tags=["company"], responses=DEFAULT_ERROR_RESPONSES)

require_owner = require_role(ROLE_TENANT_OWNER)


class EmployeeResponse(BaseModel):
    id: str
    email: str
    first_name: str | None
    last_name: str | None
    is_active: bool
    created_at: datetime | None


class EmployeeListResponse(BaseModel):
    items: list[EmployeeResponse]


class EmployeeCreateRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    first_name: str | None = Field(default=None, max_length=128)
    last_name: str | None = Field(default=None, max_length=128)


class EmployeeModuleResponse(BaseModel):
    module_id: str
    module_slug: str
    module_name: str
    permissions: list[str]
    granted_by: str | None


class EmployeeModuleListResponse(BaseModel):
    items: list[EmployeeModuleResponse]


def _employee_payload(user: User) -> EmployeeResponse:
    return EmployeeResponse(
        id=user.id,
        email=user.email,
        first_name=user.first_name,
        last_name=user.last_name,
        is_active=user.is_active,
        created_at=user.created_at,
    )


@router.get("/employees", response_model=SuccessEnvelope[EmployeeListResponse] | EmployeeListResponse)
async def list_employees(
    request: Request,
    principal: Principal = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
) -> EmployeeListResponse:
    employees = await company_service.list_employees(db, tenant_id=principal.tenant_id)
    payload = EmployeeListResponse(items=[_employee_payload(user) for user in employees])
    return success_response(request=request, data=payload)


@router.post(
    "/employees",
    response_model=SuccessEnvelope[EmployeeResponse] | EmployeeResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_employee(
    request: Request,
    payload: EmployeeCreateRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    principal: Principal = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
) -> EmployeeResponse:
    employee = await company_service.create_employee(
        db,
        tenant_id=principal.tenant_id,
        email=payload.email,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    return success_response(request=request, data=_employee_payload(employee))


@router.delete("/employees/{employee_id}", response_model=SuccessEnvelope[EmployeeResponse] | EmployeeResponse)
async def deactivate_employee(
    employee_id: str,
    request: Request,
    principal: Principal = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
) -> EmployeeResponse:
    employee = await company_service.deactivate_employee(
        db, tenant_id=principal.tenant_id, employee_id=employee_id
    )
    return success_response(request=request, data=_employee_payload(employee))


@router.get(
    "/employees/{employee_id}/modules",
    response_model=SuccessEnvelope[EmployeeModuleListResponse] | EmployeeModuleListResponse,
)
async def list_employee_modules(
    employee_id: str,
    request: Request,
    principal: Principal = Depends(require_owner),
    db: AsyncSession = Depends(get_db),
) -> EmployeeModuleListResponse:
    rows = await company_service.list_employee_modules(
        db, tenant_id=principal.tenant_id, employee_id=employee_id
    )
    payload = EmployeeModuleListResponse(
        items=[
            EmployeeModuleResponse(
                module_id=module.id,
                module_slug=module.slug,
                module_name=module.name,
                permissions=list(permission.permissions),
                granted_by=permission.granted_by,
            )
            for permission, module in rows
        ]
    )
    return success_response(request=request, data=payload)
