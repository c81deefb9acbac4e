from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.apps.api.deps import Principal, get_db, reject_tenant_id_in_body, require_module
from modulehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from modulehub.apps.api.response import SuccessEnvelope, success_response
from modulehub.domain.models import SimpleText
from modulehub.domain.permissions import (
    MODULE_SIMPLE_TEXT,
    PERMISSION_DELETE,
    PERMISSION_READ,
    PERMISSION_WRITE,
)
from modulehub.services import simple_text as simple_text_service


router = APIRouter(
    prefix=f"/modules/{MODULE_SIMPLE_TEXT}",
    tags=["simple-text"],
    responses=DEFAULT_ERROR_RESPONSES,
)


class TextResponse(BaseModel):
    id: str
    content: str
    created_by: str
    created_at: datetime | None
    updated_at: datetime | None


class TextListResponse(BaseModel):
    items: list[TextResponse]


class TextWriteRequest(BaseModel):
    content: str = Field(min_length=1)


def _text_payload(row: SimpleText) -> TextResponse:
    return TextResponse(
        id=row.id,
        content=row.content,
        created_by=row.created_by,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


@router.get("/texts", response_model=SuccessEnvelope[TextListResponse] | TextListResponse)
async def list_texts(
    request: Request,
    principal: Principal = Depends(require_module(MODULE_SIMPLE_TEXT, PERMISSION_READ)),
    db: AsyncSession = Depends(get_db),
) -> TextListResponse:
    rows = await simple_text_service.list_texts(db, role=principal.role, tenant_id=principal.tenant_id)
    payload = TextListResponse(items=[_text_payload(row) for row in rows])
    return success_response(request=request, data=payload)


@router.post(
    "/texts",
    response_model=SuccessEnvelope[TextResponse] | TextResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_text(
    request: Request,
    payload: TextWriteRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    principal: Principal = Depends(require_module(MODULE_SIMPLE_TEXT, PERMISSION_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> TextResponse:
    row = await simple_text_service.create_text(
        db,
        role=principal.role,
        tenant_id=principal.tenant_id,
        actor_id=principal.subject_id,
        content=payload.content,
    )
    return success_response(request=request, data=_text_payload(row))


@router.get("/texts/{text_id}", response_model=SuccessEnvelope[TextResponse] | TextResponse)
async def get_text(
    text_id: str,
    request: Request,
    principal: Principal = Depends(require_module(MODULE_SIMPLE_TEXT, PERMISSION_READ)),
    db: AsyncSession = Depends(get_db),
) -> TextResponse:
    row = await simple_text_service.get_text(
        db, role=principal.role, tenant_id=principal.tenant_id, text_id=text_id
    )
    return success_response(request=request, data=_text_payload(row))


@router.patch("/texts/{text_id}", response_model=SuccessEnvelope[TextResponse] | TextResponse)
async def update_text(
    text_id: str,
    request: Request,
    payload: TextWriteRequest,
    _reject_tenant: None = Depends(reject_tenant_id_in_body),
    principal: Principal = Depends(require_module(MODULE_SIMPLE_TEXT, PERMISSION_WRITE)),
    db: AsyncSession = Depends(get_db),
) -> TextResponse:
    row = await simple_text_service.update_text(
        db,
        role=principal.role,
        tenant_id=principal.tenant_id,
        text_id=text_id,
        content=payload.content,
    )
    return success_response(request=request, data=_text_payload(row))


class TextDeleteResponse(BaseModel):
    id: str
    deleted: bool


@router.delete("/texts/{text_id}", response_model=SuccessEnvelope[TextDeleteResponse] | TextDeleteResponse)
async def delete_text(
    text_id: str,
    request: Request,
    principal: Principal = Depends(require_module(MODULE_SIMPLE_TEXT, PERMISSION_DELETE)),
    db: AsyncSession = Depends(get_db),
) -> TextDeleteResponse:
    await simple_text_service.delete_text(
        db, role=principal.role, tenant_id=principal.tenant_id, text_id=text_id
    )
    return success_response(request=request, data=TextDeleteResponse(id=text_id, deleted=True))
