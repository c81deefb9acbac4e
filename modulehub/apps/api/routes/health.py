from __future__ import annotations

from fastapi import APIRouter, Request
from pydantic import BaseModel

from modulehub.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from modulehub.apps.api.response import SuccessEnvelope, success_response
from modulehub.core.config import get_settings

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    service: str


# Unversioned probes get the bare payload; /v1/health is enveloped.
@router.get("/health", response_model=SuccessEnvelope[HealthResponse] | HealthResponse)
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok", service=get_settings().app_name)
    return success_response(request=request, data=payload)
