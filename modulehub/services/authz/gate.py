from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import BusinessDataAccessError, ModuleAccessDeniedError, PermissionDeniedError
from modulehub.domain.actors import ROLE_SYSTEM_ADMIN
from modulehub.services.authz.engine import can_access_module, has_permission


logger = logging.getLogger(__name__)


async def enforce_module_access(
    session: AsyncSession,
    *,
    actor_id: str,
    module_slug: str | None,
    permission: str | None = None,
) -> None:
    """Raise unless the actor satisfies the declared module/permission requirement.

    No module requirement means the operation is not module-gated and is allowed.
    """
    if not module_slug:
        return
    if not await can_access_module(session, actor_id=actor_id, module_slug=module_slug):
        logger.info("authz_gate_denied actor_id=%s module=%s reason=module", actor_id, module_slug)
        raise ModuleAccessDeniedError(f"Access denied to module: {module_slug}")
    if permission and not await has_permission(
        session, actor_id=actor_id, module_slug=module_slug, permission=permission
    ):
        logger.info(
            "authz_gate_denied actor_id=%s module=%s permission=%s reason=permission",
            actor_id,
            module_slug,
            permission,
        )
        raise PermissionDeniedError(f"Permission denied: {permission} on module {module_slug}")


def ensure_business_data_access(*, role: str) -> None:
    # Module access for admins is configuration access only; tenant records stay off-limits.
    if role == ROLE_SYSTEM_ADMIN:
        raise BusinessDataAccessError("System administrators do not have access to tenant business data")
