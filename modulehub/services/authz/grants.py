"""Grant and revoke module access.

System admins act at the tenant level (soft toggle on ``TenantModuleGrant``);
tenant owners act on their own members (hard upsert/delete of
``UserModulePermission``). The asymmetry is intentional: a tenant grant row is
kept for audit and re-enable, a member permission row only exists while it
carries at least one token.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import ForbiddenError, InvalidRequestError, NotFoundError
from modulehub.domain.actors import ROLE_TENANT_MEMBER, SystemAdmin, TenantOwner, resolve_scope
from modulehub.domain.models import Module, Tenant, TenantModuleGrant, User, UserModulePermission
from modulehub.domain.permissions import normalize_permissions
from modulehub.persistence.repos import directory as directory_repo
from modulehub.services.audit import record_event


logger = logging.getLogger(__name__)


async def _resolve_parties(
    session: AsyncSession,
    *,
    granter_id: str,
    target_id: str,
    module_slug: str,
) -> tuple[User, User, Module]:
    granter = await directory_repo.get_user(session, granter_id)
    if granter is None:
        raise NotFoundError("Granter user not found")
    target = await directory_repo.get_user(session, target_id)
    if target is None:
        raise NotFoundError("Target user not found")
    module = await directory_repo.get_module_by_slug(session, module_slug)
    if module is None:
        raise NotFoundError("Module not found")
    return granter, target, module


async def _target_tenant(session: AsyncSession, target: User) -> Tenant:
    # Admin grants land on the target's tenant; a tenantless target has nothing to grant to.
    if not target.tenant_id:
        raise NotFoundError("Target user is not associated with a tenant")
    tenant = await directory_repo.get_tenant(session, target.tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found")
    return tenant


async def _require_owner_tenant(session: AsyncSession, owner: TenantOwner, target: User, verb: str) -> None:
    # Cross-tenant attempts are rejected before anything about the target is considered.
    if target.tenant_id != owner.tenant_id:
        raise ForbiddenError(f"Cannot {verb} access for users outside your tenant")
    tenant = await directory_repo.get_tenant(session, owner.tenant_id)
    if tenant is None or not tenant.is_active:
        raise ForbiddenError("Tenant is not active")


async def _commit(session: AsyncSession) -> None:
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise


async def grant_module_access(
    session: AsyncSession,
    *,
    granter_id: str,
    target_id: str,
    module_slug: str,
    permissions: Iterable[str],
    request_ctx: dict[str, Any] | None = None,
) -> TenantModuleGrant | UserModulePermission | None:
    """Grant ``module_slug`` to ``target_id`` on behalf of ``granter_id``.

    Returns the tenant grant (admin), the member permission row (owner), or
    None when an owner grants an empty token set, which removes the row.
    Raises NotFoundError for unresolvable references and ForbiddenError when
    the granter's role or tenant does not allow the grant.
    """
    granter, target, module = await _resolve_parties(
        session, granter_id=granter_id, target_id=target_id, module_slug=module_slug
    )
    ctx = request_ctx or {}

    match resolve_scope(granter):
        case SystemAdmin():
            # Tenant-level grant; member tokens are not an admin concern.
            tenant = await _target_tenant(session, target)
            grant = await directory_repo.upsert_tenant_grant(
                session, tenant_id=tenant.id, module_id=module.id, enabled=True
            )
            await record_event(
                session=session,
                tenant_id=tenant.id,
                actor_type="user",
                actor_id=granter.id,
                actor_role=granter.role,
                event_type="authz.grant.tenant",
                outcome="success",
                resource_type="module",
                resource_id=module.id,
                request_id=ctx.get("request_id"),
                ip_address=ctx.get("ip_address"),
                user_agent=ctx.get("user_agent"),
                metadata={"module_slug": module.slug, "target_id": target.id},
                best_effort=False,
            )
            await _commit(session)
            logger.info(
                "authz_grant level=tenant granter_id=%s tenant_id=%s module=%s",
                granter.id,
                tenant.id,
                module.slug,
            )
            return grant
        case TenantOwner() as owner:
            await _require_owner_tenant(session, owner, target, "grant")
            if target.role != ROLE_TENANT_MEMBER:
                raise ForbiddenError("Module permissions can only be granted to tenant members")
            grant = await directory_repo.get_tenant_grant(
                session, tenant_id=owner.tenant_id, module_id=module.id
            )
            if grant is None or not grant.enabled:
                raise ForbiddenError("Tenant does not have access to this module")
            try:
                tokens = normalize_permissions(permissions)
            except ValueError as exc:
                raise InvalidRequestError(str(exc)) from exc
            row: UserModulePermission | None = None
            if tokens:
                row = await directory_repo.upsert_user_permission(
                    session,
                    user_id=target.id,
                    module_id=module.id,
                    permissions=tokens,
                    granted_by=granter.id,
                )
            else:
                await directory_repo.delete_user_permission(session, user_id=target.id, module_id=module.id)
            await record_event(
                session=session,
                tenant_id=owner.tenant_id,
                actor_type="user",
                actor_id=granter.id,
                actor_role=granter.role,
                event_type="authz.grant.member",
                outcome="success",
                resource_type="module",
                resource_id=module.id,
                request_id=ctx.get("request_id"),
                ip_address=ctx.get("ip_address"),
                user_agent=ctx.get("user_agent"),
                metadata={"module_slug": module.slug, "target_id": target.id, "permissions": tokens},
                best_effort=False,
            )
            await _commit(session)
            logger.info(
                "authz_grant level=member granter_id=%s target_id=%s module=%s permissions=%s",
                granter.id,
                target.id,
                module.slug,
                ",".join(tokens),
            )
            return row
        case _:
            raise ForbiddenError("Insufficient permissions to grant access")


async def revoke_module_access(
    session: AsyncSession,
    *,
    granter_id: str,
    target_id: str,
    module_slug: str,
    request_ctx: dict[str, Any] | None = None,
) -> bool:
    """Revoke ``module_slug`` from ``target_id``; returns whether anything changed.

    Revoking something that is not granted is a no-op, so repeated calls are
    safe. Admins disable the tenant grant in place; owners delete the member's
    permission row.
    """
    granter, target, module = await _resolve_parties(
        session, granter_id=granter_id, target_id=target_id, module_slug=module_slug
    )
    ctx = request_ctx or {}

    match resolve_scope(granter):
        case SystemAdmin():
            event_type = "authz.revoke.tenant"
            if not target.tenant_id:
                # A tenantless target holds no tenant grant, so there is nothing to revoke.
                changed = False
                tenant_id = None
            else:
                tenant = await _target_tenant(session, target)
                existing = await directory_repo.get_tenant_grant(
                    session, tenant_id=tenant.id, module_id=module.id
                )
                changed = existing is not None and existing.enabled
                if existing is not None:
                    await directory_repo.disable_tenant_grant(session, tenant_id=tenant.id, module_id=module.id)
                tenant_id = tenant.id
        case TenantOwner() as owner:
            await _require_owner_tenant(session, owner, target, "revoke")
            changed = await directory_repo.delete_user_permission(
                session, user_id=target.id, module_id=module.id
            )
            tenant_id = owner.tenant_id
            event_type = "authz.revoke.member"
        case _:
            raise ForbiddenError("Insufficient permissions to revoke access")

    await record_event(
        session=session,
        tenant_id=tenant_id,
        actor_type="user",
        actor_id=granter.id,
        actor_role=granter.role,
        event_type=event_type,
        outcome="success",
        resource_type="module",
        resource_id=module.id,
        request_id=ctx.get("request_id"),
        ip_address=ctx.get("ip_address"),
        user_agent=ctx.get("user_agent"),
        metadata={"module_slug": module.slug, "target_id": target.id, "changed": changed},
        best_effort=False,
    )
    await _commit(session)
    logger.info(
        "authz_revoke event=%s granter_id=%s target_id=%s module=%s changed=%s",
        event_type,
        granter.id,
        target.id,
        module.slug,
        changed,
    )
    return changed
