"""Module access decisions for system admins, tenant owners and tenant members.

Both predicates are total: unknown or inactive actors, unknown or inactive
modules and deactivated tenants all fold into ``False`` instead of raising, so
callers can use them directly as boolean gates. Database errors propagate
unchanged. Nothing is cached; every call reads the current rows.
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.domain.actors import ActorScope, SystemAdmin, TenantMember, TenantOwner, resolve_scope
from modulehub.domain.models import Module
from modulehub.persistence.repos import directory as directory_repo


logger = logging.getLogger(__name__)


async def _resolve_actor(session: AsyncSession, actor_id: str | None) -> ActorScope | None:
    # Absence of identity is denial; tenant-bound actors also need a live tenant.
    if not actor_id:
        return None
    scope = resolve_scope(await directory_repo.get_user(session, actor_id))
    if scope is None or isinstance(scope, SystemAdmin):
        return scope
    tenant = await directory_repo.get_tenant(session, scope.tenant_id)
    if tenant is None or not tenant.is_active:
        return None
    return scope


async def _resolve_active_module(session: AsyncSession, module_slug: str | None) -> Module | None:
    if not module_slug:
        return None
    module = await directory_repo.get_module_by_slug(session, module_slug)
    if module is None or not module.is_active:
        return None
    return module


async def _tenant_grant_enabled(session: AsyncSession, *, tenant_id: str, module_id: str) -> bool:
    grant = await directory_repo.get_tenant_grant(session, tenant_id=tenant_id, module_id=module_id)
    return grant is not None and grant.enabled


async def can_access_module(session: AsyncSession, *, actor_id: str, module_slug: str) -> bool:
    """Return whether the actor may reach the module at all (navigation/route level)."""
    scope = await _resolve_actor(session, actor_id)
    if scope is None:
        return False
    module = await _resolve_active_module(session, module_slug)
    if module is None:
        return False

    match scope:
        case SystemAdmin():
            allowed = True
        case TenantOwner(tenant_id=tenant_id):
            allowed = await _tenant_grant_enabled(session, tenant_id=tenant_id, module_id=module.id)
        case TenantMember(actor_id=member_id, tenant_id=tenant_id):
            # Conjunctive: the tenant grant gates any standing member permission row.
            if not await _tenant_grant_enabled(session, tenant_id=tenant_id, module_id=module.id):
                allowed = False
            else:
                row = await directory_repo.get_user_permission(
                    session, user_id=member_id, module_id=module.id
                )
                allowed = row is not None
        case _:
            allowed = False

    logger.debug("authz_module_access actor_id=%s module=%s allowed=%s", actor_id, module_slug, allowed)
    return allowed


async def has_permission(
    session: AsyncSession,
    *,
    actor_id: str,
    module_slug: str,
    permission: str,
) -> bool:
    """Return whether the actor holds ``permission`` on the module.

    Owners implicitly hold every token on modules their tenant can use. Members
    need the token in their permission row and, unlike a bare row lookup, a
    still-enabled tenant grant: a stale row left behind by a tenant-level
    revoke never grants anything.
    """
    # Exact match against the stored tokens; normalization happens only on the write path.
    if not isinstance(permission, str) or not permission:
        return False
    token = permission
    scope = await _resolve_actor(session, actor_id)
    if scope is None:
        return False
    module = await _resolve_active_module(session, module_slug)
    if module is None:
        return False

    match scope:
        case SystemAdmin():
            allowed = True
        case TenantOwner(tenant_id=tenant_id):
            allowed = await _tenant_grant_enabled(session, tenant_id=tenant_id, module_id=module.id)
        case TenantMember(actor_id=member_id, tenant_id=tenant_id):
            row = await directory_repo.get_user_permission(session, user_id=member_id, module_id=module.id)
            if row is None or token not in (row.permissions or []):
                allowed = False
            else:
                allowed = await _tenant_grant_enabled(session, tenant_id=tenant_id, module_id=module.id)
        case _:
            allowed = False

    logger.debug(
        "authz_permission actor_id=%s module=%s permission=%s allowed=%s",
        actor_id,
        module_slug,
        token,
        allowed,
    )
    return allowed


async def list_available_modules(session: AsyncSession, *, actor_id: str) -> list[Module]:
    # Same gates as can_access_module, evaluated as one query per role.
    scope = await _resolve_actor(session, actor_id)
    match scope:
        case SystemAdmin():
            return await directory_repo.list_modules(session, active_only=True)
        case TenantOwner(tenant_id=tenant_id):
            return await directory_repo.list_enabled_tenant_modules(session, tenant_id=tenant_id)
        case TenantMember(actor_id=member_id, tenant_id=tenant_id):
            return await directory_repo.list_member_modules(session, user_id=member_id, tenant_id=tenant_id)
        case _:
            return []
