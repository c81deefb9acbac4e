from __future__ import annotations

from uuid import uuid4

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import ModuleHubError
from modulehub.domain.models import Module, Tenant, TenantModuleGrant, User, UserModulePermission


def _upsert_insert(session: AsyncSession, model):
    # Pick the dialect insert that supports ON CONFLICT so upserts stay a single statement.
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise ModuleHubError(f"Atomic upsert is not supported on dialect {dialect}")


async def get_user(session: AsyncSession, user_id: str) -> User | None:
    result = await session.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def list_users(
    session: AsyncSession,
    *,
    tenant_id: str | None = None,
    role: str | None = None,
) -> list[User]:
    stmt = select(User)
    if tenant_id is not None:
        stmt = stmt.where(User.tenant_id == tenant_id)
    if role is not None:
        stmt = stmt.where(User.role == role)
    result = await session.execute(stmt.order_by(User.created_at.desc(), User.id))
    return list(result.scalars().all())


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def list_tenants(session: AsyncSession) -> list[Tenant]:
    result = await session.execute(select(Tenant).order_by(Tenant.created_at.desc(), Tenant.id))
    return list(result.scalars().all())


async def get_module(session: AsyncSession, module_id: str) -> Module | None:
    result = await session.execute(select(Module).where(Module.id == module_id))
    return result.scalar_one_or_none()


async def get_module_by_slug(session: AsyncSession, slug: str) -> Module | None:
    result = await session.execute(select(Module).where(Module.slug == slug))
    return result.scalar_one_or_none()


async def list_modules(session: AsyncSession, *, active_only: bool = False) -> list[Module]:
    stmt = select(Module)
    if active_only:
        stmt = stmt.where(Module.is_active.is_(True))
    result = await session.execute(stmt.order_by(Module.slug))
    return list(result.scalars().all())


async def get_tenant_grant(
    session: AsyncSession,
    *,
    tenant_id: str,
    module_id: str,
) -> TenantModuleGrant | None:
    # Always re-read the row so toggles made by other sessions are visible.
    result = await session.execute(
        select(TenantModuleGrant)
        .where(
            TenantModuleGrant.tenant_id == tenant_id,
            TenantModuleGrant.module_id == module_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_tenant_grants(
    session: AsyncSession,
    *,
    tenant_id: str,
) -> list[tuple[TenantModuleGrant, Module]]:
    # Include disabled rows so operators can see soft-revoked grants.
    result = await session.execute(
        select(TenantModuleGrant, Module)
        .join(Module, Module.id == TenantModuleGrant.module_id)
        .where(TenantModuleGrant.tenant_id == tenant_id)
        .order_by(Module.slug)
    )
    return [(grant, module) for grant, module in result.all()]


async def list_enabled_tenant_modules(session: AsyncSession, *, tenant_id: str) -> list[Module]:
    # Active modules the tenant holds an enabled grant for.
    result = await session.execute(
        select(Module)
        .join(TenantModuleGrant, TenantModuleGrant.module_id == Module.id)
        .where(
            TenantModuleGrant.tenant_id == tenant_id,
            TenantModuleGrant.enabled.is_(True),
            Module.is_active.is_(True),
        )
        .order_by(Module.slug)
    )
    return list(result.scalars().all())


async def list_member_modules(
    session: AsyncSession,
    *,
    user_id: str,
    tenant_id: str,
) -> list[Module]:
    # Conjunctive: enabled tenant grant AND a member permission row on an active module.
    result = await session.execute(
        select(Module)
        .join(
            TenantModuleGrant,
            and_(
                TenantModuleGrant.module_id == Module.id,
                TenantModuleGrant.tenant_id == tenant_id,
                TenantModuleGrant.enabled.is_(True),
            ),
        )
        .join(
            UserModulePermission,
            and_(
                UserModulePermission.module_id == Module.id,
                UserModulePermission.user_id == user_id,
            ),
        )
        .where(Module.is_active.is_(True))
        .order_by(Module.slug)
    )
    return list(result.scalars().all())


async def get_user_permission(
    session: AsyncSession,
    *,
    user_id: str,
    module_id: str,
) -> UserModulePermission | None:
    result = await session.execute(
        select(UserModulePermission)
        .where(
            UserModulePermission.user_id == user_id,
            UserModulePermission.module_id == module_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_user_permissions(
    session: AsyncSession,
    *,
    user_id: str,
) -> list[tuple[UserModulePermission, Module]]:
    result = await session.execute(
        select(UserModulePermission, Module)
        .join(Module, Module.id == UserModulePermission.module_id)
        .where(UserModulePermission.user_id == user_id)
        .order_by(Module.slug)
    )
    return [(permission, module) for permission, module in result.all()]


async def upsert_tenant_grant(
    session: AsyncSession,
    *,
    tenant_id: str,
    module_id: str,
    enabled: bool,
) -> TenantModuleGrant:
    # Single INSERT .. ON CONFLICT keyed on (tenant, module); concurrent writers resolve last-write-wins.
    stmt = _upsert_insert(session, TenantModuleGrant).values(
        id=uuid4().hex,
        tenant_id=tenant_id,
        module_id=module_id,
        enabled=enabled,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["tenant_id", "module_id"],
        set_={"enabled": stmt.excluded.enabled, "updated_at": func.now()},
    )
    await session.execute(stmt)
    grant = await get_tenant_grant(session, tenant_id=tenant_id, module_id=module_id)
    if grant is None:
        raise ModuleHubError("tenant grant upsert failed unexpectedly")
    return grant


async def disable_tenant_grant(
    session: AsyncSession,
    *,
    tenant_id: str,
    module_id: str,
) -> TenantModuleGrant | None:
    # Soft revoke: flip the flag in place and keep the row; None when no row exists.
    await session.execute(
        update(TenantModuleGrant)
        .where(
            TenantModuleGrant.tenant_id == tenant_id,
            TenantModuleGrant.module_id == module_id,
        )
        .values(enabled=False, updated_at=func.now())
        .execution_options(synchronize_session=False)
    )
    return await get_tenant_grant(session, tenant_id=tenant_id, module_id=module_id)


async def upsert_user_permission(
    session: AsyncSession,
    *,
    user_id: str,
    module_id: str,
    permissions: list[str],
    granted_by: str,
) -> UserModulePermission:
    # Overwrite semantics: an existing row gets the new token set and grantor, never a union.
    if not permissions:
        raise ValueError("permission rows cannot be empty; delete the row instead")
    stmt = _upsert_insert(session, UserModulePermission).values(
        id=uuid4().hex,
        user_id=user_id,
        module_id=module_id,
        permissions=permissions,
        granted_by=granted_by,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "module_id"],
        set_={
            "permissions": stmt.excluded.permissions,
            "granted_by": stmt.excluded.granted_by,
            "updated_at": func.now(),
        },
    )
    await session.execute(stmt)
    row = await get_user_permission(session, user_id=user_id, module_id=module_id)
    if row is None:
        raise ModuleHubError("permission upsert failed unexpectedly")
    return row


async def delete_user_permission(
    session: AsyncSession,
    *,
    user_id: str,
    module_id: str,
) -> bool:
    # Hard delete; returns whether a row was removed.
    result = await session.execute(
        delete(UserModulePermission)
        .where(
            UserModulePermission.user_id == user_id,
            UserModulePermission.module_id == module_id,
        )
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
