from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select

from modulehub.domain.actors import ROLE_SYSTEM_ADMIN, ROLE_TENANT_MEMBER, ROLE_TENANT_OWNER
from modulehub.domain.models import Module, Tenant, TenantModuleGrant, User, UserModulePermission
from modulehub.persistence.db import SessionLocal


def unique_email(label: str) -> str:
    return f"{label}-{uuid4().hex[:12]}@example.test"


def unique_slug(label: str = "mod") -> str:
    return f"{label}-{uuid4().hex[:12]}"


async def create_admin(*, is_active: bool = True) -> str:
    # Seed a system admin directly, bypassing the admin service.
    user_id = uuid4().hex
    async with SessionLocal() as session:
        session.add(
            User(
                id=user_id,
                email=unique_email("admin"),
                role=ROLE_SYSTEM_ADMIN,
                tenant_id=None,
                is_active=is_active,
            )
        )
        await session.commit()
    return user_id


async def create_tenant_with_owner(*, tenant_active: bool = True, owner_active: bool = True) -> tuple[str, str]:
    # Returns (tenant_id, owner_id); the tenant row is flushed first for the users FK.
    tenant_id = uuid4().hex
    owner_id = uuid4().hex
    async with SessionLocal() as session:
        session.add(Tenant(id=tenant_id, name=f"Tenant {tenant_id[:6]}", owner_id=owner_id, is_active=tenant_active))
        await session.flush()
        session.add(
            User(
                id=owner_id,
                email=unique_email("owner"),
                role=ROLE_TENANT_OWNER,
                tenant_id=tenant_id,
                is_active=owner_active,
            )
        )
        await session.commit()
    return tenant_id, owner_id


async def create_member(tenant_id: str, *, is_active: bool = True) -> str:
    user_id = uuid4().hex
    async with SessionLocal() as session:
        session.add(
            User(
                id=user_id,
                email=unique_email("member"),
                role=ROLE_TENANT_MEMBER,
                tenant_id=tenant_id,
                is_active=is_active,
            )
        )
        await session.commit()
    return user_id


async def create_module(*, slug: str | None = None, is_active: bool = True) -> tuple[str, str]:
    # Returns (module_id, slug) for a fresh catalog entry.
    module_id = uuid4().hex
    resolved_slug = slug or unique_slug()
    async with SessionLocal() as session:
        session.add(
            Module(
                id=module_id,
                name=f"Module {resolved_slug}",
                slug=resolved_slug,
                is_active=is_active,
            )
        )
        await session.commit()
    return module_id, resolved_slug


async def ensure_module(slug: str) -> str:
    # Shared well-known modules (simple-text) are created once per test database.
    async with SessionLocal() as session:
        result = await session.execute(select(Module).where(Module.slug == slug))
        module = result.scalar_one_or_none()
        if module is not None:
            return module.id
    module_id, _slug = await create_module(slug=slug)
    return module_id


async def grant_tenant(tenant_id: str, module_id: str, *, enabled: bool = True) -> None:
    async with SessionLocal() as session:
        session.add(TenantModuleGrant(id=uuid4().hex, tenant_id=tenant_id, module_id=module_id, enabled=enabled))
        await session.commit()


async def set_member_permissions(user_id: str, module_id: str, permissions: list[str]) -> None:
    async with SessionLocal() as session:
        session.add(
            UserModulePermission(
                id=uuid4().hex,
                user_id=user_id,
                module_id=module_id,
                permissions=permissions,
                granted_by=None,
            )
        )
        await session.commit()


async def load_tenant_grant(tenant_id: str, module_id: str) -> TenantModuleGrant | None:
    async with SessionLocal() as session:
        result = await session.execute(
            select(TenantModuleGrant).where(
                TenantModuleGrant.tenant_id == tenant_id,
                TenantModuleGrant.module_id == module_id,
            )
        )
        return result.scalar_one_or_none()


async def load_member_permissions(user_id: str, module_id: str) -> UserModulePermission | None:
    async with SessionLocal() as session:
        result = await session.execute(
            select(UserModulePermission).where(
                UserModulePermission.user_id == user_id,
                UserModulePermission.module_id == module_id,
            )
        )
        return result.scalar_one_or_none()
