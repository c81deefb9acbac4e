from __future__ import annotations

from uuid import uuid4

import pytest
from sqlalchemy import delete, update

from modulehub.domain.models import Module, Tenant, TenantModuleGrant, User, UserModulePermission
from modulehub.persistence.db import SessionLocal
from modulehub.services.authz.engine import can_access_module, has_permission, list_available_modules
from modulehub.tests.utils.directory import (
    create_admin,
    create_member,
    create_module,
    create_tenant_with_owner,
    grant_tenant,
    set_member_permissions,
)


async def _can(actor_id: str, slug: str) -> bool:
    async with SessionLocal() as session:
        return await can_access_module(session, actor_id=actor_id, module_slug=slug)


async def _has(actor_id: str, slug: str, permission: str) -> bool:
    async with SessionLocal() as session:
        return await has_permission(session, actor_id=actor_id, module_slug=slug, permission=permission)


async def _available_slugs(actor_id: str) -> set[str]:
    async with SessionLocal() as session:
        modules = await list_available_modules(session, actor_id=actor_id)
    return {module.slug for module in modules}


async def _set_grant_enabled(tenant_id: str, module_id: str, enabled: bool) -> None:
    async with SessionLocal() as session:
        await session.execute(
            update(TenantModuleGrant)
            .where(TenantModuleGrant.tenant_id == tenant_id, TenantModuleGrant.module_id == module_id)
            .values(enabled=enabled)
        )
        await session.commit()


async def _set_module_active(module_id: str, is_active: bool) -> None:
    async with SessionLocal() as session:
        await session.execute(update(Module).where(Module.id == module_id).values(is_active=is_active))
        await session.commit()


async def _delete_member_permissions(user_id: str, module_id: str) -> None:
    async with SessionLocal() as session:
        await session.execute(
            delete(UserModulePermission).where(
                UserModulePermission.user_id == user_id,
                UserModulePermission.module_id == module_id,
            )
        )
        await session.commit()


@pytest.mark.asyncio
async def test_system_admin_reaches_every_active_module_until_deactivated() -> None:
    admin_id = await create_admin()
    module_id, slug = await create_module()

    assert await _can(admin_id, slug) is True
    for token in ("read", "write", "delete", "export:csv"):
        assert await _has(admin_id, slug, token) is True

    await _set_module_active(module_id, False)
    assert await _can(admin_id, slug) is False
    assert await _has(admin_id, slug, "read") is False


@pytest.mark.asyncio
async def test_unknown_actor_and_unknown_module_are_denied_without_error() -> None:
    admin_id = await create_admin()
    missing_slug = f"missing-{uuid4().hex[:8]}"
    _module_id, slug = await create_module()

    assert await _can(admin_id, missing_slug) is False
    assert await _has(admin_id, missing_slug, "read") is False
    assert await _can(f"ghost-{uuid4().hex}", slug) is False
    assert await _has(f"ghost-{uuid4().hex}", slug, "read") is False
    assert await _available_slugs(f"ghost-{uuid4().hex}") == set()
    assert await _can("", slug) is False


@pytest.mark.asyncio
async def test_owner_access_follows_tenant_grant_toggle() -> None:
    tenant_id, owner_id = await create_tenant_with_owner()
    module_id, slug = await create_module()

    assert await _can(owner_id, slug) is False

    await grant_tenant(tenant_id, module_id, enabled=True)
    assert await _can(owner_id, slug) is True
    # Owners implicitly hold every token on granted modules.
    assert await _has(owner_id, slug, "delete") is True
    assert await _has(owner_id, slug, "anything") is True

    await _set_grant_enabled(tenant_id, module_id, False)
    assert await _can(owner_id, slug) is False
    assert await _has(owner_id, slug, "read") is False

    await _set_grant_enabled(tenant_id, module_id, True)
    assert await _can(owner_id, slug) is True


@pytest.mark.asyncio
async def test_member_access_requires_tenant_grant_and_permission_row() -> None:
    tenant_id, _owner_id = await create_tenant_with_owner()
    member_id = await create_member(tenant_id)
    module_id, slug = await create_module()

    await grant_tenant(tenant_id, module_id)
    assert await _can(member_id, slug) is False

    await set_member_permissions(member_id, module_id, ["read"])
    assert await _can(member_id, slug) is True

    # Removing the permission row alone denies.
    await _delete_member_permissions(member_id, module_id)
    assert await _can(member_id, slug) is False

    # Removing the tenant grant alone denies.
    await set_member_permissions(member_id, module_id, ["read"])
    await _set_grant_enabled(tenant_id, module_id, False)
    assert await _can(member_id, slug) is False


@pytest.mark.asyncio
async def test_member_tokens_are_checked_independently() -> None:
    tenant_id, _owner_id = await create_tenant_with_owner()
    member_id = await create_member(tenant_id)
    module_id, slug = await create_module()
    await grant_tenant(tenant_id, module_id)
    await set_member_permissions(member_id, module_id, ["read", "write"])

    assert await _has(member_id, slug, "read") is True
    assert await _has(member_id, slug, "write") is True
    assert await _has(member_id, slug, "delete") is False
    # Stored tokens match exactly; case or whitespace variants never do.
    assert await _has(member_id, slug, "READ") is False
    assert await _has(member_id, slug, " read") is False
    assert await _has(member_id, slug, "") is False

    async with SessionLocal() as session:
        await session.execute(
            update(UserModulePermission)
            .where(UserModulePermission.user_id == member_id, UserModulePermission.module_id == module_id)
            .values(permissions=["read"])
        )
        await session.commit()

    assert await _has(member_id, slug, "read") is True
    assert await _has(member_id, slug, "write") is False


@pytest.mark.asyncio
async def test_disabled_tenant_grant_overrides_standing_member_permission() -> None:
    tenant_id, _owner_id = await create_tenant_with_owner()
    alice_id = await create_member(tenant_id)
    module_id, slug = await create_module(slug=f"notes-{uuid4().hex[:8]}")
    await set_member_permissions(alice_id, module_id, ["read"])
    await grant_tenant(tenant_id, module_id, enabled=False)

    assert await _can(alice_id, slug) is False
    # The stale row never grants a permission either.
    assert await _has(alice_id, slug, "read") is False
    assert slug not in await _available_slugs(alice_id)


@pytest.mark.asyncio
async def test_inactive_actor_and_deactivated_tenant_are_denied() -> None:
    tenant_id, owner_id = await create_tenant_with_owner()
    member_id = await create_member(tenant_id)
    inactive_member_id = await create_member(tenant_id, is_active=False)
    module_id, slug = await create_module()
    await grant_tenant(tenant_id, module_id)
    await set_member_permissions(member_id, module_id, ["read"])
    await set_member_permissions(inactive_member_id, module_id, ["read"])

    assert await _can(inactive_member_id, slug) is False
    assert await _can(member_id, slug) is True

    async with SessionLocal() as session:
        await session.execute(update(Tenant).where(Tenant.id == tenant_id).values(is_active=False))
        await session.commit()

    assert await _can(owner_id, slug) is False
    assert await _can(member_id, slug) is False
    assert await _has(member_id, slug, "read") is False
    assert await _available_slugs(owner_id) == set()

    admin_id = await create_admin(is_active=False)
    assert await _can(admin_id, slug) is False


@pytest.mark.asyncio
async def test_available_modules_agree_with_point_predicate() -> None:
    tenant_id, owner_id = await create_tenant_with_owner()
    member_id = await create_member(tenant_id)
    admin_id = await create_admin()

    permitted_id, permitted = await create_module()
    unpermitted_id, unpermitted = await create_module()
    _ungranted_id, ungranted = await create_module()
    inactive_id, inactive = await create_module(is_active=False)

    await grant_tenant(tenant_id, permitted_id)
    await grant_tenant(tenant_id, unpermitted_id)
    await grant_tenant(tenant_id, inactive_id)
    await set_member_permissions(member_id, permitted_id, ["read"])
    await set_member_permissions(member_id, inactive_id, ["read"])

    assert await _available_slugs(owner_id) == {permitted, unpermitted}
    assert await _available_slugs(member_id) == {permitted}

    admin_slugs = await _available_slugs(admin_id)
    assert {permitted, unpermitted, ungranted} <= admin_slugs
    assert inactive not in admin_slugs

    for actor_id in (owner_id, member_id, admin_id):
        listed = await _available_slugs(actor_id)
        for slug in (permitted, unpermitted, ungranted, inactive):
            assert (slug in listed) == await _can(actor_id, slug)


@pytest.mark.asyncio
async def test_invalid_role_rows_fall_through_to_default_deny() -> None:
    tenant_id, _owner_id = await create_tenant_with_owner()
    module_id, slug = await create_module()
    await grant_tenant(tenant_id, module_id)
    odd_id = uuid4().hex
    async with SessionLocal() as session:
        session.add(
            User(
                id=odd_id,
                email=f"auditor-{odd_id[:8]}@example.test",
                role="auditor",
                tenant_id=tenant_id,
                is_active=True,
            )
        )
        await session.commit()

    assert await _can(odd_id, slug) is False
    assert await _has(odd_id, slug, "read") is False
    assert await _available_slugs(odd_id) == set()
