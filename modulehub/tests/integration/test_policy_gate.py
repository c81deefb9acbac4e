from __future__ import annotations

from uuid import uuid4

import pytest

from modulehub.core.errors import BusinessDataAccessError, ModuleAccessDeniedError, PermissionDeniedError
from modulehub.domain.actors import ROLE_SYSTEM_ADMIN, ROLE_TENANT_MEMBER, ROLE_TENANT_OWNER
from modulehub.persistence.db import SessionLocal
from modulehub.services.authz.gate import enforce_module_access, ensure_business_data_access
from modulehub.tests.utils.directory import (
    create_member,
    create_module,
    create_tenant_with_owner,
    grant_tenant,
    set_member_permissions,
)


@pytest.mark.asyncio
async def test_ungated_operations_pass_for_any_actor() -> None:
    async with SessionLocal() as session:
        await enforce_module_access(session, actor_id=f"ghost-{uuid4().hex}", module_slug=None)
        await enforce_module_access(session, actor_id=f"ghost-{uuid4().hex}", module_slug="")


@pytest.mark.asyncio
async def test_gate_distinguishes_module_and_permission_denials() -> None:
    tenant_id, _owner_id = await create_tenant_with_owner()
    member_id = await create_member(tenant_id)
    outsider_id = await create_member(tenant_id)
    module_id, slug = await create_module()
    await grant_tenant(tenant_id, module_id)
    await set_member_permissions(member_id, module_id, ["read"])

    async with SessionLocal() as session:
        await enforce_module_access(session, actor_id=member_id, module_slug=slug)
        await enforce_module_access(session, actor_id=member_id, module_slug=slug, permission="read")

        with pytest.raises(PermissionDeniedError) as permission_exc:
            await enforce_module_access(session, actor_id=member_id, module_slug=slug, permission="delete")
        assert str(permission_exc.value) == f"Permission denied: delete on module {slug}"

        with pytest.raises(ModuleAccessDeniedError) as module_exc:
            await enforce_module_access(session, actor_id=outsider_id, module_slug=slug, permission="read")
        assert str(module_exc.value) == f"Access denied to module: {slug}"


@pytest.mark.asyncio
async def test_gate_denies_unknown_module() -> None:
    _tenant_id, owner_id = await create_tenant_with_owner()
    async with SessionLocal() as session:
        with pytest.raises(ModuleAccessDeniedError):
            await enforce_module_access(session, actor_id=owner_id, module_slug=f"missing-{uuid4().hex[:8]}")


def test_business_data_is_closed_to_system_admins() -> None:
    with pytest.raises(BusinessDataAccessError):
        ensure_business_data_access(role=ROLE_SYSTEM_ADMIN)
    ensure_business_data_access(role=ROLE_TENANT_OWNER)
    ensure_business_data_access(role=ROLE_TENANT_MEMBER)
