from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import ConflictError, InvalidActorError, InvalidRequestError, NotFoundError
from modulehub.domain.actors import ROLE_TENANT_OWNER, normalize_role, validate_role_tenant
from modulehub.domain.models import Module, Tenant, TenantModuleGrant, User
from modulehub.domain.permissions import validate_module_slug
from modulehub.persistence.repos import directory as directory_repo
from modulehub.services.audit import record_event


logger = logging.getLogger(__name__)


async def _commit(session: AsyncSession, *rows: object) -> None:
    # Refresh rows after commit so server-side timestamps load without lazy IO.
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    for row in rows:
        await session.refresh(row)


async def _ensure_email_available(session: AsyncSession, email: str) -> str:
    normalized = email.strip().lower()
    if not normalized or "@" not in normalized:
        raise InvalidRequestError("A valid email is required")
    if await directory_repo.get_user_by_email(session, normalized) is not None:
        raise ConflictError("User with this email already exists")
    return normalized


async def get_user(session: AsyncSession, user_id: str) -> User:
    user = await directory_repo.get_user(session, user_id)
    if user is None:
        raise NotFoundError(f"User with ID {user_id} not found")
    return user


async def list_users(session: AsyncSession, *, tenant_id: str | None = None) -> list[User]:
    return await directory_repo.list_users(session, tenant_id=tenant_id)


async def create_user(
    session: AsyncSession,
    *,
    email: str,
    role: str,
    tenant_id: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    is_active: bool = True,
) -> User:
    """Provision a system admin or a tenant member.

    Tenant owners are created together with their tenant by ``create_tenant`` so
    every tenant has exactly one owner bound to it.
    """
    try:
        normalized_role = normalize_role(role)
    except ValueError as exc:
        raise InvalidRequestError(str(exc)) from exc
    if normalized_role == ROLE_TENANT_OWNER:
        raise InvalidActorError("Tenant owners are provisioned together with their tenant")
    validate_role_tenant(normalized_role, tenant_id)
    if tenant_id is not None and await directory_repo.get_tenant(session, tenant_id) is None:
        raise NotFoundError("Tenant not found")
    normalized_email = await _ensure_email_available(session, email)

    user = User(
        id=uuid4().hex,
        email=normalized_email,
        first_name=first_name,
        last_name=last_name,
        role=normalized_role,
        tenant_id=tenant_id,
        is_active=is_active,
    )
    session.add(user)
    await _commit(session, user)
    logger.info("directory_user_created user_id=%s role=%s tenant_id=%s", user.id, user.role, tenant_id)
    return user


async def set_user_active(session: AsyncSession, *, user_id: str, is_active: bool) -> User:
    # Actors are never hard-deleted; deactivation makes every engine check deny.
    user = await get_user(session, user_id)
    user.is_active = is_active
    await _commit(session, user)
    logger.info("directory_user_active user_id=%s is_active=%s", user.id, is_active)
    return user


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant:
    tenant = await directory_repo.get_tenant(session, tenant_id)
    if tenant is None:
        raise NotFoundError(f"Tenant with ID {tenant_id} not found")
    return tenant


async def list_tenants(session: AsyncSession) -> list[Tenant]:
    return await directory_repo.list_tenants(session)


async def create_tenant(
    session: AsyncSession,
    *,
    name: str,
    owner_email: str,
    owner_first_name: str | None = None,
    owner_last_name: str | None = None,
) -> tuple[Tenant, User]:
    # Create the tenant and its owner in one transaction so neither exists without the other.
    if not name.strip():
        raise InvalidRequestError("Tenant name is required")
    normalized_email = await _ensure_email_available(session, owner_email)
    tenant_id = uuid4().hex
    owner_id = uuid4().hex
    tenant = Tenant(id=tenant_id, name=name.strip(), owner_id=owner_id, is_active=True)
    session.add(tenant)
    # Flush the tenant before the owner so the users.tenant_id FK resolves.
    await session.flush()
    owner = User(
        id=owner_id,
        email=normalized_email,
        first_name=owner_first_name,
        last_name=owner_last_name,
        role=ROLE_TENANT_OWNER,
        tenant_id=tenant_id,
        is_active=True,
    )
    session.add(owner)
    await _commit(session, tenant, owner)
    logger.info("directory_tenant_created tenant_id=%s owner_id=%s", tenant.id, owner.id)
    return tenant, owner


async def deactivate_tenant(session: AsyncSession, *, tenant_id: str) -> Tenant:
    # Deactivated tenants keep their rows; owners and members are denied every module.
    tenant = await get_tenant(session, tenant_id)
    tenant.is_active = False
    await _commit(session, tenant)
    logger.info("directory_tenant_deactivated tenant_id=%s", tenant.id)
    return tenant


async def get_module(session: AsyncSession, module_id: str) -> Module:
    module = await directory_repo.get_module(session, module_id)
    if module is None:
        raise NotFoundError(f"Module with ID {module_id} not found")
    return module


async def list_modules(session: AsyncSession) -> list[Module]:
    return await directory_repo.list_modules(session)


async def create_module(
    session: AsyncSession,
    *,
    name: str,
    slug: str,
    description: str | None = None,
    is_active: bool = True,
) -> Module:
    try:
        normalized_slug = validate_module_slug(slug)
    except ValueError as exc:
        raise InvalidRequestError(str(exc)) from exc
    if await directory_repo.get_module_by_slug(session, normalized_slug) is not None:
        raise ConflictError("Module with this slug already exists")
    module = Module(
        id=uuid4().hex,
        name=name,
        slug=normalized_slug,
        description=description,
        is_active=is_active,
    )
    session.add(module)
    await _commit(session, module)
    logger.info("directory_module_created module_id=%s slug=%s", module.id, module.slug)
    return module


async def update_module(
    session: AsyncSession,
    *,
    module_id: str,
    name: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> Module:
    # The slug is the policy identity key and is deliberately not updatable.
    module = await get_module(session, module_id)
    if name is not None:
        module.name = name
    if description is not None:
        module.description = description
    if is_active is not None:
        module.is_active = is_active
    await _commit(session, module)
    logger.info("directory_module_updated module_id=%s is_active=%s", module.id, module.is_active)
    return module


async def list_tenant_modules(
    session: AsyncSession,
    *,
    tenant_id: str,
) -> list[tuple[TenantModuleGrant, Module]]:
    tenant = await get_tenant(session, tenant_id)
    return await directory_repo.list_tenant_grants(session, tenant_id=tenant.id)


async def grant_module_to_tenant(
    session: AsyncSession,
    *,
    tenant_id: str,
    module_id: str,
    actor_id: str | None = None,
    actor_role: str | None = None,
) -> TenantModuleGrant:
    tenant = await get_tenant(session, tenant_id)
    module = await get_module(session, module_id)
    grant = await directory_repo.upsert_tenant_grant(
        session, tenant_id=tenant.id, module_id=module.id, enabled=True
    )
    await record_event(
        session=session,
        tenant_id=tenant.id,
        actor_type="user",
        actor_id=actor_id,
        actor_role=actor_role,
        event_type="authz.grant.tenant",
        outcome="success",
        resource_type="module",
        resource_id=module.id,
        metadata={"module_slug": module.slug},
        best_effort=False,
    )
    await _commit(session, grant)
    logger.info("authz_grant level=tenant tenant_id=%s module=%s", tenant.id, module.slug)
    return grant


async def revoke_module_from_tenant(
    session: AsyncSession,
    *,
    tenant_id: str,
    module_id: str,
    actor_id: str | None = None,
    actor_role: str | None = None,
) -> TenantModuleGrant:
    # Unlike the actor-targeted revoke, the id-addressed admin revoke reports a missing grant.
    tenant = await get_tenant(session, tenant_id)
    module = await get_module(session, module_id)
    existing = await directory_repo.get_tenant_grant(session, tenant_id=tenant.id, module_id=module.id)
    if existing is None:
        raise NotFoundError("Module access not found")
    grant = await directory_repo.disable_tenant_grant(session, tenant_id=tenant.id, module_id=module.id)
    await record_event(
        session=session,
        tenant_id=tenant.id,
        actor_type="user",
        actor_id=actor_id,
        actor_role=actor_role,
        event_type="authz.revoke.tenant",
        outcome="success",
        resource_type="module",
        resource_id=module.id,
        metadata={"module_slug": module.slug},
        best_effort=False,
    )
    await _commit(session, grant)
    logger.info("authz_revoke level=tenant tenant_id=%s module=%s", tenant.id, module.slug)
    return grant
