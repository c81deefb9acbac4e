from __future__ import annotations

import logging
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import ConflictError, InvalidRequestError, NotFoundError
from modulehub.domain.actors import ROLE_TENANT_MEMBER
from modulehub.domain.models import Module, User, UserModulePermission
from modulehub.persistence.guards import require_tenant_id
from modulehub.persistence.repos import directory as directory_repo


logger = logging.getLogger(__name__)


async def _commit(session: AsyncSession, *rows: object) -> None:
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    for row in rows:
        await session.refresh(row)


async def list_employees(session: AsyncSession, *, tenant_id: str) -> list[User]:
    require_tenant_id(tenant_id)
    return await directory_repo.list_users(session, tenant_id=tenant_id, role=ROLE_TENANT_MEMBER)


async def get_employee(session: AsyncSession, *, tenant_id: str, employee_id: str) -> User:
    # Members of other tenants are indistinguishable from missing ones.
    require_tenant_id(tenant_id)
    user = await directory_repo.get_user(session, employee_id)
    if user is None or user.tenant_id != tenant_id or user.role != ROLE_TENANT_MEMBER:
        raise NotFoundError("Employee not found")
    return user


async def create_employee(
    session: AsyncSession,
    *,
    tenant_id: str,
    email: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> User:
    require_tenant_id(tenant_id)
    normalized_email = email.strip().lower()
    if not normalized_email or "@" not in normalized_email:
        raise InvalidRequestError("A valid email is required")
    if await directory_repo.get_user_by_email(session, normalized_email) is not None:
        raise ConflictError("User with this email already exists")
    employee = User(
        id=uuid4().hex,
        email=normalized_email,
        first_name=first_name,
        last_name=last_name,
        role=ROLE_TENANT_MEMBER,
        tenant_id=tenant_id,
        is_active=True,
    )
    session.add(employee)
    await _commit(session, employee)
    logger.info("company_employee_created tenant_id=%s user_id=%s", tenant_id, employee.id)
    return employee


async def deactivate_employee(session: AsyncSession, *, tenant_id: str, employee_id: str) -> User:
    employee = await get_employee(session, tenant_id=tenant_id, employee_id=employee_id)
    employee.is_active = False
    await _commit(session, employee)
    logger.info("company_employee_deactivated tenant_id=%s user_id=%s", tenant_id, employee.id)
    return employee


async def list_employee_modules(
    session: AsyncSession,
    *,
    tenant_id: str,
    employee_id: str,
) -> list[tuple[UserModulePermission, Module]]:
    employee = await get_employee(session, tenant_id=tenant_id, employee_id=employee_id)
    return await directory_repo.list_user_permissions(session, user_id=employee.id)
