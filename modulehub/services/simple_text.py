from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import ForbiddenError, InvalidRequestError, NotFoundError
from modulehub.domain.models import SimpleText
from modulehub.persistence.repos import simple_text as simple_text_repo
from modulehub.services.authz.gate import ensure_business_data_access


logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 10_000


def _validate_content(content: str) -> str:
    stripped = content.strip()
    if not stripped:
        raise InvalidRequestError("Content must not be empty")
    if len(stripped) > MAX_CONTENT_LENGTH:
        raise InvalidRequestError(f"Content exceeds {MAX_CONTENT_LENGTH} characters")
    return stripped


async def _commit(session: AsyncSession, *rows: object) -> None:
    # Refresh rows after commit so server-side timestamps load without lazy IO.
    try:
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        raise
    for row in rows:
        await session.refresh(row)


async def list_texts(session: AsyncSession, *, role: str, tenant_id: str | None) -> list[SimpleText]:
    ensure_business_data_access(role=role)
    if not tenant_id:
        return []
    return await simple_text_repo.list_texts(session, tenant_id)


async def get_text(
    session: AsyncSession,
    *,
    role: str,
    tenant_id: str | None,
    text_id: str,
) -> SimpleText:
    ensure_business_data_access(role=role)
    row = await simple_text_repo.get_text(session, tenant_id, text_id) if tenant_id else None
    if row is None:
        raise NotFoundError(f"SimpleText with ID {text_id} not found")
    return row


async def create_text(
    session: AsyncSession,
    *,
    role: str,
    tenant_id: str | None,
    actor_id: str,
    content: str,
) -> SimpleText:
    ensure_business_data_access(role=role)
    if not tenant_id:
        raise ForbiddenError("User is not associated with a tenant")
    row = await simple_text_repo.create_text(
        session,
        tenant_id=tenant_id,
        created_by=actor_id,
        content=_validate_content(content),
    )
    await _commit(session, row)
    logger.info("simple_text_created tenant_id=%s text_id=%s", tenant_id, row.id)
    return row


async def update_text(
    session: AsyncSession,
    *,
    role: str,
    tenant_id: str | None,
    text_id: str,
    content: str,
) -> SimpleText:
    row = await get_text(session, role=role, tenant_id=tenant_id, text_id=text_id)
    row.content = _validate_content(content)
    await _commit(session, row)
    return row


async def delete_text(
    session: AsyncSession,
    *,
    role: str,
    tenant_id: str | None,
    text_id: str,
) -> None:
    row = await get_text(session, role=role, tenant_id=tenant_id, text_id=text_id)
    await simple_text_repo.delete_text(session, row.tenant_id, row.id)
    await _commit(session)
    logger.info("simple_text_deleted tenant_id=%s text_id=%s", row.tenant_id, row.id)
