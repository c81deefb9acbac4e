from __future__ import annotations

from uuid import uuid4

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.domain.models import SimpleText
from modulehub.persistence.guards import require_tenant_id, tenant_predicate


async def list_texts(session: AsyncSession, tenant_id: str) -> list[SimpleText]:
    # Tenant scoping prevents cross-tenant leakage.
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SimpleText)
        .where(tenant_predicate(SimpleText, tenant_id))
        .order_by(SimpleText.created_at.desc(), SimpleText.id)
    )
    return list(result.scalars().all())


async def get_text(session: AsyncSession, tenant_id: str, text_id: str) -> SimpleText | None:
    # Return None for tenant mismatch to keep 404 semantics.
    require_tenant_id(tenant_id)
    result = await session.execute(
        select(SimpleText).where(SimpleText.id == text_id, tenant_predicate(SimpleText, tenant_id))
    )
    return result.scalar_one_or_none()


async def create_text(
    session: AsyncSession,
    *,
    tenant_id: str,
    created_by: str,
    content: str,
) -> SimpleText:
    require_tenant_id(tenant_id)
    row = SimpleText(
        id=uuid4().hex,
        tenant_id=tenant_id,
        created_by=created_by,
        content=content,
    )
    session.add(row)
    return row


async def delete_text(session: AsyncSession, tenant_id: str, text_id: str) -> bool:
    require_tenant_id(tenant_id)
    result = await session.execute(
        delete(SimpleText)
        .where(SimpleText.id == text_id, tenant_predicate(SimpleText, tenant_id))
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)
