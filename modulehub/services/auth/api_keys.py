from __future__ import annotations

from datetime import datetime
import hashlib
import secrets
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from modulehub.core.errors import NotFoundError
from modulehub.domain.models import ApiKey
from modulehub.persistence.repos import directory as directory_repo
from modulehub.services.audit import record_event


API_KEY_PREFIX = "mhk"


def hash_api_key(raw_key: str) -> str:
    # Use SHA-256 for deterministic, non-reversible key storage.
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key(*, key_id: str | None = None) -> tuple[str, str, str, str]:
    # Embed the key id in the token so operators can trace secrets safely.
    resolved_id = key_id or uuid4().hex
    secret = secrets.token_urlsafe(32)
    raw_key = f"{API_KEY_PREFIX}_{resolved_id}_{secret}"
    key_prefix = raw_key[:12]
    return resolved_id, raw_key, key_prefix, hash_api_key(raw_key)


async def issue_api_key(
    session: AsyncSession,
    *,
    user_id: str,
    name: str | None = None,
    expires_at: datetime | None = None,
    actor_id: str = "system",
) -> tuple[ApiKey, str]:
    """Persist a new key for an existing user and return it with the raw secret.

    The raw secret is never stored; callers must hand it to the user now.
    """
    user = await directory_repo.get_user(session, user_id)
    if user is None:
        raise NotFoundError(f"User with ID {user_id} not found")
    key_id, raw_key, key_prefix, key_hash = generate_api_key()
    api_key = ApiKey(
        id=key_id,
        user_id=user.id,
        key_prefix=key_prefix,
        key_hash=key_hash,
        name=name,
        expires_at=expires_at,
    )
    session.add(api_key)
    await record_event(
        session=session,
        tenant_id=user.tenant_id,
        actor_type="system",
        actor_id=actor_id,
        actor_role=user.role,
        event_type="auth.api_key.created",
        outcome="success",
        resource_type="api_key",
        resource_id=key_id,
        metadata={"user_id": user.id, "key_prefix": key_prefix, "key_name": name},
        best_effort=False,
    )
    await session.commit()
    return api_key, raw_key
