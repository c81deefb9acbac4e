from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from modulehub.core.errors import InvalidActorError
from modulehub.domain.models import User


ROLE_SYSTEM_ADMIN = "system_admin"
ROLE_TENANT_OWNER = "tenant_owner"
ROLE_TENANT_MEMBER = "tenant_member"

ROLES = (ROLE_SYSTEM_ADMIN, ROLE_TENANT_OWNER, ROLE_TENANT_MEMBER)
TENANT_ROLES = (ROLE_TENANT_OWNER, ROLE_TENANT_MEMBER)


def normalize_role(role: str) -> str:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    normalized = role.strip().lower()
    if normalized not in ROLES:
        raise ValueError(f"Unsupported role: {role}")
    return normalized


@dataclass(frozen=True)
class SystemAdmin:
    actor_id: str


@dataclass(frozen=True)
class TenantOwner:
    actor_id: str
    tenant_id: str


@dataclass(frozen=True)
class TenantMember:
    actor_id: str
    tenant_id: str


ActorScope = Union[SystemAdmin, TenantOwner, TenantMember]


def validate_role_tenant(role: str, tenant_id: str | None) -> None:
    """Check the directory invariant tying roles to tenant membership.

    Owners and members must reference a tenant; system admins never do.
    """
    if role == ROLE_SYSTEM_ADMIN and tenant_id is not None:
        raise InvalidActorError("system_admin actors cannot belong to a tenant")
    if role in TENANT_ROLES and not tenant_id:
        raise InvalidActorError(f"{role} actors require a tenant_id")


def scope_from_parts(actor_id: str, role: str, tenant_id: str | None) -> ActorScope | None:
    """Build the tagged scope for an actor, or None when the row is not a valid principal.

    Unknown roles and role/tenant invariant violations resolve to None so that
    callers fall through to their default-deny arm instead of raising.
    """
    try:
        validate_role_tenant(role, tenant_id)
    except InvalidActorError:
        return None
    match role:
        case "system_admin":
            return SystemAdmin(actor_id=actor_id)
        case "tenant_owner":
            return TenantOwner(actor_id=actor_id, tenant_id=tenant_id)
        case "tenant_member":
            return TenantMember(actor_id=actor_id, tenant_id=tenant_id)
        case _:
            return None


def resolve_scope(user: User | None) -> ActorScope | None:
    # Inactive actors are treated exactly like unknown ones.
    if user is None or not user.is_active:
        return None
    return scope_from_parts(user.id, user.role, user.tenant_id)
