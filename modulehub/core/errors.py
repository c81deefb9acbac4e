from __future__ import annotations


class ModuleHubError(Exception):
    """Base error for modulehub."""


class NotFoundError(ModuleHubError):
    """Referenced actor, tenant, module or record does not resolve."""


class ForbiddenError(ModuleHubError):
    """Caller lacks the role or tenant relationship required for the operation."""


class ConflictError(ModuleHubError):
    """Write would violate a uniqueness constraint (email, module slug)."""


class InvalidActorError(ModuleHubError):
    """Actor role/tenant combination violates the directory invariants."""


class InvalidRequestError(ModuleHubError):
    """Malformed input such as an invalid permission token or module slug."""


class ModuleAccessDeniedError(ForbiddenError):
    """Actor cannot reach the requested module."""


class PermissionDeniedError(ForbiddenError):
    """Actor can reach the module but lacks the requested permission token."""


class BusinessDataAccessError(ForbiddenError):
    """System administrators never read or write tenant business data."""
