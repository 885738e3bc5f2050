"""
Tenant Scope Resolution

Every query against tenant-owned data is narrowed to the caller's scope
before it reaches a repository. Scopes are expressed in the same dict filter
grammar the repositories compile (see database.repositories.FilterCompiler):

    {"tenant_id": <uuid>}          equality
    {"$nomatch": True}             impossible predicate, matches zero rows

Principals are a closed set of variants. resolve_scope handles each one
explicitly and denies anything it does not recognise, so a missing tenant
never degrades into unrestricted access.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from database.models import Role
from errors import ForbiddenError

Filter = Dict[str, Any]

# Field name meaning "the collection's own identity field is the tenant key"
SELF_FIELD = "_self"
TENANT_FIELD = "tenant_id"
NO_MATCH = "$nomatch"


@dataclass(frozen=True)
class SuperAdmin:
    """Unrestricted principal"""
    user_id: Optional[uuid.UUID] = None

    @property
    def role(self) -> Role:
        return Role.SUPER_ADMIN


@dataclass(frozen=True)
class TenantAdmin:
    """Administrator of a single tenant. Without a tenant it can see nothing."""
    tenant_id: Optional[uuid.UUID]
    user_id: Optional[uuid.UUID] = None

    @property
    def role(self) -> Role:
        return Role.TENANT_ADMIN


@dataclass(frozen=True)
class Analyst:
    """Read-only analyst. Receives no tenant data through scoped queries."""
    tenant_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None

    @property
    def role(self) -> Role:
        return Role.ANALYST


Principal = Union[SuperAdmin, TenantAdmin, Analyst]


def principal_from_user(user) -> Principal:
    """Build the principal variant for a User row (or any object with
    ``id``, ``role`` and ``tenant_id`` attributes)."""
    role = Role(user.role)
    if role is Role.SUPER_ADMIN:
        return SuperAdmin(user_id=user.id)
    if role is Role.TENANT_ADMIN:
        return TenantAdmin(tenant_id=user.tenant_id, user_id=user.id)
    if role is Role.ANALYST:
        return Analyst(tenant_id=user.tenant_id, user_id=user.id)
    raise ValueError(f"Unhandled role: {role}")


def deny_all(base_filter: Optional[Filter] = None) -> Filter:
    """Return base_filter conjoined with a predicate that matches nothing."""
    return {**(base_filter or {}), NO_MATCH: True}


def resolve_scope(
    principal: Principal,
    base_filter: Optional[Filter] = None,
    tenant_field: str = TENANT_FIELD,
) -> Filter:
    """
    Narrow a filter to the principal's tenant scope.

    Pure and deterministic: no I/O, identical inputs give identical output.

    Args:
        principal: Authenticated principal
        base_filter: Filter built from request parameters
        tenant_field: Field holding the owning tenant on the target
            collection, or SELF_FIELD when the collection is the tenant
            collection itself

    Returns:
        SuperAdmin: base_filter itself, unchanged.
        TenantAdmin with a tenant: a copy with the tenant field pinned to
            the principal's tenant (overriding any caller-supplied value).
        Everyone else: a filter that matches zero records.
    """
    if base_filter is None:
        base_filter = {}

    if isinstance(principal, SuperAdmin):
        return base_filter

    if isinstance(principal, TenantAdmin):
        if principal.tenant_id is None:
            return deny_all(base_filter)
        field = "id" if tenant_field == SELF_FIELD else tenant_field
        return {**base_filter, field: principal.tenant_id}

    # Analyst and any unknown variant
    return deny_all(base_filter)


def can_access_tenant(principal: Principal, tenant_id: Optional[uuid.UUID]) -> bool:
    """Whether the principal may act on data owned by tenant_id."""
    if isinstance(principal, SuperAdmin):
        return True
    if isinstance(principal, TenantAdmin):
        return principal.tenant_id is not None and principal.tenant_id == tenant_id
    return False


def require_role(principal: Principal, *roles: Role) -> None:
    """Raise ForbiddenError unless the principal holds one of roles.

    SUPER_ADMIN always passes.
    """
    if isinstance(principal, SuperAdmin):
        return
    if principal.role in roles:
        return
    raise ForbiddenError("Forbidden")
