"""
Tenant and Document Kind Administration

Tenants are created and edited by SUPER_ADMIN only and are never deleted,
only disabled. Document kinds are managed by SUPER_ADMIN or by the
TENANT_ADMIN of the owning tenant; analysts may read them.

Status writes are idempotent: writing the current status again succeeds
without producing an audit entry.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from database.models import (
    AuditAction,
    DocumentKind,
    DocumentKindName,
    DocumentKindStatus,
    Role,
    Tenant,
    TenantStatus,
)
from database.query_plan import ASCENDING, parse_enum, parse_uuid
from database.repositories import (
    AuditRepository,
    DocumentKindRepository,
    DuplicateEntityError,
    TenantRepository,
)
from database.scope import (
    Analyst,
    Principal,
    SELF_FIELD,
    SuperAdmin,
    TenantAdmin,
    can_access_tenant,
    require_role,
    resolve_scope,
)
from errors import DuplicateError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def tenant_to_dict(tenant: Tenant) -> Dict[str, Any]:
    return {
        "id": str(tenant.id),
        "name": tenant.name,
        "country": tenant.country,
        "status": tenant.status.value,
        "createdAt": tenant.created_at.isoformat() if tenant.created_at else None,
    }


def document_kind_to_dict(kind: DocumentKind) -> Dict[str, Any]:
    return {
        "id": str(kind.id),
        "tenantId": str(kind.tenant_id),
        "name": kind.name.value,
        "version": kind.version,
        "status": kind.status.value,
        "createdAt": kind.created_at.isoformat() if kind.created_at else None,
    }


def _required_text(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Missing {key}", field=key)
    return value.strip()


def _optional_text(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field=key)
    return value.strip() or None


class TenantService:
    """Tenant and document kind administration bound to one session."""

    def __init__(self, session: Session):
        self.session = session
        self._tenants = TenantRepository(session)
        self._kinds = DocumentKindRepository(session)
        self._audit = AuditRepository(session)

    # ============================================
    # TENANTS
    # ============================================

    def list_tenants(self, principal: Principal) -> List[Tenant]:
        """
        SUPER_ADMIN sees every tenant sorted by name; TENANT_ADMIN sees only
        its own tenant. Everyone else is refused.
        """
        if isinstance(principal, SuperAdmin):
            return self._tenants.find({}, sort=[("name", ASCENDING)])
        if isinstance(principal, TenantAdmin):
            scope = resolve_scope(principal, {}, SELF_FIELD)
            return self._tenants.find(scope, sort=[("name", ASCENDING)])
        raise ForbiddenError("Forbidden")

    def get_tenant(self, principal: Principal, tenant_id: Union[uuid.UUID, str]) -> Tenant:
        """Scoped lookup. Out-of-scope tenants are reported as NotFound."""
        tenant = self._tenants.get_by_id(tenant_id)
        if tenant is None or not can_access_tenant(principal, tenant.id):
            raise NotFoundError("Tenant not found")
        return tenant

    def create_tenant(self, principal: Principal, data: Mapping[str, Any]) -> Tenant:
        """
        Create a tenant (SUPER_ADMIN only).

        Raises:
            ValidationError: Missing name or invalid status
            DuplicateError: A tenant with that name exists
        """
        require_role(principal)
        name = _required_text(data, "name")
        status = parse_enum("status", data["status"], TenantStatus) if data.get("status") else TenantStatus.ACTIVE

        if self._tenants.get_by_name(name) is not None:
            raise DuplicateError("Tenant with that name already exists", field="name")

        try:
            tenant = self._tenants.insert(Tenant(
                name=name,
                country=_optional_text(data, "country"),
                status=status
            ))
        except DuplicateEntityError:
            raise DuplicateError("Tenant with that name already exists", field="name")

        self._audit.log(
            action=AuditAction.CREATE,
            resource_type="tenant",
            resource_id=tenant.id,
            actor_id=principal.user_id,
            new_value={"name": tenant.name, "status": tenant.status.value}
        )
        logger.info(f"Tenant created: {tenant.id}")
        return tenant

    def update_tenant(self, principal: Principal, tenant_id: Union[uuid.UUID, str], patch: Mapping[str, Any]) -> Tenant:
        """
        Partially update name, country and status (SUPER_ADMIN only).

        Raises:
            NotFoundError: Tenant does not exist
            DuplicateError: New name is taken by another tenant
        """
        require_role(principal)
        tenant = self._tenants.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        updates: Dict[str, Any] = {}
        if "name" in patch:
            updates["name"] = _required_text(patch, "name")
            other = self._tenants.get_by_name(updates["name"])
            if other is not None and other.id != tenant.id:
                raise DuplicateError("Tenant with that name already exists", field="name")
        if "country" in patch:
            updates["country"] = _optional_text(patch, "country")
        if "status" in patch:
            updates["status"] = parse_enum("status", patch["status"], TenantStatus)

        return self._apply(principal, "tenant", self._tenants, tenant, updates)

    def set_tenant_status(
        self,
        principal: Principal,
        tenant_id: Union[uuid.UUID, str],
        status: Optional[Union[TenantStatus, str]]
    ) -> Tenant:
        """Set a tenant's status (SUPER_ADMIN only). Idempotent."""
        require_role(principal)
        if not status:
            raise ValidationError("Missing status", field="status")
        new_status = parse_enum("status", status, TenantStatus)

        tenant = self._tenants.get_by_id(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found")

        return self._apply(principal, "tenant", self._tenants, tenant, {"status": new_status})

    # ============================================
    # DOCUMENT KINDS
    # ============================================

    def _check_manage(self, principal: Principal, tenant_id: uuid.UUID) -> None:
        if not can_access_tenant(principal, tenant_id):
            raise ForbiddenError("Forbidden")

    def list_document_kinds(self, principal: Principal, tenant_id: Union[uuid.UUID, str]) -> List[DocumentKind]:
        """
        Document kinds of one tenant, sorted by name.

        Allowed for SUPER_ADMIN, the owning TENANT_ADMIN, and analysts.
        """
        tenant_uuid = parse_uuid("tenantId", tenant_id)
        if not isinstance(principal, Analyst):
            self._check_manage(principal, tenant_uuid)
        return self._kinds.find({"tenant_id": tenant_uuid}, sort=[("name", ASCENDING)])

    def create_document_kind(
        self,
        principal: Principal,
        tenant_id: Union[uuid.UUID, str],
        data: Mapping[str, Any]
    ) -> DocumentKind:
        """Register a document kind for a tenant. (tenant, name) is not unique."""
        tenant_uuid = parse_uuid("tenantId", tenant_id)
        self._check_manage(principal, tenant_uuid)

        if not data.get("name"):
            raise ValidationError("Missing name", field="name")
        name = parse_enum("name", data["name"], DocumentKindName)
        status = parse_enum("status", data["status"], DocumentKindStatus) if data.get("status") else DocumentKindStatus.ACTIVE

        kind = self._kinds.insert(DocumentKind(
            tenant_id=tenant_uuid,
            name=name,
            version=_optional_text(data, "version"),
            status=status
        ))

        self._audit.log(
            action=AuditAction.CREATE,
            resource_type="document_kind",
            resource_id=kind.id,
            actor_id=principal.user_id,
            new_value={"tenantId": str(tenant_uuid), "name": kind.name.value}
        )
        return kind

    def _get_kind_for_manage(self, principal: Principal, kind_id: Union[uuid.UUID, str]) -> DocumentKind:
        kind = self._kinds.get_by_id(kind_id)
        if kind is None:
            raise NotFoundError("DocumentKind not found")
        self._check_manage(principal, kind.tenant_id)
        return kind

    def update_document_kind(
        self,
        principal: Principal,
        kind_id: Union[uuid.UUID, str],
        patch: Mapping[str, Any]
    ) -> DocumentKind:
        """Partially update name, version and status."""
        kind = self._get_kind_for_manage(principal, kind_id)

        updates: Dict[str, Any] = {}
        if "name" in patch:
            updates["name"] = parse_enum("name", patch["name"], DocumentKindName)
        if "version" in patch:
            updates["version"] = _optional_text(patch, "version")
        if "status" in patch:
            updates["status"] = parse_enum("status", patch["status"], DocumentKindStatus)

        return self._apply(principal, "document_kind", self._kinds, kind, updates)

    def set_document_kind_status(
        self,
        principal: Principal,
        kind_id: Union[uuid.UUID, str],
        status: Optional[Union[DocumentKindStatus, str]]
    ) -> DocumentKind:
        """Enable or disable a document kind. Idempotent."""
        if not status:
            raise ValidationError("Missing status", field="status")
        new_status = parse_enum("status", status, DocumentKindStatus)
        kind = self._get_kind_for_manage(principal, kind_id)
        return self._apply(principal, "document_kind", self._kinds, kind, {"status": new_status})

    # ============================================
    # SHARED
    # ============================================

    def _apply(self, principal: Principal, resource_type: str, repo, record, updates: Dict[str, Any]):
        """Write only the fields that change; audit only when something did."""
        changed = {key: value for key, value in updates.items() if getattr(record, key) != value}
        if not changed:
            return record

        old_value = {key: _plain(getattr(record, key)) for key in changed}
        try:
            record = repo.update_by_id(record.id, changed)
        except DuplicateEntityError:
            raise DuplicateError(f"{resource_type} conflicts with an existing record")

        self._audit.log(
            action=AuditAction.STATUS_CHANGE if set(changed) == {"status"} else AuditAction.UPDATE,
            resource_type=resource_type,
            resource_id=record.id,
            actor_id=principal.user_id,
            old_value=old_value,
            new_value={key: _plain(value) for key, value in changed.items()}
        )
        return record


def _plain(value: Any) -> Any:
    if hasattr(value, "value"):
        return value.value
    return value
