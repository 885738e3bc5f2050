"""
Fraud Case Lifecycle

Creates, updates, reads and lists fraud cases. A case stores no tenant of its
own: ownership is re-derived from the referenced scan event on every
mutation, so a case can never drift out of its tenant.

Status writes are free-form. Any CaseStatus may be written by an authorized
actor regardless of the current status, and concurrent updates resolve as
last write wins.

Usage:
    service = CaseService(session)
    case = service.create_case(principal, scan_event_id)
    case = service.update_case(principal, case.id, {"status": "IN_REVIEW"})
"""

import logging
import uuid
from typing import Any, Dict, Mapping, Optional, Union

from sqlalchemy.orm import Session

from database.models import AuditAction, CaseStatus, FraudCase, Role
from database.monitoring import record_case_status
from database.query_plan import CASE_MAX_PAGE_SIZE, build_case_plan, parse_enum, parse_uuid
from database.repositories import AuditRepository, FraudCaseRepository, ScanEventRepository
from database.scope import Principal, can_access_tenant, require_role, resolve_scope
from errors import DataIntegrityError, ForbiddenError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

RESOURCE = "fraud_case"

# Patch key -> model attribute
PATCHABLE_FIELDS = {
    "status": "status",
    "assignedToUserId": "assigned_to_user_id",
    "notes": "notes",
}


def _parse_assignee(value: Any) -> Optional[uuid.UUID]:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return parse_uuid("assignedToUserId", value)


def _parse_notes(value: Any) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("notes must be a string", field="notes")
    return value


def _audit_value(value: Any) -> Any:
    if isinstance(value, CaseStatus):
        return value.value
    if isinstance(value, uuid.UUID):
        return str(value)
    return value


class CaseService:
    """Fraud case lifecycle manager bound to one session."""

    def __init__(self, session: Session):
        self.session = session
        self._cases = FraudCaseRepository(session)
        self._events = ScanEventRepository(session)
        self._audit = AuditRepository(session)

    def _check_ownership(self, principal: Principal, tenant_id: uuid.UUID) -> None:
        if not can_access_tenant(principal, tenant_id):
            raise ForbiddenError("Forbidden")

    def create_case(
        self,
        principal: Principal,
        scan_event_id: Union[uuid.UUID, str],
        status: Optional[Union[CaseStatus, str]] = None,
        assigned_to_user_id: Optional[Union[uuid.UUID, str]] = None,
        notes: Optional[str] = None
    ) -> FraudCase:
        """
        Open a case for a scan event.

        Args:
            principal: Acting principal (SUPER_ADMIN or TENANT_ADMIN)
            scan_event_id: Event under investigation
            status: Initial status (default OPEN)
            assigned_to_user_id: Optional assignee
            notes: Optional notes (default "")

        Returns:
            The created FraudCase

        Raises:
            ForbiddenError: Role not allowed, or event outside the
                principal's tenant
            NotFoundError: Event does not exist
            ValidationError: Malformed id or status
        """
        require_role(principal, Role.TENANT_ADMIN)

        if scan_event_id is None or (isinstance(scan_event_id, str) and not scan_event_id.strip()):
            raise ValidationError("Missing scanEventId", field="scanEventId")
        event_id = parse_uuid("scanEventId", scan_event_id)

        event = self._events.get_by_id(event_id)
        if event is None:
            raise NotFoundError("ScanEvent not found", field="scanEventId")

        self._check_ownership(principal, event.tenant_id)

        case = self._cases.insert(FraudCase(
            scan_event_id=event.id,
            status=parse_enum("status", status, CaseStatus) if status else CaseStatus.OPEN,
            assigned_to_user_id=_parse_assignee(assigned_to_user_id),
            notes=_parse_notes(notes)
        ))

        self._audit.log(
            action=AuditAction.CREATE,
            resource_type=RESOURCE,
            resource_id=case.id,
            actor_id=principal.user_id,
            new_value={"scanEventId": str(event.id), "status": case.status.value}
        )
        record_case_status(case.status.value)
        logger.info(f"Fraud case {case.id} opened for scan event {event.id}")
        return case

    def update_case(
        self,
        principal: Principal,
        case_id: Union[uuid.UUID, str],
        patch: Mapping[str, Any]
    ) -> FraudCase:
        """
        Apply a partial update to a case.

        Only keys present in patch are written: status, assignedToUserId,
        notes. Other keys are ignored; scanEventId is immutable.

        Raises:
            ForbiddenError: Role not allowed, or the case's event belongs to
                another tenant
            NotFoundError: Case does not exist
            DataIntegrityError: The case references a scan event that no
                longer resolves
            ValidationError: Malformed patch values
        """
        require_role(principal, Role.TENANT_ADMIN)

        case = self._cases.get_by_id(case_id)
        if case is None:
            raise NotFoundError("FraudCase not found")

        event = self._events.get_by_id(case.scan_event_id)
        if event is None:
            logger.error(f"Fraud case {case.id} references missing scan event {case.scan_event_id}")
            raise DataIntegrityError("Related ScanEvent not found")

        self._check_ownership(principal, event.tenant_id)

        updates: Dict[str, Any] = {}
        if "status" in patch:
            if patch["status"] is None:
                raise ValidationError("status must not be null", field="status")
            updates["status"] = parse_enum("status", patch["status"], CaseStatus)
        if "assignedToUserId" in patch:
            updates["assigned_to_user_id"] = _parse_assignee(patch["assignedToUserId"])
        if "notes" in patch:
            updates["notes"] = _parse_notes(patch["notes"])

        changed = {
            attr: value for attr, value in updates.items()
            if getattr(case, attr) != value
        }
        if not changed:
            return case

        old_value = {key: _audit_value(getattr(case, attr)) for key, attr in PATCHABLE_FIELDS.items() if attr in changed}
        case = self._cases.update_by_id(case.id, changed)
        new_value = {key: _audit_value(getattr(case, attr)) for key, attr in PATCHABLE_FIELDS.items() if attr in changed}

        self._audit.log(
            action=AuditAction.STATUS_CHANGE if "status" in changed else AuditAction.UPDATE,
            resource_type=RESOURCE,
            resource_id=case.id,
            actor_id=principal.user_id,
            old_value=old_value,
            new_value=new_value
        )
        if "status" in changed:
            record_case_status(case.status.value)
        return case

    def get_case(self, principal: Principal, case_id: Union[uuid.UUID, str]) -> FraudCase:
        """
        Scoped lookup of a single case.

        A case outside the principal's scope is reported as NotFound, the
        same as a case that does not exist.
        """
        scope = resolve_scope(principal, {}, "tenant_id")
        case = self._cases.find_one_scoped(case_id, scope)
        if case is None:
            raise NotFoundError("FraudCase not found")
        return case

    def list_cases(
        self,
        principal: Principal,
        params: Mapping[str, Any],
        max_page_size: int = CASE_MAX_PAGE_SIZE
    ) -> Dict[str, Any]:
        """
        List cases within scope, newest first.

        The principal's tenant scope overrides any tenantId parameter.

        Returns:
            Envelope {items, total, page, pageSize}
        """
        plan = build_case_plan(params, max_page_size)
        plan.filter = resolve_scope(principal, plan.filter, "tenant_id")

        items, total = self._cases.find_page(plan)
        return {
            "items": [case.to_dict() for case in items],
            "total": total,
            "page": plan.page,
            "pageSize": plan.page_size,
        }
