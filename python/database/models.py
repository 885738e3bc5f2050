"""
SQLAlchemy ORM Models for the Authentiqa Fraud Review Service

Schema notes:
- UUID primary keys for distributed ingestion
- Timestamps on every record (created_at, updated_at where mutable)
- Scan events are append-only; nothing updates or deletes them
- References from scan events and fraud cases are soft (no FK constraints),
  mirroring the document store the dashboard was designed against
- JSON columns use JSONB on PostgreSQL and plain JSON elsewhere (SQLite tests)

Tables:
1. tenants - Organisations owning document kinds and scan events
2. users - Dashboard accounts (role + optional tenant)
3. document_kinds - Document types a tenant issues (Transcript, Diploma, ...)
4. scan_events - Immutable authenticity check results from devices
5. fraud_cases - Human review records for suspicious/forged scans
6. audit_logs - Trail of administrative and case mutations
"""

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Float, DateTime, Text, Index, CheckConstraint,
    Enum, JSON, Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, Mapped, mapped_column

# Base class for all models
Base = declarative_base()

# JSON on SQLite, JSONB on PostgreSQL
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class Role(str, PyEnum):
    """Dashboard user role"""
    SUPER_ADMIN = "SUPER_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    ANALYST = "ANALYST"


class TenantStatus(str, PyEnum):
    """Lifecycle status of a tenant"""
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    DISABLED = "DISABLED"


class DocumentKindName(str, PyEnum):
    """Closed set of document kinds a tenant can register"""
    TRANSCRIPT = "Transcript"
    DIPLOMA = "Diploma"
    ATTESTATION = "Attestation"


class DocumentKindStatus(str, PyEnum):
    """Whether a document kind is accepted for scanning"""
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class SourceApp(str, PyEnum):
    """Client application that produced a scan"""
    IOS = "ios"
    ANDROID = "android"


class ResultLabel(str, PyEnum):
    """Verdict of the on-device authenticity check"""
    AUTHENTIC = "AUTHENTIC"
    SUSPICIOUS = "SUSPICIOUS"
    FORGED = "FORGED"


class CaseStatus(str, PyEnum):
    """Fraud case status. Any value may be written directly."""
    OPEN = "OPEN"
    IN_REVIEW = "IN_REVIEW"
    CONFIRMED_FRAUD = "CONFIRMED_FRAUD"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    CLOSED = "CLOSED"


class AuditAction(str, PyEnum):
    """Type of audit action"""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    STATUS_CHANGE = "STATUS_CHANGE"
    LOGIN = "LOGIN"


# ============================================
# MIXIN CLASSES
# ============================================

class CreatedAtMixin:
    """Mixin for an application-set creation timestamp"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )


class TimestampMixin(CreatedAtMixin):
    """Mixin for created_at and updated_at timestamps"""
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )


# ============================================
# TENANCY
# ============================================

class Tenant(Base, CreatedAtMixin):
    """
    An organisation whose documents are verified by the mobile apps.

    The unit of data isolation: every scan event and document kind belongs
    to exactly one tenant. Tenants are never deleted, only disabled.
    """
    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(300), nullable=False, unique=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[TenantStatus] = mapped_column(
        Enum(TenantStatus, name="tenant_status"),
        default=TenantStatus.ACTIVE,
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, name='{self.name}', status={self.status})>"


class User(Base, TimestampMixin):
    """Dashboard account. TENANT_ADMIN and ANALYST users carry a tenant_id."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[Role] = mapped_column(
        Enum(Role, name="user_role"),
        default=Role.ANALYST,
        nullable=False
    )
    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role={self.role})>"


class DocumentKind(Base, CreatedAtMixin):
    """
    A document type issued by a tenant.

    (tenant_id, name) is unique in practice but deliberately not enforced.
    """
    __tablename__ = "document_kinds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    name: Mapped[DocumentKindName] = mapped_column(
        Enum(DocumentKindName, name="document_kind_name", values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    version: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    status: Mapped[DocumentKindStatus] = mapped_column(
        Enum(DocumentKindStatus, name="document_kind_status"),
        default=DocumentKindStatus.ACTIVE,
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<DocumentKind(id={self.id}, tenant_id={self.tenant_id}, name={self.name})>"


# ============================================
# SCAN EVENTS
# ============================================

class ScanEvent(Base, CreatedAtMixin):
    """
    One document-authenticity check performed by a client device.

    The primary fact table: every aggregation and every fraud case derives
    from it. Rows are written once by ingestion and never modified.
    """
    __tablename__ = "scan_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    tenant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    document_kind_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    source_app: Mapped[SourceApp] = mapped_column(
        Enum(SourceApp, name="source_app", values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    content_hash: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    result_label: Mapped[ResultLabel] = mapped_column(
        Enum(ResultLabel, name="result_label"),
        nullable=False,
        index=True
    )
    confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    risk_score: Mapped[float] = mapped_column(Float, default=0, nullable=False, index=True)
    reasons: Mapped[List[str]] = mapped_column(JSONType, default=list, nullable=False)
    suspicious_regions_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    extracted_fields: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    geo_country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    geo_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    device_language: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        CheckConstraint('confidence IS NULL OR (confidence >= 0 AND confidence <= 1)', name='ck_scan_confidence'),
        CheckConstraint('risk_score >= 0 AND risk_score <= 100', name='ck_scan_risk_score'),
        CheckConstraint('suspicious_regions_count >= 0', name='ck_scan_regions'),
        # Listing and analytics always filter by tenant, usually ordered by time
        Index('ix_scan_tenant_created', 'tenant_id', 'created_at'),
        Index('ix_scan_geo', 'geo_country', 'geo_city'),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenantId": str(self.tenant_id),
            "documentKindId": str(self.document_kind_id),
            "sourceApp": self.source_app.value,
            "contentHash": self.content_hash,
            "resultLabel": self.result_label.value,
            "confidence": self.confidence,
            "riskScore": self.risk_score,
            "reasons": list(self.reasons or []),
            "suspiciousRegionsCount": self.suspicious_regions_count,
            "extractedFields": dict(self.extracted_fields or {}),
            "geoCountry": self.geo_country,
            "geoCity": self.geo_city,
            "deviceLanguage": self.device_language,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ScanEvent(id={self.id}, tenant_id={self.tenant_id}, label={self.result_label})>"


# ============================================
# FRAUD CASES
# ============================================

class FraudCase(Base, TimestampMixin):
    """
    Investigation record for a suspicious or forged scan.

    The owning tenant is not stored: it is always re-derived from the
    referenced scan event.
    """
    __tablename__ = "fraud_cases"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    scan_event_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    status: Mapped[CaseStatus] = mapped_column(
        Enum(CaseStatus, name="case_status"),
        default=CaseStatus.OPEN,
        nullable=False,
        index=True
    )
    assigned_to_user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True, index=True)
    notes: Mapped[str] = mapped_column(Text, default="", nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "scanEventId": str(self.scan_event_id),
            "status": self.status.value,
            "assignedToUserId": str(self.assigned_to_user_id) if self.assigned_to_user_id else None,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<FraudCase(id={self.id}, scan_event_id={self.scan_event_id}, status={self.status})>"


# ============================================
# AUDIT
# ============================================

class AuditLog(Base):
    """
    Audit trail for case and tenant administration.

    Only written when a stored value actually changes.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True
    )
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction, name="audit_action"), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    old_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        Index('ix_audit_resource', 'resource_type', 'resource_id'),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "action": self.action.value,
            "resourceType": self.resource_type,
            "resourceId": self.resource_id,
            "actorId": self.actor_id,
            "details": self.details,
            "oldValue": self.old_value,
            "newValue": self.new_value,
        }

    def __repr__(self) -> str:
        return f"<AuditLog(action={self.action}, resource={self.resource_type}:{self.resource_id})>"
