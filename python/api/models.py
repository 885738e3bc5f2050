"""
Pydantic request/response schemas for the Authentiqa Review API

Wire format is camelCase. Request bodies are declared with snake_case
attributes and camelCase aliases; routes hand the service layer
``model_dump(by_alias=True, exclude_unset=True)`` so an omitted key and an
explicit null stay distinguishable in partial updates.

Type and range checks live here; enum membership and required-field checks
are repeated by the services so non-HTTP callers get the same guarantees.
The scan submission schema is the exception: it lives beside the ingestion
service, which validates raw payloads with the same model.
"""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CamelModel(BaseModel):
    """Base for bodies accepting either camelCase aliases or field names."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============================================
# AUTH
# ============================================

class LoginRequest(BaseModel):
    """Request schema for login."""
    email: Optional[str] = Field(default=None, max_length=320, description="Account email")
    password: Optional[str] = Field(default=None, max_length=200, description="Account password")


class UserResponse(BaseModel):
    """Authenticated user as returned by login and /me."""
    id: str
    name: str
    email: str
    role: str
    tenant_id: Optional[str] = Field(default=None, alias="tenantId")

    model_config = ConfigDict(populate_by_name=True)


class LoginResponse(BaseModel):
    """Response schema for login."""
    user: UserResponse
    token: str = Field(..., description="Bearer token for the Authorization header")


# ============================================
# TENANTS / DOCUMENT KINDS
# ============================================

class TenantCreate(CamelModel):
    """Request schema for tenant creation (SUPER_ADMIN)."""
    name: Optional[str] = Field(default=None, max_length=200, description="Unique tenant name")
    country: Optional[str] = Field(default=None, max_length=100)
    status: Optional[str] = Field(default=None, description="ACTIVE, PENDING or DISABLED")


class TenantUpdate(TenantCreate):
    """Partial tenant update; only supplied keys are applied."""


class StatusUpdate(CamelModel):
    """Request schema for status-only endpoints."""
    status: Optional[str] = Field(default=None, description="New status value")


class DocumentKindCreate(CamelModel):
    """Request schema for document kind registration."""
    name: Optional[str] = Field(default=None, description="Transcript, Diploma or Attestation")
    version: Optional[str] = Field(default=None, max_length=50)
    status: Optional[str] = Field(default=None, description="ACTIVE or DISABLED")


class DocumentKindUpdate(DocumentKindCreate):
    """Partial document kind update."""


# ============================================
# SCAN EVENTS
# ============================================

# The request body, ScanEventCreate, is defined in database.scan_event_service


class ScanEventCreated(BaseModel):
    """Response schema for scan submission."""
    id: str


# ============================================
# FRAUD CASES
# ============================================

class FraudCaseCreate(CamelModel):
    """Request schema for opening a case."""
    scan_event_id: Optional[str] = Field(default=None, alias="scanEventId")
    status: Optional[str] = Field(default=None, description="Initial status (default OPEN)")
    assigned_to_user_id: Optional[str] = Field(default=None, alias="assignedToUserId")
    notes: Optional[str] = Field(default=None, max_length=10000)


class FraudCaseUpdate(CamelModel):
    """Partial case update. scanEventId cannot be changed."""
    status: Optional[str] = None
    assigned_to_user_id: Optional[str] = Field(default=None, alias="assignedToUserId")
    notes: Optional[str] = Field(default=None, max_length=10000)

    @field_validator("status")
    @classmethod
    def status_not_blank(cls, v: Optional[str]) -> Optional[str]:
        """An empty string is not a status."""
        if v is not None and not v.strip():
            raise ValueError("status must not be empty")
        return v


# ============================================
# COMMON
# ============================================

class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: str = Field(..., description="ok or error")
    latency_ms: Optional[float] = Field(default=None, description="Database round trip")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    memory_usage_mb: Optional[float] = Field(default=None, description="Resident memory of the API process")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    details: Optional[List[Dict[str, Any]]] = Field(
        default=None,
        description="Per-field validation problems"
    )
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
