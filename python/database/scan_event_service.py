"""
Scan Event Ingestion and Reads

Ingestion validates a device payload and appends one ScanEvent. Events are
never updated or deleted afterwards. Tenant and document kind references
are stored as given and not resolved at write time.

Reads go through the tenant scope: listings are narrowed to the caller's
tenant, and a single-event read outside that tenant is refused.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from database.models import ResultLabel, ScanEvent, SourceApp
from database.monitoring import record_ingested
from database.query_plan import EVENT_MAX_PAGE_SIZE, build_event_plan
from database.repositories import ScanEventRepository
from database.scope import Principal, can_access_tenant, resolve_scope
from errors import ForbiddenError, NotFoundError, ValidationError, field_errors

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("tenantId", "documentKindId", "sourceApp", "contentHash", "resultLabel")


class ScanEventCreate(BaseModel):
    """Device scan submission.

    Used as the ingestion request body and by validate_payload, so both
    paths reject the same payloads. Required fields have no default, which
    makes every missing one show up in a single error response.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    tenant_id: uuid.UUID = Field(alias="tenantId")
    document_kind_id: uuid.UUID = Field(alias="documentKindId")
    source_app: SourceApp = Field(alias="sourceApp", description="ios or android")
    content_hash: str = Field(alias="contentHash", max_length=200)
    result_label: ResultLabel = Field(alias="resultLabel", description="AUTHENTIC, SUSPICIOUS or FORGED")
    confidence: Optional[float] = Field(default=None, ge=0, le=1, allow_inf_nan=False)
    risk_score: Optional[float] = Field(default=None, alias="riskScore", ge=0, le=100, allow_inf_nan=False)
    reasons: Optional[List[str]] = None
    suspicious_regions_count: Optional[int] = Field(default=None, alias="suspiciousRegionsCount", ge=0)
    extracted_fields: Optional[Dict[str, Any]] = Field(default=None, alias="extractedFields")
    geo_country: Optional[str] = Field(default=None, alias="geoCountry", max_length=100)
    geo_city: Optional[str] = Field(default=None, alias="geoCity", max_length=100)
    device_language: Optional[str] = Field(default=None, alias="deviceLanguage", max_length=20)

    @model_validator(mode="before")
    @classmethod
    def blank_required_is_missing(cls, data: Any) -> Any:
        """Null or blank required values are reported as missing."""
        if not isinstance(data, Mapping):
            return data
        return {
            key: value for key, value in data.items()
            if not (key in REQUIRED_FIELDS and (value is None or (isinstance(value, str) and not value.strip())))
        }

    def to_columns(self) -> Dict[str, Any]:
        """ScanEvent column values, with defaults for omitted optional fields."""
        return {
            "tenant_id": self.tenant_id,
            "document_kind_id": self.document_kind_id,
            "source_app": self.source_app,
            "content_hash": self.content_hash,
            "result_label": self.result_label,
            "confidence": self.confidence,
            "risk_score": self.risk_score or 0,
            "reasons": list(self.reasons or []),
            "suspicious_regions_count": self.suspicious_regions_count or 0,
            "extracted_fields": dict(self.extracted_fields or {}),
            "geo_country": self.geo_country or None,
            "geo_city": self.geo_city or None,
            "device_language": self.device_language or None,
        }


def parse_payload(payload: Any) -> ScanEventCreate:
    """
    Validate a raw ingestion payload.

    Raises:
        ValidationError: With one detail entry per invalid field
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be a JSON object")
    try:
        return ScanEventCreate.model_validate(dict(payload))
    except PydanticValidationError as e:
        details = field_errors(e.errors())
        first = details[0]
        raise ValidationError(
            first["message"] if len(details) == 1 else "Invalid scan event payload",
            field=first["field"],
            details=details
        )


def validate_payload(payload: Any) -> Dict[str, Any]:
    """Validate an ingestion payload and map it to ScanEvent column values."""
    return parse_payload(payload).to_columns()


class ScanEventService:
    """Ingestion and scoped reads of scan events, bound to one session."""

    def __init__(self, session: Session):
        self.session = session
        self._events = ScanEventRepository(session)

    def ingest(self, payload: Union[ScanEventCreate, Mapping[str, Any]]) -> uuid.UUID:
        """
        Validate and append a scan event.

        Args:
            payload: Validated request body, or a raw device payload with
                camelCase keys

        Returns:
            Id of the stored event

        Raises:
            ValidationError: Payload is incomplete or malformed
        """
        if not isinstance(payload, ScanEventCreate):
            payload = parse_payload(payload)
        event = self._events.insert(ScanEvent(**payload.to_columns()))
        record_ingested(event.result_label.value)
        logger.debug(f"Scan event ingested: {event.id} ({event.result_label.value})")
        return event.id

    def list_events(
        self,
        principal: Principal,
        params: Mapping[str, Any],
        max_page_size: int = EVENT_MAX_PAGE_SIZE
    ) -> Dict[str, Any]:
        """
        Filtered, sorted, paginated listing within the principal's scope.

        Returns:
            Envelope {items, total, page, pageSize}
        """
        plan = build_event_plan(params, max_page_size)
        plan.filter = resolve_scope(principal, plan.filter, "tenant_id")

        items, total = self._events.find_page(plan)
        return {
            "items": [event.to_dict() for event in items],
            "total": total,
            "page": plan.page,
            "pageSize": plan.page_size,
        }

    def get_event(self, principal: Principal, event_id: Union[uuid.UUID, str]) -> ScanEvent:
        """
        Read one event.

        Raises:
            NotFoundError: Event does not exist
            ForbiddenError: Event belongs to a tenant outside the
                principal's scope
        """
        event = self._events.get_by_id(event_id)
        if event is None:
            raise NotFoundError("ScanEvent not found")
        if not can_access_tenant(principal, event.tenant_id):
            raise ForbiddenError("Forbidden")
        return event
