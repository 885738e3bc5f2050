"""
Tests for scan event ingestion validation and scoped reads.
"""

import uuid

import pytest

from database.models import ResultLabel, SourceApp
from database.scan_event_service import ScanEventCreate, ScanEventService, validate_payload
from errors import ForbiddenError, NotFoundError, ValidationError


def make_payload(**overrides):
    payload = {
        "tenantId": str(uuid.uuid4()),
        "documentKindId": str(uuid.uuid4()),
        "sourceApp": "android",
        "contentHash": "sha256:1f2e3d",
        "resultLabel": "SUSPICIOUS",
        "confidence": 0.55,
        "riskScore": 48,
        "reasons": ["Stamp anomaly"],
        "suspiciousRegionsCount": 2,
        "extractedFields": {"studentId": "S12345", "name": "Alice Smith"},
        "geoCountry": "Tunisia",
        "geoCity": "Sfax",
        "deviceLanguage": "fr",
    }
    payload.update(overrides)
    return payload


class TestValidatePayload:
    """Tests for validate_payload"""

    def test_maps_to_columns(self):
        values = validate_payload(make_payload())
        assert values["source_app"] == SourceApp.ANDROID
        assert values["result_label"] == ResultLabel.SUSPICIOUS
        assert values["risk_score"] == 48
        assert values["suspicious_regions_count"] == 2
        assert values["extracted_fields"]["studentId"] == "S12345"
        assert values["geo_city"] == "Sfax"

    def test_optional_fields_default(self):
        payload = make_payload()
        for key in ("confidence", "riskScore", "reasons", "suspiciousRegionsCount",
                    "extractedFields", "geoCountry", "geoCity", "deviceLanguage"):
            del payload[key]

        values = validate_payload(payload)
        assert values["confidence"] is None
        assert values["risk_score"] == 0
        assert values["reasons"] == []
        assert values["suspicious_regions_count"] == 0
        assert values["extracted_fields"] == {}
        assert values["geo_country"] is None

    @pytest.mark.parametrize("missing", ["tenantId", "documentKindId", "sourceApp", "contentHash", "resultLabel"])
    def test_missing_required_field(self, missing):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(make_payload(**{missing: None}))
        assert exc_info.value.field == missing

    def test_all_missing_fields_are_reported(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload({})
        assert [d["field"] for d in exc_info.value.details] == [
            "tenantId", "documentKindId", "sourceApp", "contentHash", "resultLabel"
        ]

    @pytest.mark.parametrize("overrides,field", [
        ({"sourceApp": "web"}, "sourceApp"),
        ({"resultLabel": "authentic"}, "resultLabel"),
        ({"tenantId": "tenant-1"}, "tenantId"),
        ({"confidence": 1.5}, "confidence"),
        ({"confidence": "high"}, "confidence"),
        ({"riskScore": -1}, "riskScore"),
        ({"riskScore": 101}, "riskScore"),
        ({"suspiciousRegionsCount": -2}, "suspiciousRegionsCount"),
        ({"reasons": "Stamp anomaly"}, "reasons"),
        ({"reasons": ["ok", 3]}, "reasons"),
        ({"extractedFields": ["a"]}, "extractedFields"),
        ({"contentHash": "x" * 201}, "contentHash"),
        ({"geoCity": 12}, "geoCity"),
    ])
    def test_invalid_values(self, overrides, field):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(make_payload(**overrides))
        assert exc_info.value.field == field

    def test_boundaries_are_accepted(self):
        values = validate_payload(make_payload(confidence=0, riskScore=100, suspiciousRegionsCount=0))
        assert values["confidence"] == 0
        assert values["risk_score"] == 100

    def test_not_an_object(self):
        with pytest.raises(ValidationError):
            validate_payload(["not", "a", "dict"])

    def test_blank_required_value_is_missing(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(make_payload(contentHash="   "))
        assert exc_info.value.details == [{"field": "contentHash", "message": "Missing field: contentHash"}]

    def test_nested_error_reports_top_level_field(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_payload(make_payload(reasons=["ok", 3]))
        assert [d["field"] for d in exc_info.value.details] == ["reasons"]


class TestIngest:
    """Tests for ScanEventService.ingest"""

    def test_stores_event(self, session, super_admin):
        service = ScanEventService(session)
        payload = make_payload()

        event_id = service.ingest(payload)

        event = service.get_event(super_admin, event_id)
        assert str(event.tenant_id) == payload["tenantId"]
        assert event.reasons == ["Stamp anomaly"]
        assert event.created_at is not None

    def test_accepts_validated_body(self, session, super_admin):
        service = ScanEventService(session)
        body = ScanEventCreate.model_validate(make_payload(riskScore=None, geoCity=""))

        event = service.get_event(super_admin, service.ingest(body))
        assert event.risk_score == 0
        assert event.geo_city is None
        assert event.source_app == SourceApp.ANDROID

    def test_unknown_tenant_is_accepted(self, session):
        # References are stored as given
        assert ScanEventService(session).ingest(make_payload(tenantId=str(uuid.uuid4())))

    def test_invalid_payload_stores_nothing(self, session, super_admin):
        service = ScanEventService(session)
        with pytest.raises(ValidationError):
            service.ingest(make_payload(resultLabel="MAYBE"))
        assert service.list_events(super_admin, {})["total"] == 0


class TestReads:
    """Tests for scoped listing and single reads"""

    def test_list_envelope(self, session, super_admin, make_tenant, make_event):
        tenant = make_tenant()
        for _ in range(3):
            make_event(tenant.id)

        page = ScanEventService(session).list_events(super_admin, {"pageSize": "2"})
        assert page["total"] == 3
        assert page["page"] == 1
        assert page["pageSize"] == 2
        assert len(page["items"]) == 2
        assert page["items"][0]["tenantId"] == str(tenant.id)

    def test_tenant_admin_scope_overrides_filter(self, session, tenant_admin_for, make_tenant, make_event):
        ours, theirs = make_tenant(), make_tenant()
        own_event = make_event(ours.id)
        make_event(theirs.id)

        page = ScanEventService(session).list_events(tenant_admin_for(ours.id), {"tenantId": str(theirs.id)})
        assert page["total"] == 1
        assert page["items"][0]["id"] == str(own_event.id)

    def test_analyst_lists_nothing(self, session, analyst, make_tenant, make_event):
        make_event(make_tenant().id)
        assert ScanEventService(session).list_events(analyst, {})["total"] == 0

    def test_filters(self, session, super_admin, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, result_label=ResultLabel.FORGED, risk_score=80, geo_country="Tunisia")
        make_event(tenant.id, result_label=ResultLabel.FORGED, risk_score=30, geo_country="Tunisia")
        make_event(tenant.id, risk_score=90, geo_country="Algeria")

        page = ScanEventService(session).list_events(super_admin, {
            "resultLabel": "FORGED",
            "minRiskScore": "50",
            "country": "Tunisia",
        })
        assert page["total"] == 1
        assert page["items"][0]["riskScore"] == 80

    def test_get_event_out_of_scope_is_forbidden(self, session, tenant_admin_for, make_tenant, make_event):
        event = make_event(make_tenant().id)
        with pytest.raises(ForbiddenError):
            ScanEventService(session).get_event(tenant_admin_for(make_tenant().id), event.id)

    def test_get_event_missing(self, session, super_admin):
        with pytest.raises(NotFoundError):
            ScanEventService(session).get_event(super_admin, uuid.uuid4())
        with pytest.raises(NotFoundError):
            ScanEventService(session).get_event(super_admin, "garbage")
