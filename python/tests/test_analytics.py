"""
Tests for scan event analytics: overview, timeseries and geo breakdown.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from database.analytics_service import (
    AnalyticsService,
    bucket_label,
    week_start,
)
from database.models import DocumentKindName, ResultLabel
from database.scope import resolve_scope


NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


class TestOverview:
    """Tests for AnalyticsService.compute_overview"""

    def test_empty_scope_gives_zero_rates(self, session):
        overview = AnalyticsService(session).compute_overview({}, now=NOW)
        assert overview["totalScans"] == 0
        assert overview["fraudRateEstimate"] == 0
        assert overview["suspiciousRate"] == 0
        assert overview["avgConfidence"] == 0
        assert overview["avgRiskScore"] == 0
        assert overview["topReasons"] == []
        assert overview["topDocumentTypes"] == []

    def test_counts_and_rates(self, session, make_tenant, make_event):
        tenant = make_tenant()
        for _ in range(9):
            make_event(tenant.id, created_at=NOW - timedelta(days=1))
        make_event(tenant.id, result_label=ResultLabel.FORGED, created_at=NOW - timedelta(days=1))

        overview = AnalyticsService(session).compute_overview({}, now=NOW)
        assert overview["totalScans"] == 10
        assert overview["authenticCount"] == 9
        assert overview["forgedCount"] == 1
        assert overview["suspiciousCount"] == 0
        assert overview["fraudRateEstimate"] == pytest.approx(0.1)
        assert overview["suspiciousRate"] == 0

    def test_averages_skip_missing_confidence(self, session, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, confidence=0.8, risk_score=20)
        make_event(tenant.id, confidence=None, risk_score=40)

        overview = AnalyticsService(session).compute_overview({}, now=NOW)
        assert overview["avgConfidence"] == pytest.approx(0.8)
        assert overview["avgRiskScore"] == pytest.approx(30)

    def test_rolling_windows(self, session, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, created_at=NOW - timedelta(days=2))
        make_event(tenant.id, created_at=NOW - timedelta(days=10))
        make_event(tenant.id, created_at=NOW - timedelta(days=45))

        overview = AnalyticsService(session).compute_overview({}, now=NOW)
        assert overview["last7Days"] == 1
        assert overview["last30Days"] == 2
        assert overview["totalScans"] == 3

    def test_top_reasons_count_once_per_event(self, session, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, reasons=["Stamp anomaly", "Stamp anomaly", "OCR mismatch"])
        make_event(tenant.id, reasons=["OCR mismatch"])
        make_event(tenant.id, reasons=["Font inconsistency"])

        reasons = AnalyticsService(session).compute_overview({}, now=NOW)["topReasons"]
        assert reasons[0] == {"reason": "OCR mismatch", "count": 2}
        assert {"reason": "Stamp anomaly", "count": 1} in reasons
        assert len(reasons) == 3

    def test_top_document_types(self, session, make_tenant, make_kind, make_event):
        tenant = make_tenant()
        diploma = make_kind(tenant.id, name=DocumentKindName.DIPLOMA)
        transcript = make_kind(tenant.id, name=DocumentKindName.TRANSCRIPT)
        make_event(tenant.id, document_kind_id=diploma.id)
        make_event(tenant.id, document_kind_id=diploma.id)
        make_event(tenant.id, document_kind_id=transcript.id)
        make_event(tenant.id)  # unresolved kind

        types = AnalyticsService(session).compute_overview({}, now=NOW)["topDocumentTypes"]
        assert types[0] == {"name": "Diploma", "count": 2}
        assert {"name": "Unknown", "count": 1} in types

    def test_respects_scope(self, session, make_tenant, make_event, tenant_admin_for, analyst):
        ours, theirs = make_tenant(), make_tenant()
        make_event(ours.id, result_label=ResultLabel.FORGED)
        make_event(theirs.id)
        make_event(theirs.id)

        service = AnalyticsService(session)
        overview = service.compute_overview(resolve_scope(tenant_admin_for(ours.id)), now=NOW)
        assert overview["totalScans"] == 1
        assert overview["fraudRateEstimate"] == 1

        assert service.compute_overview(resolve_scope(analyst), now=NOW)["totalScans"] == 0


class TestTimeseries:
    """Tests for AnalyticsService.compute_timeseries"""

    def test_daily_buckets_ascending(self, session, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, created_at=datetime(2024, 5, 2, 9, tzinfo=timezone.utc))
        make_event(tenant.id, created_at=datetime(2024, 5, 1, 23, tzinfo=timezone.utc),
                   result_label=ResultLabel.FORGED)
        make_event(tenant.id, created_at=datetime(2024, 5, 1, 1, tzinfo=timezone.utc),
                   result_label=ResultLabel.SUSPICIOUS)

        series = AnalyticsService(session).compute_timeseries({})
        assert series == [
            {"date": "2024-05-01T00:00:00.000Z", "authentic": 0, "suspicious": 1, "forged": 1, "total": 2},
            {"date": "2024-05-02T00:00:00.000Z", "authentic": 1, "suspicious": 0, "forged": 0, "total": 1},
        ]

    def test_weekly_buckets_start_on_sunday(self, session, make_tenant, make_event):
        tenant = make_tenant()
        # 2024-05-05 is a Sunday
        for day in (5, 8, 11, 12):
            make_event(tenant.id, created_at=datetime(2024, 5, day, 12, tzinfo=timezone.utc))

        series = AnalyticsService(session).compute_timeseries({}, granularity="week")
        assert [(b["date"], b["total"]) for b in series] == [
            ("2024-05-05T00:00:00.000Z", 3),
            ("2024-05-12T00:00:00.000Z", 1),
        ]

    def test_date_bounds_are_inclusive(self, session, make_tenant, make_event):
        tenant = make_tenant()
        for day in (1, 2, 3):
            make_event(tenant.id, created_at=datetime(2024, 5, day, 12, tzinfo=timezone.utc))

        series = AnalyticsService(session).compute_timeseries(
            {},
            date_from=datetime(2024, 5, 2, 12, tzinfo=timezone.utc),
            date_to=datetime(2024, 5, 3, 12, tzinfo=timezone.utc)
        )
        assert [b["date"][:10] for b in series] == ["2024-05-02", "2024-05-03"]

    def test_unknown_granularity_falls_back_to_day(self, session, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, created_at=datetime(2024, 5, 8, tzinfo=timezone.utc))
        series = AnalyticsService(session).compute_timeseries({}, granularity="month")
        assert series[0]["date"] == "2024-05-08T00:00:00.000Z"

    def test_empty(self, session):
        assert AnalyticsService(session).compute_timeseries({}) == []


class TestGeoBreakdown:
    """Tests for AnalyticsService.compute_geo_breakdown"""

    def test_nested_counts_with_unknown(self, session, make_tenant, make_event):
        tenant = make_tenant()
        make_event(tenant.id, geo_country="Tunisia", geo_city="Tunis")
        make_event(tenant.id, geo_country="Tunisia", geo_city="Tunis")
        make_event(tenant.id, geo_country="Tunisia", geo_city=None)
        make_event(tenant.id, geo_country=None, geo_city=None)
        make_event(tenant.id, geo_country="Unknown", geo_city="Unknown")

        geo = AnalyticsService(session).compute_geo_breakdown({})
        assert geo == {
            "Tunisia": {"Tunis": 2, "Unknown": 1},
            "Unknown": {"Unknown": 2},
        }

    def test_out_of_scope_is_empty(self, session, make_tenant, make_event, analyst):
        make_event(make_tenant().id, geo_country="Tunisia")
        assert AnalyticsService(session).compute_geo_breakdown(resolve_scope(analyst)) == {}


def test_week_start():
    assert week_start(date(2024, 5, 5)) == date(2024, 5, 5)
    assert week_start(date(2024, 5, 11)) == date(2024, 5, 5)
    assert week_start(date(2024, 5, 13)) == date(2024, 5, 12)


def test_bucket_label():
    assert bucket_label(date(2024, 1, 2)) == "2024-01-02T00:00:00.000Z"
