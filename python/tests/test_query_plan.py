"""
Unit tests for listing query plans.

Covers pagination bounds, sort allow-listing, range and equality filters,
and free-text search escaping.
"""

import uuid
from datetime import datetime, timezone

import pytest

from database.models import CaseStatus, ResultLabel
from database.query_plan import (
    ASCENDING,
    DESCENDING,
    build_case_plan,
    build_event_plan,
    escape_like,
    parse_datetime,
    parse_pagination,
)
from errors import ValidationError


class TestPagination:
    """Tests for page / pageSize normalisation."""

    @pytest.mark.parametrize("params,expected", [
        ({}, (1, 20)),
        ({"page": "3", "pageSize": "50"}, (3, 50)),
        ({"page": "0"}, (1, 20)),
        ({"page": "-4"}, (1, 20)),
        ({"page": "abc", "pageSize": "xyz"}, (1, 20)),
        ({"pageSize": "0"}, (1, 20)),
        ({"pageSize": "-10"}, (1, 20)),
        ({"pageSize": "500"}, (1, 100)),
        ({"pageSize": ""}, (1, 20)),
    ])
    def test_bounds(self, params, expected):
        assert parse_pagination(params, 100) == expected

    def test_skip_and_limit(self):
        plan = build_event_plan({"page": "3", "pageSize": "10"})
        assert (plan.skip, plan.limit, plan.page, plan.page_size) == (20, 10, 3, 10)

    def test_case_ceiling(self):
        assert build_case_plan({"pageSize": "1000"}).page_size == 200
        assert build_case_plan({"pageSize": "1000"}, max_page_size=50).page_size == 50


class TestEventPlan:
    """Tests for the scan-event listing plan."""

    def test_defaults(self):
        plan = build_event_plan({})
        assert plan.filter == {}
        assert plan.sort == [("created_at", DESCENDING)]

    def test_sort_allow_list(self):
        assert build_event_plan({"sortBy": "riskScore", "sortDir": "asc"}).sort == [("risk_score", ASCENDING)]
        assert build_event_plan({"sortBy": "confidence"}).sort == [("confidence", DESCENDING)]
        assert build_event_plan({"sortBy": "password_hash", "sortDir": "asc"}).sort == [("created_at", ASCENDING)]
        assert build_event_plan({"sortDir": "ASC"}).sort == [("created_at", DESCENDING)]

    def test_equality_filters(self):
        tenant_id, kind_id = uuid.uuid4(), uuid.uuid4()
        plan = build_event_plan({
            "tenantId": str(tenant_id),
            "documentKindId": str(kind_id),
            "resultLabel": "FORGED",
            "country": "Tunisia",
            "city": " Sfax ",
        })
        assert plan.filter == {
            "tenant_id": tenant_id,
            "document_kind_id": kind_id,
            "result_label": ResultLabel.FORGED,
            "geo_country": "Tunisia",
            "geo_city": "Sfax",
        }

    def test_partial_range_stays_partial(self):
        plan = build_event_plan({"minRiskScore": "40"})
        assert plan.filter == {"risk_score": {"gte": 40.0}}

    def test_full_ranges(self):
        plan = build_event_plan({
            "minConfidence": "0.2",
            "maxConfidence": "0.8",
            "dateFrom": "2024-01-01",
            "dateTo": "2024-01-31T23:59:59Z",
        })
        assert plan.filter["confidence"] == {"gte": 0.2, "lte": 0.8}
        assert plan.filter["created_at"] == {
            "gte": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "lte": datetime(2024, 1, 31, 23, 59, 59, tzinfo=timezone.utc),
        }

    def test_empty_values_are_ignored(self):
        assert build_event_plan({"minConfidence": "", "resultLabel": "", "q": "   "}).filter == {}

    @pytest.mark.parametrize("params,field", [
        ({"minConfidence": "high"}, "minConfidence"),
        ({"maxRiskScore": "lots"}, "maxRiskScore"),
        ({"dateFrom": "yesterday"}, "dateFrom"),
        ({"resultLabel": "MAYBE"}, "resultLabel"),
        ({"tenantId": "not-a-uuid"}, "tenantId"),
    ])
    def test_malformed_values_raise(self, params, field):
        with pytest.raises(ValidationError) as exc_info:
            build_event_plan(params)
        assert exc_info.value.field == field

    def test_search_escapes_metacharacters(self):
        plan = build_event_plan({"q": " 50%_off "})
        branches = plan.filter["$or"]
        assert {"content_hash": {"ilike": "%50\\%\\_off%"}} in branches
        assert len(branches) == 3


class TestCasePlan:
    """Tests for the fraud-case listing plan."""

    def test_always_newest_first(self):
        assert build_case_plan({"sortBy": "status", "sortDir": "asc"}).sort == [("created_at", DESCENDING)]

    def test_filters(self):
        tenant_id, user_id = uuid.uuid4(), uuid.uuid4()
        plan = build_case_plan({
            "status": "IN_REVIEW",
            "assignedToUserId": str(user_id),
            "tenantId": str(tenant_id),
            "dateTo": "2024-06-01",
        })
        assert plan.filter == {
            "status": CaseStatus.IN_REVIEW,
            "assigned_to_user_id": user_id,
            "tenant_id": tenant_id,
            "created_at": {"lte": datetime(2024, 6, 1, tzinfo=timezone.utc)},
        }

    def test_invalid_status(self):
        with pytest.raises(ValidationError):
            build_case_plan({"status": "SOLVED"})


def test_escape_like():
    assert escape_like("a\\b%c_d") == "a\\\\b\\%c\\_d"


def test_parse_datetime_converts_offset_to_utc():
    parsed = parse_datetime("dateFrom", "2024-03-01T10:00:00+02:00")
    assert parsed == datetime(2024, 3, 1, 8, tzinfo=timezone.utc)
    assert parsed.utcoffset().total_seconds() == 0


def test_parse_datetime_naive_is_utc():
    assert parse_datetime("dateTo", "2024-03-01T10:00:00") == datetime(2024, 3, 1, 10, tzinfo=timezone.utc)
