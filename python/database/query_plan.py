"""
Query Plan Builder

Turns untrusted listing parameters (query-string values) into a validated,
bounded QueryPlan. Plans are data only; repositories execute them.

Tenant scoping is not applied here. Callers pass plan.filter through
database.scope.resolve_scope before execution.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type

from database.models import CaseStatus, ResultLabel
from errors import ValidationError

ASCENDING = 1
DESCENDING = -1

DEFAULT_PAGE_SIZE = 20
EVENT_MAX_PAGE_SIZE = 100
CASE_MAX_PAGE_SIZE = 200

# Public sort key -> stored field
EVENT_SORT_FIELDS = {
    "createdAt": "created_at",
    "riskScore": "risk_score",
    "confidence": "confidence",
}
DEFAULT_SORT_KEY = "createdAt"

# Fields searched by free-text ``q``
SEARCH_FIELDS = (
    "content_hash",
    "extracted_fields.studentId",
    "extracted_fields.name",
)

LIKE_ESCAPE = "\\"


@dataclass
class QueryPlan:
    """A fully-formed, bounded listing query."""
    filter: Dict[str, Any] = field(default_factory=dict)
    sort: List[Tuple[str, int]] = field(default_factory=list)
    skip: int = 0
    limit: int = DEFAULT_PAGE_SIZE
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


# ============================================
# PARAMETER PARSING
# ============================================

def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _parse_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def parse_pagination(params: Mapping[str, Any], max_page_size: int) -> Tuple[int, int]:
    """
    Resolve page and page size.

    Missing, zero, negative or unparseable page sizes fall back to the
    default; anything above max_page_size is truncated to it. Pages below 1
    become 1. Never raises.
    """
    page = _parse_int(params.get("page")) or 1
    if page < 1:
        page = 1

    page_size = _parse_int(params.get("pageSize")) or DEFAULT_PAGE_SIZE
    if page_size < 1:
        page_size = DEFAULT_PAGE_SIZE
    page_size = min(page_size, max_page_size)
    # Guards against a configured ceiling below the default
    page_size = max(page_size, 1)

    return page, page_size


def parse_float(name: str, value: Any) -> float:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid number for {name}", field=name)


def parse_datetime(name: str, value: Any) -> datetime:
    """Parse an ISO 8601 date or datetime as UTC.

    Naive values are taken as UTC; values with an offset are converted.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(
                f"Invalid date for {name}",
                field=name,
                suggestion="Use ISO 8601, e.g. 2024-01-31 or 2024-01-31T12:00:00Z",
            )
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_uuid(name: str, value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid id for {name}", field=name)


def parse_enum(name: str, value: Any, enum_cls: Type[Enum]) -> Enum:
    try:
        return enum_cls(str(value).strip())
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(
            f"Invalid value for {name}",
            field=name,
            suggestion=f"Allowed values: {allowed}",
        )


def range_filter(params: Mapping[str, Any], min_key: str, max_key: str, parser) -> Optional[Dict[str, Any]]:
    """Build {"gte": .., "lte": ..} from whichever bounds are supplied.

    Returns None when neither bound is present. A single bound stays a
    single bound.
    """
    bounds: Dict[str, Any] = {}
    if _present(params.get(min_key)):
        bounds["gte"] = parser(min_key, params[min_key])
    if _present(params.get(max_key)):
        bounds["lte"] = parser(max_key, params[max_key])
    return bounds or None


def escape_like(text: str) -> str:
    """Escape LIKE metacharacters so text matches literally."""
    return (
        text.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def search_filter(q: str) -> Dict[str, Any]:
    """Case-insensitive literal substring match across SEARCH_FIELDS."""
    pattern = f"%{escape_like(q)}%"
    return {"$or": [{name: {"ilike": pattern}} for name in SEARCH_FIELDS]}


def _paged(plan_filter: Dict[str, Any], sort, page: int, page_size: int) -> QueryPlan:
    return QueryPlan(
        filter=plan_filter,
        sort=sort,
        skip=(page - 1) * page_size,
        limit=page_size,
        page=page,
        page_size=page_size,
    )


# ============================================
# PLANS
# ============================================

def build_event_plan(params: Mapping[str, Any], max_page_size: int = EVENT_MAX_PAGE_SIZE) -> QueryPlan:
    """
    Build the scan-event listing plan.

    Args:
        params: Raw request parameters (q, tenantId, documentKindId,
            resultLabel, country, city, minConfidence, maxConfidence,
            minRiskScore, maxRiskScore, dateFrom, dateTo, sortBy, sortDir,
            page, pageSize)
        max_page_size: Page size ceiling

    Returns:
        QueryPlan (unscoped)

    Raises:
        ValidationError: If a supplied filter value is malformed
    """
    page, page_size = parse_pagination(params, max_page_size)

    sort_key = params.get("sortBy")
    if sort_key not in EVENT_SORT_FIELDS:
        sort_key = DEFAULT_SORT_KEY
    direction = ASCENDING if params.get("sortDir") == "asc" else DESCENDING

    plan_filter: Dict[str, Any] = {}

    if _present(params.get("tenantId")):
        plan_filter["tenant_id"] = parse_uuid("tenantId", params["tenantId"])
    if _present(params.get("documentKindId")):
        plan_filter["document_kind_id"] = parse_uuid("documentKindId", params["documentKindId"])
    if _present(params.get("resultLabel")):
        plan_filter["result_label"] = parse_enum("resultLabel", params["resultLabel"], ResultLabel)
    if _present(params.get("country")):
        plan_filter["geo_country"] = str(params["country"]).strip()
    if _present(params.get("city")):
        plan_filter["geo_city"] = str(params["city"]).strip()

    for field_name, min_key, max_key, parser in (
        ("confidence", "minConfidence", "maxConfidence", parse_float),
        ("risk_score", "minRiskScore", "maxRiskScore", parse_float),
        ("created_at", "dateFrom", "dateTo", parse_datetime),
    ):
        bounds = range_filter(params, min_key, max_key, parser)
        if bounds:
            plan_filter[field_name] = bounds

    q = str(params.get("q") or "").strip()
    if q:
        plan_filter.update(search_filter(q))

    return _paged(plan_filter, [(EVENT_SORT_FIELDS[sort_key], direction)], page, page_size)


def build_case_plan(params: Mapping[str, Any], max_page_size: int = CASE_MAX_PAGE_SIZE) -> QueryPlan:
    """
    Build the fraud-case listing plan.

    Args:
        params: Raw request parameters (status, assignedToUserId, tenantId,
            dateFrom, dateTo, page, pageSize)
        max_page_size: Page size ceiling

    Returns:
        QueryPlan (unscoped), newest cases first
    """
    page, page_size = parse_pagination(params, max_page_size)

    plan_filter: Dict[str, Any] = {}
    if _present(params.get("status")):
        plan_filter["status"] = parse_enum("status", params["status"], CaseStatus)
    if _present(params.get("assignedToUserId")):
        plan_filter["assigned_to_user_id"] = parse_uuid("assignedToUserId", params["assignedToUserId"])
    if _present(params.get("tenantId")):
        plan_filter["tenant_id"] = parse_uuid("tenantId", params["tenantId"])

    bounds = range_filter(params, "dateFrom", "dateTo", parse_datetime)
    if bounds:
        plan_filter["created_at"] = bounds

    return _paged(plan_filter, [("created_at", DESCENDING)], page, page_size)
