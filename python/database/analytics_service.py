"""
Scan Event Analytics

Rollup statistics over the scan event log: totals and rates, top reasons and
document kinds, rolling windows, label trends by day or week, and a
country/city breakdown.

Every method takes a scope filter that has already been resolved by
database.scope.resolve_scope. Scope resolution never happens here.

Usage:
    scope = resolve_scope(principal)
    with db_provider.session_scope() as session:
        overview = AnalyticsService(session).compute_overview(scope)
"""

import logging
from collections import Counter, OrderedDict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database.models import ResultLabel
from database.repositories import ScanEventRepository
from errors import InternalError

logger = logging.getLogger(__name__)

DAY = "day"
WEEK = "week"
GRANULARITIES = (DAY, WEEK)

DEFAULT_TOP_N = 10
UNKNOWN = "Unknown"


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_date(value: Any) -> date:
    """Normalize a SQL DATE() result (date or 'YYYY-MM-DD' string)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def week_start(day: date) -> date:
    """First day (Sunday) of the week containing day."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def bucket_label(day: date) -> str:
    """UTC midnight of day as an ISO 8601 timestamp."""
    return f"{day.isoformat()}T00:00:00.000Z"


def rate(part: int, total: int) -> float:
    return part / total if total else 0.0


class AnalyticsService:
    """
    Aggregation engine over scan events.

    Follows the dependency injection pattern: construct per request with
    the request's session.
    """

    def __init__(self, session: Session, config: Optional[Any] = None):
        """
        Args:
            session: SQLAlchemy database session
            config: Optional ConfigManager instance (analytics.top_n)
        """
        self.session = session
        self._events = ScanEventRepository(session)
        self._top_n = DEFAULT_TOP_N
        if config is not None:
            self._top_n = config.analytics.top_n

    def compute_overview(self, scope: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Summary statistics for all events within scope.

        Args:
            scope: Resolved scope filter
            now: Reference time for the rolling windows (default: current UTC)

        Returns:
            Dict with totalScans, authenticCount, suspiciousCount,
            forgedCount, fraudRateEstimate, suspiciousRate, avgConfidence,
            avgRiskScore, topReasons, topDocumentTypes, last7Days, last30Days

        Raises:
            InternalError: If the store fails
        """
        now = _as_utc(now) if now else datetime.now(timezone.utc)

        try:
            labels = self._events.label_counts(scope)
            avg_confidence, avg_risk = self._events.averages(scope)
            top_reasons = self.top_reasons(scope)
            top_kinds = self._events.document_kind_counts(scope, limit=self._top_n)
            last7 = self._events.count_since(scope, now - timedelta(days=7))
            last30 = self._events.count_since(scope, now - timedelta(days=30))
        except SQLAlchemyError as e:
            logger.error(f"Overview aggregation failed: {e}")
            raise InternalError("Failed to compute overview")

        authentic = labels.get(ResultLabel.AUTHENTIC.value, 0)
        suspicious = labels.get(ResultLabel.SUSPICIOUS.value, 0)
        forged = labels.get(ResultLabel.FORGED.value, 0)
        total = sum(labels.values())

        return {
            "totalScans": total,
            "authenticCount": authentic,
            "suspiciousCount": suspicious,
            "forgedCount": forged,
            "fraudRateEstimate": rate(forged, total),
            "suspiciousRate": rate(suspicious, total),
            "avgConfidence": avg_confidence or 0,
            "avgRiskScore": avg_risk or 0,
            "topReasons": top_reasons,
            "topDocumentTypes": [
                {"name": name or UNKNOWN, "count": count}
                for name, count in top_kinds
            ],
            "last7Days": last7,
            "last30Days": last30,
        }

    def top_reasons(self, scope: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Most frequent reasons, descending.

        A reason listed twice on one event counts once for that event. Ties
        keep the order in which reasons were first seen.
        """
        counts: Counter = Counter()
        for reasons in self._events.iter_reasons(scope):
            counts.update(dict.fromkeys(reasons))

        return [
            {"reason": reason, "count": count}
            for reason, count in counts.most_common(self._top_n)
        ]

    def compute_timeseries(
        self,
        scope: Dict[str, Any],
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        granularity: str = DAY
    ) -> List[Dict[str, Any]]:
        """
        Label counts per time bucket, ascending by bucket.

        Buckets are UTC calendar days, or weeks starting on Sunday. Only
        buckets containing events are returned.

        Args:
            scope: Resolved scope filter
            date_from: Inclusive lower bound on created_at
            date_to: Inclusive upper bound on created_at
            granularity: "day" or "week"; anything else is treated as "day"

        Returns:
            List of {date, authentic, suspicious, forged, total}
        """
        if granularity not in GRANULARITIES:
            granularity = DAY

        bounds: Dict[str, Any] = {}
        if date_from is not None:
            bounds["gte"] = _as_utc(date_from)
        if date_to is not None:
            bounds["lte"] = _as_utc(date_to)
        match = {**scope, "created_at": bounds} if bounds else scope

        try:
            rows = self._events.daily_label_counts(match)
        except SQLAlchemyError as e:
            logger.error(f"Timeseries aggregation failed: {e}")
            raise InternalError("Failed to compute timeseries")

        buckets: "OrderedDict[date, Dict[str, int]]" = OrderedDict()
        for day_value, label, count in rows:
            day = _as_date(day_value)
            key = week_start(day) if granularity == WEEK else day
            bucket = buckets.setdefault(key, {"authentic": 0, "suspicious": 0, "forged": 0, "total": 0})
            bucket[label.lower()] += count
            bucket["total"] += count

        return [
            {"date": bucket_label(key), **counts}
            for key, counts in sorted(buckets.items())
        ]

    def compute_geo_breakdown(self, scope: Dict[str, Any]) -> Dict[str, Dict[str, int]]:
        """
        Event counts nested by country then city.

        Missing country or city values are reported as "Unknown" and merged
        with any stored "Unknown" value.
        """
        try:
            rows = self._events.geo_counts(scope)
        except SQLAlchemyError as e:
            logger.error(f"Geo aggregation failed: {e}")
            raise InternalError("Failed to compute geo breakdown")

        by_country: Dict[str, Dict[str, int]] = {}
        for country, city, count in rows:
            cities = by_country.setdefault(country or UNKNOWN, {})
            city = city or UNKNOWN
            cities[city] = cities.get(city, 0) + count
        return by_country
