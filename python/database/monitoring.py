"""
Query and Service Monitoring for Authentiqa

This module provides:
- query_timer / timed_query for timing repository and aggregation queries
- In-process statistics per operation (count, errors, slow, avg, p95)
- Prometheus metrics for queries, ingestion, admission control and cases
- Database health check

Usage:
    from database.monitoring import query_timer, get_db_metrics

    with query_timer("scan_events.find"):
        rows = session.execute(query).scalars().all()
"""

import logging
import math
import time
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Optional, Dict, Any, List, Callable, Deque

from prometheus_client import Histogram, Counter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

# Durations kept per operation for percentile estimates
SAMPLE_WINDOW = 500


@dataclass
class MonitoringConfig:
    """Thresholds for query logging. Set once at startup."""
    slow_query_threshold_ms: float = 1000.0
    warning_threshold_ms: float = 500.0
    enable_prometheus: bool = True
    enable_logging: bool = True


_config = MonitoringConfig()


def configure_monitoring(
    slow_query_threshold_ms: float = 1000.0,
    warning_threshold_ms: float = 500.0,
    enable_prometheus: bool = True,
    enable_logging: bool = True
) -> None:
    """
    Replace the monitoring settings.

    Args:
        slow_query_threshold_ms: Queries slower than this are logged as SLOW QUERY
        warning_threshold_ms: Queries slower than this are logged at INFO
        enable_prometheus: Record Prometheus metrics
        enable_logging: Emit query timing log lines
    """
    global _config
    _config = MonitoringConfig(
        slow_query_threshold_ms=slow_query_threshold_ms,
        warning_threshold_ms=warning_threshold_ms,
        enable_prometheus=enable_prometheus,
        enable_logging=enable_logging
    )


# ============================================
# PROMETHEUS METRICS
# ============================================

db_query_duration = Histogram(
    'authentiqa_db_query_duration_seconds',
    'Database query duration in seconds',
    ['operation', 'status'],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

db_slow_queries_total = Counter(
    'authentiqa_db_slow_queries_total',
    'Database queries slower than the configured threshold',
    ['operation']
)

scan_events_ingested_total = Counter(
    'authentiqa_scan_events_ingested_total',
    'Scan events accepted by ingestion',
    ['result_label']
)

ingestion_rejected_total = Counter(
    'authentiqa_ingestion_rejected_total',
    'Ingestion requests rejected by admission control'
)

fraud_case_status_total = Counter(
    'authentiqa_fraud_case_status_total',
    'Fraud cases opened in, or moved to, a status',
    ['status']
)


def record_ingested(result_label: str) -> None:
    if _config.enable_prometheus:
        scan_events_ingested_total.labels(result_label=result_label).inc()


def record_rate_limited() -> None:
    if _config.enable_prometheus:
        ingestion_rejected_total.inc()


def record_case_status(status: str) -> None:
    if _config.enable_prometheus:
        fraud_case_status_total.labels(status=status).inc()


# ============================================
# IN-PROCESS QUERY STATISTICS
# ============================================

@dataclass
class OperationStats:
    """Running totals plus a bounded window of recent durations."""
    operation: str
    count: int = 0
    errors: int = 0
    slow_queries: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    recent: Deque[float] = field(default_factory=lambda: deque(maxlen=SAMPLE_WINDOW))
    last_executed: Optional[datetime] = None

    def add(self, duration_ms: float, error: bool, slow: bool) -> None:
        self.count += 1
        self.errors += int(error)
        self.slow_queries += int(slow)
        self.total_ms += duration_ms
        self.max_ms = max(self.max_ms, duration_ms)
        self.recent.append(duration_ms)
        self.last_executed = datetime.now(timezone.utc)

    def percentile(self, pct: float) -> float:
        """Nearest-rank percentile over the recent window."""
        if not self.recent:
            return 0.0
        ordered = sorted(self.recent)
        rank = max(1, math.ceil(pct / 100 * len(ordered)))
        return ordered[rank - 1]

    def to_dict(self) -> Dict[str, Any]:
        return {
            'operation': self.operation,
            'count': self.count,
            'errors': self.errors,
            'slow_queries': self.slow_queries,
            'avg_ms': round(self.total_ms / self.count, 2) if self.count else 0.0,
            'p95_ms': round(self.percentile(95), 2),
            'max_ms': round(self.max_ms, 2),
            'last_executed': self.last_executed.isoformat() if self.last_executed else None,
        }


_stats: Dict[str, OperationStats] = {}
_stats_lock = threading.Lock()
_stats_since = datetime.now(timezone.utc)


def _record(operation: str, duration_ms: float, error: bool, slow: bool) -> None:
    with _stats_lock:
        stats = _stats.get(operation)
        if stats is None:
            stats = _stats[operation] = OperationStats(operation=operation)
        stats.add(duration_ms, error, slow)


def get_db_metrics(operation: Optional[str] = None) -> Dict[str, Any]:
    """Statistics for one operation ({} if it never ran), or for all of them."""
    with _stats_lock:
        if operation:
            stats = _stats.get(operation)
            return stats.to_dict() if stats else {}
        return {
            'since': _stats_since.isoformat(),
            'operations': {name: stats.to_dict() for name, stats in _stats.items()},
        }


def get_slow_query_report() -> List[Dict[str, Any]]:
    """Operations with at least one slow query, slowest p95 first."""
    with _stats_lock:
        rows = [stats.to_dict() for stats in _stats.values() if stats.slow_queries]
    return sorted(rows, key=lambda row: row['p95_ms'], reverse=True)


def reset_metrics() -> None:
    global _stats_since
    with _stats_lock:
        _stats.clear()
        _stats_since = datetime.now(timezone.utc)


# ============================================
# QUERY TIMER
# ============================================

@contextmanager
def query_timer(operation: str):
    """
    Time the enclosed block as one execution of operation.

    Exceptions are counted as errors and re-raised unchanged.
    """
    started = time.perf_counter()
    failed = False
    try:
        yield
    except Exception:
        failed = True
        raise
    finally:
        seconds = time.perf_counter() - started
        duration_ms = seconds * 1000
        slow = duration_ms > _config.slow_query_threshold_ms

        _record(operation, duration_ms, failed, slow)

        if _config.enable_prometheus:
            db_query_duration.labels(operation=operation, status="error" if failed else "success").observe(seconds)
            if slow:
                db_slow_queries_total.labels(operation=operation).inc()

        if _config.enable_logging:
            if slow:
                logger.warning(
                    f"SLOW QUERY: {operation} took {duration_ms:.2f}ms "
                    f"(threshold: {_config.slow_query_threshold_ms}ms)"
                )
            elif not failed and duration_ms > _config.warning_threshold_ms:
                logger.info(f"Query {operation} took {duration_ms:.2f}ms")


def timed_query(operation: str):
    """Decorator form of query_timer for repository methods."""
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with query_timer(operation):
                return func(*args, **kwargs)
        return wrapper
    return decorator


# ============================================
# HEALTH CHECK
# ============================================

@dataclass
class HealthStatus:
    """Result of one database round trip."""
    healthy: bool
    latency_ms: float
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'healthy': self.healthy,
            'latency_ms': round(self.latency_ms, 2),
            'error': self.error,
            'checked_at': self.checked_at.isoformat()
        }


def check_health(session_factory) -> HealthStatus:
    """Run SELECT 1 through a fresh session and time it. Never raises for
    database errors; they are reported in the returned status."""
    started = time.perf_counter()
    try:
        with session_factory() as session:
            session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return HealthStatus(healthy=False, latency_ms=(time.perf_counter() - started) * 1000, error=str(e))
    return HealthStatus(healthy=True, latency_ms=(time.perf_counter() - started) * 1000)
