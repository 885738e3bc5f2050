"""
Repository Pattern for Authentiqa Database Operations

Provides the data access layer over SQLAlchemy sessions. Every repository
accepts filters in a small document-store style grammar, so scope and query
plans can be built as plain data and executed here:

    {"field": value}                         equality (None -> IS NULL)
    {"field": {"gte": a, "lte": b}}          range (also gt, lt, ne, in)
    {"field": {"ilike": pattern}}            case-insensitive LIKE, "\\" escape
    {"json_column.key": ...}                 nested JSON field, compared as text
    {"$or": [filter, filter, ...]}           alternatives
    {"$nomatch": True}                       matches nothing

Top-level keys are AND-ed together.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Type, Union

from sqlalchemy import Uuid, and_, false, func, or_, select, true
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database.models import (
    AuditAction,
    AuditLog,
    Base,
    DocumentKind,
    FraudCase,
    ScanEvent,
    Tenant,
    User,
)
from database.monitoring import query_timer, timed_query

logger = logging.getLogger(__name__)

Filter = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


# ============================================
# FILTER COMPILER
# ============================================

class FilterCompiler:
    """
    Compiles dict filters into SQLAlchemy boolean expressions for one model.

    Args:
        model: Mapped class the filter targets
        resolvers: Optional per-field callables ``value -> expression`` for
            fields that are not plain columns on the model
    """

    OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
        "gte": lambda col, v: col >= v,
        "gt": lambda col, v: col > v,
        "lte": lambda col, v: col <= v,
        "lt": lambda col, v: col < v,
        "ne": lambda col, v: col != v,
        "in": lambda col, v: col.in_(list(v)),
        "ilike": lambda col, v: col.ilike(v, escape="\\"),
    }

    def __init__(self, model: Type[Base], resolvers: Optional[Dict[str, Callable[[Any], Any]]] = None):
        self.model = model
        self.resolvers = resolvers or {}
        self._columns = {c.key: c for c in model.__table__.columns}

    def compile(self, filter_: Optional[Filter]) -> Any:
        """Compile a filter into a single expression (TRUE when empty)."""
        conditions = self.conditions(filter_ or {})
        if not conditions:
            return true()
        if len(conditions) == 1:
            return conditions[0]
        return and_(*conditions)

    def conditions(self, filter_: Filter) -> List[Any]:
        conditions = []
        for key, value in filter_.items():
            if key == "$nomatch":
                if value:
                    conditions.append(false())
            elif key == "$or":
                branches = [self.compile(sub) for sub in value]
                conditions.append(or_(*branches) if branches else false())
            elif key in self.resolvers:
                conditions.append(self.resolvers[key](value))
            else:
                conditions.append(self._field_condition(key, value))
        return conditions

    def _column(self, name: str):
        if "." in name:
            column_name, _, path = name.partition(".")
            if column_name not in self._columns:
                raise RepositoryError(f"Unknown field for {self.model.__name__}: {name}")
            return getattr(self.model, column_name)[path].as_string(), False
        if name not in self._columns:
            raise RepositoryError(f"Unknown field for {self.model.__name__}: {name}")
        return getattr(self.model, name), isinstance(self._columns[name].type, Uuid)

    def _field_condition(self, name: str, value: Any):
        column, is_uuid = self._column(name)

        if isinstance(value, dict):
            parts = []
            for op, operand in value.items():
                if op not in self.OPERATORS:
                    raise RepositoryError(f"Unsupported operator: {op}")
                if is_uuid:
                    operand = [_coerce_uuid(v) for v in operand] if op == "in" else _coerce_uuid(operand)
                    if operand is None:
                        return false()
                parts.append(self.OPERATORS[op](column, operand))
            return and_(*parts) if parts else true()

        if value is None:
            return column.is_(None)
        if is_uuid:
            value = _coerce_uuid(value)
            if value is None:
                # A malformed id can never match a stored one
                return false()
        return column == value


def _coerce_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        return None


# ============================================
# BASE REPOSITORY
# ============================================

class BaseRepository:
    """Generic find/count/insert/update over one mapped class."""

    model: Type[Base] = Base
    name: str = "records"

    def __init__(self, session: Session):
        self.session = session
        self.compiler = self._build_compiler()

    def _build_compiler(self) -> FilterCompiler:
        return FilterCompiler(self.model)

    def where_clause(self, filter_: Optional[Filter]):
        """Compile a dict filter into a SQL predicate for this table."""
        return self.compiler.compile(filter_)

    def _order_by(self, sort: Optional[SortSpec]) -> List[Any]:
        clauses = []
        for field_name, direction in sort or ():
            column = getattr(self.model, field_name)
            clauses.append(column.asc() if direction > 0 else column.desc())
        # Stable pagination across equal sort keys
        clauses.append(self.model.id.desc())
        return clauses

    def find(
        self,
        filter_: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None
    ) -> List[Any]:
        """
        Find records matching a filter.

        Args:
            filter_: Dict filter
            sort: Sequence of (field, direction) with direction 1 or -1
            skip: Pagination offset
            limit: Maximum results (None for all)

        Returns:
            List of model instances
        """
        query = select(self.model).where(self.where_clause(filter_)).order_by(*self._order_by(sort))
        if skip:
            query = query.offset(skip)
        if limit is not None:
            query = query.limit(limit)

        with query_timer(f"{self.name}.find"):
            return list(self.session.execute(query).scalars().all())

    def find_one(self, filter_: Optional[Filter] = None) -> Optional[Any]:
        rows = self.find(filter_, limit=1)
        return rows[0] if rows else None

    def count(self, filter_: Optional[Filter] = None) -> int:
        """Count records matching a filter."""
        query = select(func.count()).select_from(self.model).where(self.where_clause(filter_))

        with query_timer(f"{self.name}.count"):
            return self.session.execute(query).scalar_one()

    def find_page(self, plan) -> Tuple[List[Any], int]:
        """
        Execute a QueryPlan.

        Returns:
            Tuple of (records, total matching count)
        """
        items = self.find(plan.filter, plan.sort, plan.skip, plan.limit)
        total = self.count(plan.filter)
        return items, total

    def get_by_id(self, record_id: Union[uuid.UUID, str]) -> Optional[Any]:
        """Get record by primary key. Malformed ids return None."""
        record_id = _coerce_uuid(record_id)
        if record_id is None:
            return None
        return self.session.get(self.model, record_id)

    def insert(self, record: Union[Base, Dict[str, Any]]) -> Any:
        """
        Insert a new record.

        Args:
            record: Model instance or dictionary of column values

        Returns:
            The persisted instance (flushed, id assigned)

        Raises:
            DuplicateEntityError: If a uniqueness constraint is violated
        """
        if isinstance(record, dict):
            record = self.model(**record)
        try:
            self.session.add(record)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"{self.model.__name__} already exists: {e.orig}")

        logger.debug(f"Created {self.model.__name__}: {record.id}")
        return record

    def update_by_id(self, record_id: Union[uuid.UUID, str], updates: Dict[str, Any]) -> Optional[Any]:
        """
        Apply a partial update.

        Only keys present in updates are written. Unknown keys are ignored.

        Returns:
            Updated instance, or None when the record does not exist

        Raises:
            DuplicateEntityError: If a uniqueness constraint is violated
        """
        record = self.get_by_id(record_id)
        if record is None:
            return None

        for key, value in updates.items():
            if hasattr(record, key):
                setattr(record, key, value)

        try:
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"{self.model.__name__} update conflicts: {e.orig}")
        return record


# ============================================
# SCAN EVENT REPOSITORY
# ============================================

class ScanEventRepository(BaseRepository):
    """Repository for the append-only scan event log and its rollups."""

    model = ScanEvent
    name = "scan_events"

    def update_by_id(self, record_id, updates):
        raise RepositoryError("Scan events are immutable")

    @timed_query("scan_events.label_counts")
    def label_counts(self, filter_: Optional[Filter]) -> Dict[str, int]:
        """Count events per result label."""
        query = select(
            ScanEvent.result_label,
            func.count()
        ).where(self.where_clause(filter_)).group_by(ScanEvent.result_label)

        return {row[0].value: row[1] for row in self.session.execute(query)}

    @timed_query("scan_events.averages")
    def averages(self, filter_: Optional[Filter]) -> Tuple[Optional[float], Optional[float]]:
        """Average confidence and risk score. NULL confidences are skipped."""
        query = select(
            func.avg(ScanEvent.confidence),
            func.avg(ScanEvent.risk_score)
        ).where(self.where_clause(filter_))

        avg_confidence, avg_risk = self.session.execute(query).one()
        return (
            float(avg_confidence) if avg_confidence is not None else None,
            float(avg_risk) if avg_risk is not None else None
        )

    def count_since(self, filter_: Optional[Filter], since: datetime) -> int:
        """Count events created at or after since."""
        query = select(func.count()).select_from(ScanEvent).where(
            and_(self.where_clause(filter_), ScanEvent.created_at >= since)
        )

        with query_timer("scan_events.count_since"):
            return self.session.execute(query).scalar_one()

    def iter_reasons(self, filter_: Optional[Filter], batch_size: int = 1000) -> Iterator[List[str]]:
        """Stream the reasons list of each matching event, oldest first."""
        query = select(ScanEvent.reasons).where(
            self.where_clause(filter_)
        ).order_by(ScanEvent.created_at, ScanEvent.id).execution_options(yield_per=batch_size)

        for (reasons,) in self.session.execute(query):
            yield reasons or []

    @timed_query("scan_events.document_kind_counts")
    def document_kind_counts(self, filter_: Optional[Filter], limit: int = 10) -> List[Tuple[Optional[str], int]]:
        """
        Count events per document kind, most frequent first.

        Returns:
            List of (document kind name or None when unresolved, count)
        """
        count = func.count(ScanEvent.id).label("count")
        query = select(
            ScanEvent.document_kind_id,
            DocumentKind.name,
            count
        ).outerjoin(
            DocumentKind, DocumentKind.id == ScanEvent.document_kind_id
        ).where(
            self.where_clause(filter_)
        ).group_by(
            ScanEvent.document_kind_id, DocumentKind.name
        ).order_by(count.desc()).limit(limit)

        return [
            (name.value if name is not None else None, total)
            for _, name, total in self.session.execute(query)
        ]

    @timed_query("scan_events.daily_label_counts")
    def daily_label_counts(self, filter_: Optional[Filter]) -> List[Tuple[Any, str, int]]:
        """
        Count events per UTC calendar day and label.

        Returns:
            List of (day, result label, count) ordered by day. The day is
            a date on PostgreSQL and an ISO 'YYYY-MM-DD' string on SQLite.
        """
        day = func.date(ScanEvent.created_at).label("day")
        query = select(
            day,
            ScanEvent.result_label,
            func.count()
        ).where(self.where_clause(filter_)).group_by(day, ScanEvent.result_label).order_by(day)

        return [(row[0], row[1].value, row[2]) for row in self.session.execute(query)]

    @timed_query("scan_events.geo_counts")
    def geo_counts(self, filter_: Optional[Filter]) -> List[Tuple[Optional[str], Optional[str], int]]:
        """Count events per (country, city), most frequent first."""
        count = func.count().label("count")
        query = select(
            ScanEvent.geo_country,
            ScanEvent.geo_city,
            count
        ).where(self.where_clause(filter_)).group_by(
            ScanEvent.geo_country, ScanEvent.geo_city
        ).order_by(count.desc())

        return [(row[0], row[1], row[2]) for row in self.session.execute(query)]


# ============================================
# FRAUD CASE REPOSITORY
# ============================================

def _case_tenant_condition(tenant_id: Any):
    """Cases carry no tenant; match those whose scan event belongs to it."""
    tenant_id = _coerce_uuid(tenant_id)
    if tenant_id is None:
        return false()
    return FraudCase.scan_event_id.in_(
        select(ScanEvent.id).where(ScanEvent.tenant_id == tenant_id)
    )


class FraudCaseRepository(BaseRepository):
    """Repository for fraud case operations."""

    model = FraudCase
    name = "fraud_cases"

    def _build_compiler(self) -> FilterCompiler:
        return FilterCompiler(FraudCase, resolvers={"tenant_id": _case_tenant_condition})

    def find_one_scoped(self, case_id: Union[uuid.UUID, str], scope: Filter) -> Optional[FraudCase]:
        """Get a case by id, only if it also matches scope."""
        case_id = _coerce_uuid(case_id)
        if case_id is None:
            return None
        return self.find_one({**scope, "id": case_id})


# ============================================
# TENANCY REPOSITORIES
# ============================================

class TenantRepository(BaseRepository):
    """Repository for tenant operations."""

    model = Tenant
    name = "tenants"

    def get_by_name(self, name: str) -> Optional[Tenant]:
        query = select(Tenant).where(Tenant.name == name)
        return self.session.execute(query).scalar_one_or_none()


class DocumentKindRepository(BaseRepository):
    """Repository for document kind operations."""

    model = DocumentKind
    name = "document_kinds"


class UserRepository(BaseRepository):
    """Repository for dashboard user accounts."""

    model = User
    name = "users"

    def get_by_email(self, email: str) -> Optional[User]:
        query = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.session.execute(query).scalar_one_or_none()


# ============================================
# AUDIT REPOSITORY
# ============================================

class AuditRepository:
    """Repository for audit log operations."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        old_value: Optional[Dict[str, Any]] = None,
        new_value: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: Type of action
            resource_type: Type of resource affected
            resource_id: ID of resource
            actor_id: User who performed the action
            details: Additional details
            old_value: Value before change
            new_value: Value after change

        Returns:
            Created AuditLog
        """
        log = AuditLog(
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            actor_id=str(actor_id) if actor_id is not None else None,
            details=details,
            old_value=old_value,
            new_value=new_value
        )

        self.session.add(log)
        self.session.flush()
        return log

    def search(
        self,
        action: Optional[AuditAction] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Tuple[List[AuditLog], int]:
        """
        Search audit logs with filters.

        Returns:
            Tuple of (logs list, total count)
        """
        conditions = []

        if action:
            conditions.append(AuditLog.action == action)
        if resource_type:
            conditions.append(AuditLog.resource_type == resource_type)
        if resource_id:
            conditions.append(AuditLog.resource_id == str(resource_id))
        if actor_id:
            conditions.append(AuditLog.actor_id == str(actor_id))
        if start_date:
            conditions.append(AuditLog.timestamp >= start_date)
        if end_date:
            conditions.append(AuditLog.timestamp <= end_date)

        count_query = select(func.count()).select_from(AuditLog)
        if conditions:
            count_query = count_query.where(and_(*conditions))
        total = self.session.execute(count_query).scalar_one()

        query = select(AuditLog)
        if conditions:
            query = query.where(and_(*conditions))
        query = query.order_by(AuditLog.timestamp.desc()).offset(offset).limit(limit)

        logs = list(self.session.execute(query).scalars().all())
        return logs, total
