"""
FastAPI Authentiqa Review API Server

REST endpoints for device scan ingestion and the multi-tenant review
dashboard: tenants, document kinds, scan events, analytics and fraud cases.

Every authenticated route converts the caller into a Principal and hands it
to a service; tenant scoping happens in the service layer, never here.

Usage:
    uvicorn api.server:app --reload --port 8000
"""

import math
import os
import time
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import PlainTextResponse, RedirectResponse
import psutil
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.orm import Session

from api.admission import FixedWindowRateLimiter
from api.auth import (
    authenticate,
    create_access_token,
    get_current_principal,
    get_current_user,
    user_to_dict,
)
from api.dependencies import get_config_instance, get_rate_limiter, get_session
from api.middleware import (
    RequestLoggingMiddleware,
    client_address,
    setup_cors,
    setup_exception_handlers,
)
from api.models import (
    DocumentKindCreate,
    DocumentKindUpdate,
    ErrorResponse,
    FraudCaseCreate,
    FraudCaseUpdate,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    ScanEventCreated,
    StatusUpdate,
    TenantCreate,
    TenantUpdate,
)
from config_manager import ConfigManager, ConfigurationError
from database.analytics_service import AnalyticsService
from database.case_service import CaseService
from database.connection import DatabaseSettings, close_db, get_db_provider, init_db
from database.models import AuditAction, User
from database.monitoring import check_health, configure_monitoring, record_rate_limited
from database.query_plan import parse_datetime, parse_enum, parse_pagination
from database.repositories import AuditRepository
from database.scan_event_service import ScanEventCreate, ScanEventService
from database.scope import Principal, require_role, resolve_scope
from database.tenant_service import TenantService, document_kind_to_dict, tenant_to_dict
from errors import RateLimitedError
from security_logger import get_security_logger

_config = get_config_instance()

# Setup logging
logging.basicConfig(
    level=getattr(logging, _config.logging.level.upper(), logging.INFO),
    format=_config.logging.format,
)
logger = logging.getLogger(__name__)

# Environment variables with defaults
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "8000"))

_startup_time: Optional[datetime] = None

AUTH_ERRORS = {
    401: {"model": ErrorResponse, "description": "Missing or invalid token"},
    403: {"model": ErrorResponse, "description": "Role or tenant scope does not allow this"},
}
VALIDATION_ERRORS = {422: {"model": ErrorResponse, "description": "Validation error"}}
NOT_FOUND = {404: {"model": ErrorResponse, "description": "Not found"}}


# Create FastAPI application
app = FastAPI(
    title="Authentiqa Review API",
    description="Fraud scan ingestion and tenant-scoped review dashboard",
    version="1.0.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
)

# Setup middleware
setup_cors(app, _config.api.cors_origins)
app.add_middleware(RequestLoggingMiddleware)
setup_exception_handlers(app)


@app.on_event("startup")
def startup():
    """Open the database and the security log."""
    global _startup_time

    logger.info("Starting Authentiqa Review API...")
    start_time = time.time()

    try:
        get_security_logger(log_dir=_config.api.security_log_dir)
        configure_monitoring(
            slow_query_threshold_ms=_config.database.slow_query_ms,
            warning_threshold_ms=_config.database.slow_query_ms / 2
        )
        init_db(DatabaseSettings.from_config(_config.database))
        _startup_time = datetime.now(timezone.utc)
        logger.info("API ready in %.2f seconds", time.time() - start_time)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        raise


@app.on_event("shutdown")
def shutdown():
    """Cleanup on shutdown."""
    logger.info("Shutting down Authentiqa Review API...")
    close_db()


# ============================================
# AUTH
# ============================================

@app.post(
    "/api/auth/login",
    response_model=LoginResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid credentials"}, **VALIDATION_ERRORS},
    summary="Log in",
)
def login(
    body: LoginRequest,
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    """Exchange email and password for a bearer token."""
    user = authenticate(db, body.email, body.password)
    return {"user": user_to_dict(user), "token": create_access_token(user, config)}


@app.get("/api/auth/me", responses=AUTH_ERRORS, summary="Current user")
def me(user: User = Depends(get_current_user)):
    return {"user": user_to_dict(user)}


# ============================================
# TENANTS
# ============================================

@app.get("/api/tenants", responses=AUTH_ERRORS, summary="List tenants")
def list_tenants(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    """All tenants for SUPER_ADMIN; the caller's own tenant for TENANT_ADMIN."""
    tenants = TenantService(db).list_tenants(principal)
    return {"tenants": [tenant_to_dict(t) for t in tenants]}


@app.post(
    "/api/tenants",
    status_code=201,
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS, 409: {"model": ErrorResponse, "description": "Duplicate name"}},
    summary="Create tenant",
)
def create_tenant(
    body: TenantCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    tenant = TenantService(db).create_tenant(principal, body.model_dump(exclude_unset=True))
    return {"tenant": tenant_to_dict(tenant)}


@app.get("/api/tenants/{tenant_id}", responses={**AUTH_ERRORS, **NOT_FOUND}, summary="Get tenant")
def get_tenant(
    tenant_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    return {"tenant": tenant_to_dict(TenantService(db).get_tenant(principal, tenant_id))}


@app.patch(
    "/api/tenants/{tenant_id}",
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS, **NOT_FOUND},
    summary="Update tenant",
)
def update_tenant(
    tenant_id: str,
    body: TenantUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    tenant = TenantService(db).update_tenant(principal, tenant_id, body.model_dump(exclude_unset=True))
    return {"tenant": tenant_to_dict(tenant)}


@app.patch(
    "/api/tenants/{tenant_id}/status",
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS, **NOT_FOUND},
    summary="Set tenant status",
)
def set_tenant_status(
    tenant_id: str,
    body: StatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    tenant = TenantService(db).set_tenant_status(principal, tenant_id, body.status)
    return {"tenant": tenant_to_dict(tenant)}


# ============================================
# DOCUMENT KINDS
# ============================================

@app.get(
    "/api/tenants/{tenant_id}/document-kinds",
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS},
    summary="List a tenant's document kinds",
)
def list_document_kinds(
    tenant_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    kinds = TenantService(db).list_document_kinds(principal, tenant_id)
    return {"documentKinds": [document_kind_to_dict(k) for k in kinds]}


@app.post(
    "/api/tenants/{tenant_id}/document-kinds",
    status_code=201,
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS},
    summary="Register a document kind",
)
def create_document_kind(
    tenant_id: str,
    body: DocumentKindCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    kind = TenantService(db).create_document_kind(principal, tenant_id, body.model_dump(exclude_unset=True))
    return {"documentKind": document_kind_to_dict(kind)}


@app.patch(
    "/api/document-kinds/{kind_id}",
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS, **NOT_FOUND},
    summary="Update a document kind",
)
def update_document_kind(
    kind_id: str,
    body: DocumentKindUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    kind = TenantService(db).update_document_kind(principal, kind_id, body.model_dump(exclude_unset=True))
    return {"documentKind": document_kind_to_dict(kind)}


@app.patch(
    "/api/document-kinds/{kind_id}/status",
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS, **NOT_FOUND},
    summary="Enable or disable a document kind",
)
def set_document_kind_status(
    kind_id: str,
    body: StatusUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    kind = TenantService(db).set_document_kind_status(principal, kind_id, body.status)
    return {"documentKind": document_kind_to_dict(kind)}


# ============================================
# SCAN EVENTS
# ============================================

def enforce_ingestion_limit(
    request: Request,
    response: Response,
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
    config: ConfigManager = Depends(get_config_instance),
) -> None:
    """Dependency: count this attempt against the caller's window.

    Runs before body validation, so malformed submissions count too.
    """
    if not config.rate_limit.enabled:
        return

    client = client_address(request)
    decision = limiter.hit(client)
    response.headers.update(decision.headers())

    if not decision.allowed:
        get_security_logger().log_rate_limited(client, decision.limit, limiter.window_seconds)
        record_rate_limited()
        raise RateLimitedError(retry_after=math.ceil(decision.reset_in), limit=decision.limit)


@app.post(
    "/api/scan-events",
    status_code=201,
    response_model=ScanEventCreated,
    responses={
        **VALIDATION_ERRORS,
        429: {"model": ErrorResponse, "description": "Too many requests from this address"},
    },
    dependencies=[Depends(enforce_ingestion_limit)],
    summary="Submit a scan result",
    description="Unauthenticated device ingestion endpoint, rate limited per client address",
)
def ingest_scan_event(
    body: ScanEventCreate,
    db: Session = Depends(get_session),
):
    event_id = ScanEventService(db).ingest(body)
    return {"id": str(event_id)}


@app.get("/api/scan-events", responses={**AUTH_ERRORS, **VALIDATION_ERRORS}, summary="List scan events")
def list_scan_events(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    """Filter, search, sort and paginate scan events within the caller's scope.

    Query: page, pageSize, tenantId, documentKindId, resultLabel, country,
    city, minConfidence, maxConfidence, minRiskScore, maxRiskScore,
    dateFrom, dateTo, q, sortBy, sortDir
    """
    return ScanEventService(db).list_events(
        principal,
        dict(request.query_params),
        max_page_size=config.pagination.max_event_page_size
    )


@app.get("/api/scan-events/{event_id}", responses={**AUTH_ERRORS, **NOT_FOUND}, summary="Get scan event")
def get_scan_event(
    event_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    return {"scanEvent": ScanEventService(db).get_event(principal, event_id).to_dict()}


# ============================================
# ANALYTICS
# ============================================

def analytics_scope(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> Dict[str, Any]:
    """Dependency: scope filter for analytics, optionally narrowed by tenantId."""
    tenant_id = request.query_params.get("tenantId")
    base = {"tenant_id": tenant_id} if tenant_id else {}
    return resolve_scope(principal, base, "tenant_id")


@app.get("/api/analytics/overview", responses=AUTH_ERRORS, summary="KPI overview")
def analytics_overview(
    scope: Dict[str, Any] = Depends(analytics_scope),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    return AnalyticsService(db, config).compute_overview(scope)


@app.get(
    "/api/analytics/timeseries",
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS},
    summary="Label counts per day or week",
)
def analytics_timeseries(
    date_from: Optional[str] = Query(default=None, alias="dateFrom"),
    date_to: Optional[str] = Query(default=None, alias="dateTo"),
    granularity: str = "day",
    scope: Dict[str, Any] = Depends(analytics_scope),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
) -> List[Dict[str, Any]]:
    return AnalyticsService(db, config).compute_timeseries(
        scope,
        date_from=parse_datetime("dateFrom", date_from) if date_from else None,
        date_to=parse_datetime("dateTo", date_to) if date_to else None,
        granularity=granularity,
    )


@app.get("/api/analytics/geo", responses=AUTH_ERRORS, summary="Counts by country and city")
def analytics_geo(
    scope: Dict[str, Any] = Depends(analytics_scope),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    return AnalyticsService(db, config).compute_geo_breakdown(scope)


# ============================================
# FRAUD CASES
# ============================================

@app.get("/api/fraud-cases", responses={**AUTH_ERRORS, **VALIDATION_ERRORS}, summary="List fraud cases")
def list_fraud_cases(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    """Query: page, pageSize, status, assignedToUserId, tenantId, dateFrom, dateTo"""
    return CaseService(db).list_cases(
        principal,
        dict(request.query_params),
        max_page_size=config.pagination.max_case_page_size
    )


@app.post(
    "/api/fraud-cases",
    status_code=201,
    responses={**AUTH_ERRORS, **VALIDATION_ERRORS, **NOT_FOUND},
    summary="Open a fraud case",
)
def create_fraud_case(
    body: FraudCaseCreate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    case = CaseService(db).create_case(
        principal,
        body.scan_event_id,
        status=body.status,
        assigned_to_user_id=body.assigned_to_user_id,
        notes=body.notes,
    )
    return {"id": str(case.id), "fraudCase": case.to_dict()}


@app.get("/api/fraud-cases/{case_id}", responses={**AUTH_ERRORS, **NOT_FOUND}, summary="Get fraud case")
def get_fraud_case(
    case_id: str,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    return {"fraudCase": CaseService(db).get_case(principal, case_id).to_dict()}


@app.patch(
    "/api/fraud-cases/{case_id}",
    responses={
        **AUTH_ERRORS,
        **VALIDATION_ERRORS,
        **NOT_FOUND,
        409: {"model": ErrorResponse, "description": "Case references a missing scan event"},
    },
    summary="Update a fraud case",
)
def update_fraud_case(
    case_id: str,
    body: FraudCaseUpdate,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
):
    case = CaseService(db).update_case(principal, case_id, body.model_dump(by_alias=True, exclude_unset=True))
    return {"fraudCase": case.to_dict()}


# ============================================
# AUDIT TRAIL
# ============================================

@app.get("/api/audit-logs", responses={**AUTH_ERRORS, **VALIDATION_ERRORS}, summary="Search the audit trail")
def list_audit_logs(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_session),
    config: ConfigManager = Depends(get_config_instance),
):
    """SUPER_ADMIN only. Query: action, resourceType, resourceId, actorId, dateFrom, dateTo, page, pageSize"""
    require_role(principal)
    params = request.query_params
    page, page_size = parse_pagination(params, config.pagination.max_case_page_size)
    action = params.get("action")
    date_from = params.get("dateFrom")
    date_to = params.get("dateTo")

    logs, total = AuditRepository(db).search(
        action=parse_enum("action", action, AuditAction) if action else None,
        resource_type=params.get("resourceType") or None,
        resource_id=params.get("resourceId") or None,
        actor_id=params.get("actorId") or None,
        start_date=parse_datetime("dateFrom", date_from) if date_from else None,
        end_date=parse_datetime("dateTo", date_to) if date_to else None,
        offset=(page - 1) * page_size,
        limit=page_size,
    )
    return {
        "items": [log.to_dict() for log in logs],
        "total": total,
        "page": page,
        "pageSize": page_size,
    }


# ============================================
# OPERATIONS
# ============================================

@app.get(
    "/api/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check service and database health",
)
def health_check():
    """Return health status. Always returns HTTP 200."""
    uptime_seconds = None
    if _startup_time:
        uptime_seconds = int((datetime.now(timezone.utc) - _startup_time).total_seconds())
    memory_usage_mb = round(psutil.Process().memory_info().rss / (1024 * 1024), 2)

    try:
        status = check_health(get_db_provider().session_factory)
    except RuntimeError as e:
        # Provider not initialized yet
        return HealthResponse(
            status="error",
            database="error",
            uptime_seconds=uptime_seconds,
            memory_usage_mb=memory_usage_mb,
            error_message=str(e),
        )

    return HealthResponse(
        status="healthy" if status.healthy else "degraded",
        database="ok" if status.healthy else "error",
        latency_ms=round(status.latency_ms, 2),
        uptime_seconds=uptime_seconds,
        memory_usage_mb=memory_usage_mb,
        error_message=status.error,
    )


@app.get("/api/metrics", include_in_schema=False)
def metrics():
    """Prometheus exposition."""
    return PlainTextResponse(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# Root redirect to docs
@app.get("/", include_in_schema=False)
def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/api/docs")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
