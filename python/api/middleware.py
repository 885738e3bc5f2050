"""
FastAPI Middleware for the Authentiqa Review API

Provides CORS configuration, request logging, and global error handling.
"""

import re
import time
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from config_manager import ConfigurationError
from errors import ForbiddenError, RateLimitedError, ServiceError, ValidationError, field_errors
from log_utils import sanitize_for_logging
from security_logger import get_security_logger

logger = logging.getLogger(__name__)

EXPOSED_HEADERS = [
    "X-Request-ID",
    "X-Processing-Time-MS",
    "X-RateLimit-Limit",
    "X-RateLimit-Remaining",
    "Retry-After",
]


def _build_cors_regex_pattern(allowed_origins: List[str]) -> tuple:
    """Build regex pattern for CORS from allowed origins list.

    Args:
        allowed_origins: List of allowed origins (may include a leading
            wildcard host label, e.g. https://*.example.com)

    Returns:
        Tuple of (combined_regex_pattern or None, exact_origins list)
    """
    regex_patterns = []
    exact_origins = []

    for origin in allowed_origins:
        if "*" in origin:
            escaped = re.escape(origin).replace(r"\*", r"[\w-]+")
            regex_patterns.append(escaped)
        else:
            exact_origins.append(origin)

    if not regex_patterns:
        return None, exact_origins

    combined_regex = "|".join(f"({p})" for p in regex_patterns)
    if exact_origins:
        exact_escaped = "|".join(re.escape(o) for o in exact_origins)
        combined_regex = f"({combined_regex})|({exact_escaped})"

    return combined_regex, exact_origins


def setup_cors(app: FastAPI, allowed_origins: List[str]) -> None:
    """Configure CORS middleware for the application.

    Origins come from api.cors_origins (or the CORS_ORIGINS environment
    variable, applied by the config manager). Wildcard host labels are
    compiled into an origin regex.
    """
    combined_regex, exact_origins = _build_cors_regex_pattern(allowed_origins)

    options: Dict[str, Any] = dict(
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=EXPOSED_HEADERS,
    )
    if combined_regex:
        app.add_middleware(CORSMiddleware, allow_origin_regex=combined_regex, **options)
    else:
        app.add_middleware(CORSMiddleware, allow_origins=exact_origins, **options)


def client_address(request: Request) -> str:
    """Network address of the caller, as seen by this process."""
    return request.client.host if request.client else "unknown"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for logging all requests with sanitized inputs.

    Also binds the request id and caller address to the security logger so
    security events raised while handling the request can be correlated.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        """Process request and log details."""
        start_time = time.time()
        request_id = sanitize_for_logging(request.headers.get("X-Request-ID", "")) or str(time.time_ns())

        request.state.request_id = request_id
        request.state.start_time = start_time

        get_security_logger().set_request_context(
            request_id=request_id,
            source_ip=client_address(request)
        )

        # Sanitize path to prevent log injection
        sanitized_path = sanitize_for_logging(str(request.url.path))
        logger.info(
            "Request: method=%s path=%s request_id=%s",
            request.method,
            sanitized_path,
            request_id,
        )

        try:
            response = await call_next(request)

            processing_time_ms = int((time.time() - start_time) * 1000)

            response.headers["X-Request-ID"] = request_id
            response.headers["X-Processing-Time-MS"] = str(processing_time_ms)

            logger.info(
                "Response: status=%d processing_time_ms=%d request_id=%s",
                response.status_code,
                processing_time_ms,
                request_id,
            )
            return response

        except Exception as exc:
            processing_time_ms = int((time.time() - start_time) * 1000)
            logger.error(
                "Request failed: error=%s processing_time_ms=%d request_id=%s",
                sanitize_for_logging(str(exc)),
                processing_time_ms,
                request_id,
            )
            raise
        finally:
            get_security_logger().clear_request_context()


def create_error_response(
    code: str,
    message: str,
    status_code: int = 500,
    field: Optional[str] = None,
    suggestion: Optional[str] = None,
    details: Optional[List[Dict[str, Any]]] = None,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    """Create a standardized error response.

    Args:
        code: Error code for programmatic handling
        message: Human-readable message
        status_code: HTTP status code
        field: Field that caused the error (optional)
        suggestion: How to fix the error (optional)
        details: Per-field validation problems (optional)
        headers: Extra response headers (optional)

    Returns:
        JSONResponse with standardized error format
    """
    error_detail: Dict[str, Any] = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if field:
        error_detail["field"] = field
    if suggestion:
        error_detail["suggestion"] = suggestion
    if details:
        error_detail["details"] = details

    return JSONResponse(status_code=status_code, content={"error": error_detail}, headers=headers)


async def service_exception_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError raised by the service or auth layer.

    Denials and validation failures are also written to the security log.
    """
    request_id = getattr(request.state, "request_id", "unknown")
    path = sanitize_for_logging(str(request.url.path))

    logger.warning(
        "Service error: code=%s status=%d path=%s request_id=%s",
        exc.code,
        exc.status_code,
        path,
        request_id,
    )

    security = get_security_logger()
    if isinstance(exc, ForbiddenError):
        security.log_access_denied(
            resource=path,
            user_id=getattr(request.state, "user_id", None),
            role=getattr(request.state, "user_role", ""),
            reason=str(exc),
            tenant_id=getattr(request.state, "tenant_id", None)
        )
    elif isinstance(exc, ValidationError):
        security.log_validation_failure(
            field=exc.field or "",
            error_code=exc.code,
            input_value="",
            source=path,
            additional_context={"details": [d.get("field") for d in exc.details]}
        )

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {}
        if exc.limit is not None:
            headers["X-RateLimit-Limit"] = str(exc.limit)
            headers["X-RateLimit-Remaining"] = "0"
        if exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)

    return create_error_response(
        code=exc.code,
        message=str(exc),
        status_code=exc.status_code,
        field=exc.field,
        suggestion=exc.suggestion,
        details=getattr(exc, "details", None),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render body/query schema violations as a 422 with per-field details."""
    details = field_errors(exc.errors())
    first_field = details[0]["field"] if details else None

    get_security_logger().log_validation_failure(
        field=first_field or "",
        error_code="VALIDATION_ERROR",
        input_value="",
        source=sanitize_for_logging(str(request.url.path)),
        additional_context={"details": [d["field"] for d in details]}
    )

    return create_error_response(
        code="VALIDATION_ERROR",
        message=details[0]["message"] if len(details) == 1 else "Invalid request",
        status_code=422,
        field=first_field,
        details=details,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler for unhandled errors.

    Sanitizes error messages to prevent information leakage.

    Args:
        request: FastAPI request object
        exc: Exception that was raised

    Returns:
        Standardized error response
    """
    request_id = getattr(request.state, "request_id", "unknown")

    # Log the full error for debugging
    logger.error(
        "Unhandled exception: type=%s message=%s request_id=%s",
        type(exc).__name__,
        sanitize_for_logging(str(exc)),
        request_id,
    )

    if isinstance(exc, ConfigurationError):
        return create_error_response(
            code="CONFIGURATION_ERROR",
            message="Service configuration is invalid. Please contact administrator.",
            status_code=503,
        )

    # Generic error - sanitize message to prevent info leakage
    return create_error_response(
        code="INTERNAL_ERROR",
        message="An unexpected error occurred. Please try again later.",
        status_code=500,
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for HTTP exceptions.

    Args:
        request: FastAPI request object
        exc: HTTPException that was raised

    Returns:
        Standardized error response
    """
    request_id = getattr(request.state, "request_id", "unknown")

    logger.warning(
        "HTTP exception: status=%d detail=%s request_id=%s",
        exc.status_code,
        sanitize_for_logging(str(exc.detail)),
        request_id,
    )

    return create_error_response(
        code=f"HTTP_{exc.status_code}",
        message=exc.detail if isinstance(exc.detail, str) else str(exc.detail),
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Configure exception handlers for the application."""
    app.add_exception_handler(ServiceError, service_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
