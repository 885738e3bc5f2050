"""
Error taxonomy for the fraud review service

Every failure raised by the service layer is a ServiceError subclass carrying
an HTTP status and a machine-readable code. The API exception handlers render
them in the standard error envelope; nothing here is fatal to the process.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

# Request locations FastAPI prefixes to pydantic error paths
LOCATION_PREFIXES = ("body", "query", "path", "header")


class ServiceError(Exception):
    """Base class for caller-visible service failures

    Attributes:
        code: Error code for programmatic handling
        status_code: HTTP status the API layer responds with
        field: The field that caused the error (optional)
        suggestion: How the caller can fix the error (optional)
    """
    code = "SERVICE_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: Optional[str] = None,
        suggestion: Optional[str] = None,
    ):
        self.field = field
        self.suggestion = suggestion
        if code:
            self.code = code
        super().__init__(message)


class ValidationError(ServiceError):
    """Missing or malformed request fields. Caller-correctable."""
    code = "VALIDATION_ERROR"
    status_code = 422

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        code: Optional[str] = None,
        suggestion: Optional[str] = None,
        details: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message, field=field, code=code, suggestion=suggestion)
        if details is None:
            details = [{"field": field, "message": message}] if field else []
        self.details = details


class UnauthorizedError(ServiceError):
    """Missing or invalid credential"""
    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(ServiceError):
    """Authenticated principal lacks the role or scope for the action"""
    code = "FORBIDDEN"
    status_code = 403


class NotFoundError(ServiceError):
    """Referenced entity is absent (or deliberately reported as absent)"""
    code = "NOT_FOUND"
    status_code = 404


class DuplicateError(ServiceError):
    """A uniqueness constraint would be violated"""
    code = "DUPLICATE"
    status_code = 409


class DataIntegrityError(ServiceError):
    """A stored reference does not resolve (e.g. case -> missing scan event)"""
    code = "DATA_INTEGRITY_ERROR"
    status_code = 409


class RateLimitedError(ServiceError):
    """Admission ceiling exceeded"""
    code = "RATE_LIMITED"
    status_code = 429

    def __init__(
        self,
        message: str = "Too many requests",
        retry_after: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        super().__init__(message)
        self.retry_after = retry_after
        self.limit = limit


class InternalError(ServiceError):
    """Unexpected store or aggregation failure"""
    code = "INTERNAL_ERROR"
    status_code = 500


def field_errors(errors: Iterable[Mapping[str, Any]]) -> List[Dict[str, str]]:
    """Flatten pydantic error dicts into {field, message} details.

    The field is the top-level key of the offending value, so
    ('body', 'reasons', 1) reports 'reasons'.
    """
    details = []
    for err in errors:
        path = [str(p) for p in err.get("loc", ()) if p not in LOCATION_PREFIXES]
        field = path[0] if path else ""
        if err.get("type") == "missing":
            message = f"Missing field: {field}"
        else:
            message = err.get("msg", "Invalid value")
        details.append({"field": field, "message": message})
    return details
