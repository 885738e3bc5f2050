"""
Security Event Logging Module

Structured JSON events for the review API, written to a dedicated
security.log:
- VALIDATION_FAILED: rejected scan payloads, filters and request bodies
- LOGIN_FAILED: bad email/password pairs
- ACCESS_DENIED: role checks and cross-tenant access
- RATE_LIMITED: ingestion refused by admission control

SECURITY: Every string that reaches this module is sanitized and truncated.
Passwords and tokens are never passed in.

Request correlation (request id, caller address) lives in a ContextVar so
concurrent requests served from the threadpool never see each other's ids.
"""

import logging
import json
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Dict, Any
from dataclasses import dataclass, field as dataclass_field

from log_utils import sanitize_for_logging

TRUNCATION_MARK = "...(truncated)"
INPUT_PREVIEW_LENGTH = 50
CONTEXT_VALUE_LENGTH = 200


@dataclass(frozen=True)
class RequestContext:
    """Correlation data bound by the request logging middleware"""
    request_id: str = ""
    source_ip: str = ""
    user_id: str = ""


_request_context: ContextVar[RequestContext] = ContextVar("security_request_context", default=RequestContext())


def _clip(text: Any, max_length: int) -> str:
    if text is None or text == "":
        return ""
    sanitized = sanitize_for_logging(str(text))
    if len(sanitized) > max_length:
        return sanitized[:max_length] + TRUNCATION_MARK
    return sanitized


def _scrub(value: Any) -> Any:
    """Recursively sanitize a context value. Scalars pass through."""
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, dict):
        return {_clip(k, 100) or "unknown": _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_scrub(item) for item in value]
    return _clip(value, CONTEXT_VALUE_LENGTH)


@dataclass
class SecurityEvent:
    """One security.log line"""
    event_type: str
    severity: str = "WARNING"
    field: str = ""
    error_code: str = ""
    sanitized_input: str = ""
    source: str = ""
    user_id: str = ""
    tenant_id: str = ""
    context: Dict[str, Any] = dataclass_field(default_factory=dict)
    timestamp: str = dataclass_field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_json(self, request: RequestContext) -> str:
        return json.dumps({
            'timestamp': self.timestamp,
            'event_type': self.event_type,
            'severity': self.severity,
            'field': self.field,
            'error_code': self.error_code,
            'sanitized_input': self.sanitized_input,
            'source': self.source,
            'request_id': request.request_id,
            'user_id': self.user_id or request.user_id,
            'tenant_id': self.tenant_id,
            'source_ip': request.source_ip,
            'context': self.context,
        }, ensure_ascii=False)


class SecurityLogger:
    """Writes SecurityEvents as JSON through the 'security' logger

    The logger propagates, so events also reach the application log.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        log_level: int = logging.WARNING,
        enable_console: bool = False,
        enable_file: bool = True
    ):
        self.log_dir = Path(log_dir)

        self.logger = logging.getLogger('security')
        self.logger.setLevel(log_level)
        self.logger.handlers.clear()

        formatter = logging.Formatter('%(asctime)s - SECURITY - %(levelname)s - %(message)s')
        handlers = []
        if enable_file:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(self.log_dir / "security.log", encoding='utf-8'))
        if enable_console:
            handlers.append(logging.StreamHandler())
        for handler in handlers:
            handler.setLevel(log_level)
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    # ------------------------------------------
    # Request correlation
    # ------------------------------------------

    def set_request_context(
        self,
        request_id: Optional[str] = None,
        user_id: str = "",
        source_ip: str = ""
    ) -> str:
        """Bind correlation data for the current request. Returns the request id."""
        request_id = request_id or f"REQ-{uuid.uuid4().hex[:8]}"
        _request_context.set(RequestContext(request_id=request_id, source_ip=source_ip, user_id=user_id))
        return request_id

    def clear_request_context(self) -> None:
        _request_context.set(RequestContext())

    @property
    def request_context(self) -> RequestContext:
        return _request_context.get()

    # ------------------------------------------
    # Events
    # ------------------------------------------

    def emit(self, event: SecurityEvent) -> None:
        level = logging.getLevelName(event.severity)
        if not isinstance(level, int):
            level = logging.WARNING
        self.logger.log(level, event.to_json(self.request_context))

    def log_validation_failure(
        self,
        field: str,
        error_code: str,
        input_value: str,
        source: str = "",
        additional_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a rejected field. input_value is truncated to a short preview."""
        self.emit(SecurityEvent(
            event_type="VALIDATION_FAILED",
            field=field,
            error_code=error_code,
            sanitized_input=_clip(input_value, INPUT_PREVIEW_LENGTH),
            source=source,
            context=_scrub(additional_context or {})
        ))

    def log_access_denied(
        self,
        resource: str,
        resource_id: str = "",
        user_id: Optional[str] = None,
        role: str = "",
        reason: str = "",
        tenant_id: Optional[str] = None
    ) -> None:
        """Log a role or tenant-scope denial"""
        self.emit(SecurityEvent(
            event_type="ACCESS_DENIED",
            error_code="FORBIDDEN",
            source=resource,
            user_id=str(user_id) if user_id else "",
            tenant_id=str(tenant_id) if tenant_id else "",
            context=_scrub({"resource_id": resource_id, "role": role, "reason": reason, "blocked": True})
        ))

    def log_login_failure(self, email: str, reason: str = "invalid_credentials") -> None:
        """Log a failed login. Only the (sanitized) email is recorded."""
        self.emit(SecurityEvent(
            event_type="LOGIN_FAILED",
            field="email",
            error_code="UNAUTHORIZED",
            sanitized_input=_clip(email, INPUT_PREVIEW_LENGTH),
            source="auth.login",
            context={"reason": reason, "blocked": True}
        ))

    def log_rate_limited(self, client_key: str, limit: int, window_seconds: float) -> None:
        """Log an ingestion request refused by admission control"""
        self.emit(SecurityEvent(
            event_type="RATE_LIMITED",
            error_code="RATE_LIMITED",
            sanitized_input=_clip(client_key, INPUT_PREVIEW_LENGTH),
            source="scan_events.ingest",
            context={"limit": limit, "window_seconds": window_seconds, "blocked": True}
        ))


_security_logger: Optional[SecurityLogger] = None


def get_security_logger(
    log_dir: str = "logs",
    enable_console: bool = False,
    enable_file: bool = True
) -> SecurityLogger:
    """Get or create the process-wide security logger

    Arguments only take effect on the first call.
    """
    global _security_logger
    if _security_logger is None:
        _security_logger = SecurityLogger(
            log_dir=log_dir,
            enable_console=enable_console,
            enable_file=enable_file
        )
    return _security_logger


def reset_security_logger() -> None:
    """Drop the global instance (tests)"""
    global _security_logger
    _security_logger = None
