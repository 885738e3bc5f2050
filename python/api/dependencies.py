"""
Shared FastAPI dependencies

Tests replace these through ``app.dependency_overrides``.
"""

import os
from typing import Generator, Optional

from sqlalchemy.orm import Session

from api.admission import FixedWindowRateLimiter
from config_manager import ConfigManager, get_config
from database.connection import get_db

CONFIG_PATH = os.getenv("CONFIG_PATH")

_config: Optional[ConfigManager] = None
_rate_limiter: Optional[FixedWindowRateLimiter] = None


def get_config_instance() -> ConfigManager:
    """Dependency to get the config instance."""
    global _config
    if _config is None:
        _config = get_config(CONFIG_PATH)
    return _config


def get_session() -> Generator[Session, None, None]:
    """Dependency yielding a request-scoped session (commit on success)."""
    yield from get_db()


def get_rate_limiter() -> FixedWindowRateLimiter:
    """Dependency to get the process-wide ingestion rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        limits = get_config_instance().rate_limit
        _rate_limiter = FixedWindowRateLimiter(
            max_requests=limits.max_requests,
            window_seconds=limits.window_seconds
        )
    return _rate_limiter


def reset_dependencies() -> None:
    """Forget cached config and limiter (for testing)."""
    global _config, _rate_limiter
    _config = None
    _rate_limiter = None
