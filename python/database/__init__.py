"""
Database Package for the Authentiqa Fraud Review Service

This package provides:
- SQLAlchemy ORM models for all entities
- FastAPI Dependency Injection for database sessions
- Unit of Work pattern for transaction management
- Repository pattern for data access over a dict filter grammar
- Tenant scoping, query plans, analytics and case services
- Performance monitoring and query timing
"""

from database.models import (
    Base,
    Tenant,
    User,
    DocumentKind,
    ScanEvent,
    FraudCase,
    AuditLog,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    get_slow_query_report,
    reset_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base
    'Base',
    # Models
    'Tenant',
    'User',
    'DocumentKind',
    'ScanEvent',
    'FraudCase',
    'AuditLog',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'UnitOfWork',
    'get_db',
    'get_db_provider',
    'init_db',
    'close_db',
    'create_test_provider',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'get_slow_query_report',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
