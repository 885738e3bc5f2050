"""
Shared fixtures: in-memory SQLite database, principals and record factories.
"""

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import create_test_provider, set_db_provider
from database.models import (
    Base,
    DocumentKind,
    DocumentKindName,
    FraudCase,
    ResultLabel,
    ScanEvent,
    SourceApp,
    Tenant,
)
from database.scope import Analyst, SuperAdmin, TenantAdmin
from security_logger import get_security_logger, reset_security_logger


@pytest.fixture(autouse=True)
def security_logger_without_file():
    """Keep security events off disk during tests."""
    reset_security_logger()
    get_security_logger(enable_file=False)
    yield
    reset_security_logger()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    provider = create_test_provider(engine)
    provider.init()
    set_db_provider(provider)
    yield provider
    set_db_provider(None)


@pytest.fixture
def session(db_provider):
    session = db_provider.session_factory()
    yield session
    session.rollback()
    session.close()


# ============================================
# RECORD FACTORIES
# ============================================

@pytest.fixture
def make_tenant(session):
    def _make(name=None, country="Tunisia"):
        tenant = Tenant(name=name or f"Tenant {uuid.uuid4().hex[:8]}", country=country)
        session.add(tenant)
        session.flush()
        return tenant
    return _make


@pytest.fixture
def make_kind(session):
    def _make(tenant_id, name=DocumentKindName.TRANSCRIPT, version="2026.1"):
        kind = DocumentKind(tenant_id=tenant_id, name=name, version=version)
        session.add(kind)
        session.flush()
        return kind
    return _make


@pytest.fixture
def make_event(session):
    def _make(tenant_id, **overrides):
        values = dict(
            tenant_id=tenant_id,
            document_kind_id=uuid.uuid4(),
            source_app=SourceApp.IOS,
            content_hash=uuid.uuid4().hex,
            result_label=ResultLabel.AUTHENTIC,
            confidence=0.9,
            risk_score=10,
            reasons=[],
            extracted_fields={},
            created_at=datetime.now(timezone.utc) - timedelta(hours=1),
        )
        values.update(overrides)
        event = ScanEvent(**values)
        session.add(event)
        session.flush()
        return event
    return _make


@pytest.fixture
def make_case(session):
    def _make(scan_event_id, **overrides):
        case = FraudCase(scan_event_id=scan_event_id, **overrides)
        session.add(case)
        session.flush()
        return case
    return _make


# ============================================
# PRINCIPALS
# ============================================

@pytest.fixture
def super_admin():
    return SuperAdmin(user_id=uuid.uuid4())


@pytest.fixture
def tenant_admin_for():
    def _make(tenant_id):
        return TenantAdmin(tenant_id=tenant_id, user_id=uuid.uuid4())
    return _make


@pytest.fixture
def analyst():
    return Analyst(tenant_id=uuid.uuid4(), user_id=uuid.uuid4())
