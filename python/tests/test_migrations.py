"""
Tests for the baseline Alembic migration.
"""

import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from database.models import Base

MIGRATION = Path(__file__).parent.parent / "alembic" / "versions" / "001_initial.py"


@pytest.fixture
def migration():
    spec = importlib.util.spec_from_file_location("initial_migration", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def connection():
    engine = create_engine("sqlite://")
    with engine.begin() as conn:
        yield conn
    engine.dispose()


def run(conn, step):
    with Operations.context(MigrationContext.configure(conn)):
        step()


def test_is_baseline(migration):
    assert migration.revision == "001_initial"
    assert migration.down_revision is None


def test_upgrade_matches_models(migration, connection):
    run(connection, migration.upgrade)

    inspector = inspect(connection)
    assert set(inspector.get_table_names()) == set(Base.metadata.tables)
    for name, table in Base.metadata.tables.items():
        columns = {c["name"] for c in inspector.get_columns(name)}
        assert columns == set(table.columns.keys()), name


def test_upgrade_creates_composite_indexes(migration, connection):
    run(connection, migration.upgrade)

    indexes = {i["name"] for i in inspect(connection).get_indexes("scan_events")}
    assert {"ix_scan_tenant_created", "ix_scan_geo"} <= indexes


def test_downgrade_drops_everything(migration, connection):
    run(connection, migration.upgrade)
    run(connection, migration.downgrade)
    assert inspect(connection).get_table_names() == []
