"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2024-06-01 00:00:00.000000

This is the baseline migration that creates all tables for the Authentiqa
fraud review service. It corresponds to database/models.py.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Native enum types on PostgreSQL, VARCHAR + CHECK elsewhere
tenant_status = sa.Enum('ACTIVE', 'PENDING', 'DISABLED', name='tenant_status')
user_role = sa.Enum('SUPER_ADMIN', 'TENANT_ADMIN', 'ANALYST', name='user_role')
document_kind_name = sa.Enum('Transcript', 'Diploma', 'Attestation', name='document_kind_name')
document_kind_status = sa.Enum('ACTIVE', 'DISABLED', name='document_kind_status')
source_app = sa.Enum('ios', 'android', name='source_app')
result_label = sa.Enum('AUTHENTIC', 'SUSPICIOUS', 'FORGED', name='result_label')
case_status = sa.Enum(
    'OPEN', 'IN_REVIEW', 'CONFIRMED_FRAUD', 'FALSE_POSITIVE', 'CLOSED',
    name='case_status'
)
audit_action = sa.Enum('CREATE', 'UPDATE', 'STATUS_CHANGE', 'LOGIN', name='audit_action')

ENUM_TYPES = (
    tenant_status, user_role, document_kind_name, document_kind_status,
    source_app, result_label, case_status, audit_action,
)

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Create initial database schema."""

    # Create tenants table
    op.create_table(
        'tenants',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(300), nullable=False, unique=True),
        sa.Column('country', sa.String(100)),
        sa.Column('status', tenant_status, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_tenants_status', 'tenants', ['status'])
    op.create_index('ix_tenants_created_at', 'tenants', ['created_at'])

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(320), nullable=False, unique=True),
        sa.Column('password_hash', sa.String(200), nullable=False),
        sa.Column('role', user_role, nullable=False),
        sa.Column('tenant_id', sa.Uuid),
        sa.Column('last_login', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])
    op.create_index('ix_users_created_at', 'users', ['created_at'])

    # Create document_kinds table
    op.create_table(
        'document_kinds',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('tenant_id', sa.Uuid, nullable=False),
        sa.Column('name', document_kind_name, nullable=False),
        sa.Column('version', sa.String(50)),
        sa.Column('status', document_kind_status, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_document_kinds_tenant_id', 'document_kinds', ['tenant_id'])
    op.create_index('ix_document_kinds_created_at', 'document_kinds', ['created_at'])

    # Create scan_events table (append-only)
    op.create_table(
        'scan_events',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('tenant_id', sa.Uuid, nullable=False),
        sa.Column('document_kind_id', sa.Uuid, nullable=False),
        sa.Column('source_app', source_app, nullable=False),
        sa.Column('content_hash', sa.String(200), nullable=False),
        sa.Column('result_label', result_label, nullable=False),
        sa.Column('confidence', sa.Float),
        sa.Column('risk_score', sa.Float, nullable=False),
        sa.Column('reasons', JSONType, nullable=False),
        sa.Column('suspicious_regions_count', sa.Integer, nullable=False),
        sa.Column('extracted_fields', JSONType, nullable=False),
        sa.Column('geo_country', sa.String(100)),
        sa.Column('geo_city', sa.String(100)),
        sa.Column('device_language', sa.String(20)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('confidence IS NULL OR (confidence >= 0 AND confidence <= 1)',
                           name='ck_scan_confidence'),
        sa.CheckConstraint('risk_score >= 0 AND risk_score <= 100', name='ck_scan_risk_score'),
        sa.CheckConstraint('suspicious_regions_count >= 0', name='ck_scan_regions'),
    )
    op.create_index('ix_scan_events_document_kind_id', 'scan_events', ['document_kind_id'])
    op.create_index('ix_scan_events_content_hash', 'scan_events', ['content_hash'])
    op.create_index('ix_scan_events_result_label', 'scan_events', ['result_label'])
    op.create_index('ix_scan_events_risk_score', 'scan_events', ['risk_score'])
    op.create_index('ix_scan_events_created_at', 'scan_events', ['created_at'])
    op.create_index('ix_scan_tenant_created', 'scan_events', ['tenant_id', 'created_at'])
    op.create_index('ix_scan_geo', 'scan_events', ['geo_country', 'geo_city'])

    # Create fraud_cases table
    op.create_table(
        'fraud_cases',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('scan_event_id', sa.Uuid, nullable=False),
        sa.Column('status', case_status, nullable=False),
        sa.Column('assigned_to_user_id', sa.Uuid),
        sa.Column('notes', sa.Text, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_fraud_cases_scan_event_id', 'fraud_cases', ['scan_event_id'])
    op.create_index('ix_fraud_cases_status', 'fraud_cases', ['status'])
    op.create_index('ix_fraud_cases_assigned_to_user_id', 'fraud_cases', ['assigned_to_user_id'])
    op.create_index('ix_fraud_cases_created_at', 'fraud_cases', ['created_at'])

    # Create audit_logs table
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('action', audit_action, nullable=False),
        sa.Column('resource_type', sa.String(50), nullable=False),
        sa.Column('resource_id', sa.String(100)),
        sa.Column('actor_id', sa.String(100)),
        sa.Column('details', JSONType),
        sa.Column('old_value', JSONType),
        sa.Column('new_value', JSONType),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_resource_id', 'audit_logs', ['resource_id'])
    op.create_index('ix_audit_resource', 'audit_logs', ['resource_type', 'resource_id'])


def downgrade() -> None:
    """Drop all tables and types."""
    # Drop tables in reverse order
    op.drop_table('audit_logs')
    op.drop_table('fraud_cases')
    op.drop_table('scan_events')
    op.drop_table('document_kinds')
    op.drop_table('users')
    op.drop_table('tenants')

    # Drop enums (no-op where the dialect has no native enum type)
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.drop(bind, checkfirst=True)
