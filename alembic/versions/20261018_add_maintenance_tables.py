"""add_maintenance_tables

Revision ID: 20261018_maintenance
Revises: 20261018_orchestration_runs
Create Date: 2026-10-18

- maintenance_configuration: runtime-editable retention settings (one row, config_key 'default')
- maintenance_locks: lease rows used as the maintenance single-flight guard
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_maintenance'
down_revision = '20261018_orchestration_runs'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('''
        CREATE TABLE IF NOT EXISTS maintenance_configuration (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            config_key TEXT NOT NULL DEFAULT 'default',
            job_retention_months INTEGER NOT NULL DEFAULT 12,
            job_execution_retention_months INTEGER NOT NULL DEFAULT 12,
            audit_log_retention_days INTEGER NOT NULL DEFAULT 90,
            archive_retention_years INTEGER NOT NULL DEFAULT 7,
            log_retention_days INTEGER NOT NULL DEFAULT 30,
            batch_size INTEGER NOT NULL DEFAULT 5000,
            archival_enabled BOOLEAN NOT NULL DEFAULT TRUE,
            is_deleted BOOLEAN NOT NULL DEFAULT FALSE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
            updated_by TEXT,
            CONSTRAINT unique_maintenance_config_key UNIQUE(config_key),
            CONSTRAINT ck_maintenance_configuration_positive CHECK (
                job_retention_months > 0
                AND job_execution_retention_months > 0
                AND audit_log_retention_days > 0
                AND archive_retention_years > 0
                AND log_retention_days > 0
                AND batch_size > 0
            )
        );
    ''')

    op.execute('''
        CREATE TABLE IF NOT EXISTS maintenance_locks (
            lock_name TEXT PRIMARY KEY,
            holder_id TEXT NOT NULL,
            acquired_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMP WITH TIME ZONE NOT NULL
        );
    ''')


def downgrade() -> None:
    op.execute('DROP TABLE IF EXISTS maintenance_locks;')
    op.execute('DROP TABLE IF EXISTS maintenance_configuration;')
