"""add_orchestration_runs

Revision ID: 20261018_orchestration_runs
Revises: 20261018_archive_tables
Create Date: 2026-10-18

Orchestration run tracking.

The partial unique index ux_orchestration_runs_single_active allows at most one
row in Queued or Running, so two concurrent run requests cannot both be queued.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_orchestration_runs'
down_revision = '20261018_archive_tables'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute('''
        CREATE TABLE IF NOT EXISTS orchestration_runs (
            id BIGSERIAL PRIMARY KEY,
            request_id UUID NOT NULL UNIQUE,
            requested_by TEXT,
            status TEXT NOT NULL DEFAULT 'Queued',
            requested_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            started_at TIMESTAMP WITH TIME ZONE,
            completed_at TIMESTAMP WITH TIME ZONE,
            current_step TEXT,
            current_progress TEXT,
            total_items INTEGER,
            processed_items INTEGER,
            error_message TEXT,
            sync_accounts_inserted INTEGER NOT NULL DEFAULT 0,
            sync_accounts_updated INTEGER NOT NULL DEFAULT 0,
            sync_accounts_total INTEGER NOT NULL DEFAULT 0,
            jobs_created INTEGER NOT NULL DEFAULT 0,
            jobs_skipped INTEGER NOT NULL DEFAULT 0,
            credentials_verified INTEGER NOT NULL DEFAULT 0,
            credentials_failed INTEGER NOT NULL DEFAULT 0,
            scraping_requested INTEGER NOT NULL DEFAULT 0,
            scraping_failed INTEGER NOT NULL DEFAULT 0,
            statuses_checked INTEGER NOT NULL DEFAULT 0,
            statuses_failed INTEGER NOT NULL DEFAULT 0,
            CONSTRAINT ck_orchestration_runs_status
                CHECK (status IN ('Queued', 'Running', 'Completed', 'Failed')),
            CONSTRAINT ck_orchestration_runs_completed_at
                CHECK ((status IN ('Completed', 'Failed')) = (completed_at IS NOT NULL))
        );
    ''')

    op.execute('''
        CREATE UNIQUE INDEX IF NOT EXISTS ux_orchestration_runs_single_active
        ON orchestration_runs ((TRUE))
        WHERE status IN ('Queued', 'Running');
    ''')

    op.execute('''
        CREATE INDEX IF NOT EXISTS idx_orchestration_runs_requested_at
        ON orchestration_runs(requested_at DESC);
    ''')

    op.execute('''
        CREATE INDEX IF NOT EXISTS idx_orchestration_runs_completed
        ON orchestration_runs(completed_at DESC)
        WHERE status = 'Completed';
    ''')


def downgrade() -> None:
    op.execute('DROP TABLE IF EXISTS orchestration_runs;')
