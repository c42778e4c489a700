"""add_archive_tables

Revision ID: 20261018_archive_tables
Revises:
Create Date: 2026-10-18

Archive tables for the data-lifecycle engine.

Each archive table mirrors the columns of its operational table (CREATE TABLE ... LIKE)
and adds:
- original_*_id: id of the operational row, UNIQUE so a re-copied row is upserted, not duplicated
- archived_at / archived_by: when and by what the row was archived

Also adds indexes on the operational age columns and on archived_at so archival
and purge batches are index scans.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_archive_tables'
down_revision = None
branch_labels = None
depends_on = None


# (operational table, archive table, age column, source id column)
ARCHIVE_TABLES = [
    ("adr_jobs", "adr_job_archives", "created_at", "original_adr_job_id"),
    ("adr_job_executions", "adr_job_execution_archives", "created_at", "original_adr_job_execution_id"),
    ("audit_logs", "audit_log_archives", "timestamp", "original_audit_log_id"),
    ("job_executions", "job_execution_archives", "created_at", "original_job_execution_id"),
]


def upgrade() -> None:
    for operational, archive, age_column, source_id in ARCHIVE_TABLES:
        op.execute(f'''
            CREATE TABLE IF NOT EXISTS {archive} (LIKE {operational} INCLUDING DEFAULTS INCLUDING IDENTITY);
        ''')

        op.execute(f'''
            ALTER TABLE {archive}
                ADD COLUMN IF NOT EXISTS {source_id} BIGINT NOT NULL,
                ADD COLUMN IF NOT EXISTS archived_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                ADD COLUMN IF NOT EXISTS archived_by TEXT;
        ''')

        op.execute(f'''
            DO $$
            BEGIN
                IF NOT EXISTS (
                    SELECT 1 FROM pg_constraint WHERE conname = 'pk_{archive}'
                ) THEN
                    ALTER TABLE {archive} ADD CONSTRAINT pk_{archive} PRIMARY KEY (id);
                END IF;
                IF NOT EXISTS (
                    SELECT 1 FROM pg_constraint WHERE conname = 'uq_{archive}_{source_id}'
                ) THEN
                    ALTER TABLE {archive} ADD CONSTRAINT uq_{archive}_{source_id} UNIQUE ({source_id});
                END IF;
            END $$;
        ''')

        op.execute(f'''
            CREATE INDEX IF NOT EXISTS idx_{archive}_archived_at
            ON {archive}(archived_at, id);
        ''')

        op.execute(f'''
            CREATE INDEX IF NOT EXISTS idx_{operational}_archival
            ON {operational}({age_column}, id)
            WHERE is_deleted = FALSE;
        ''')


def downgrade() -> None:
    for operational, archive, _, _ in ARCHIVE_TABLES:
        op.execute(f'DROP INDEX IF EXISTS idx_{operational}_archival;')
        op.execute(f'DROP TABLE IF EXISTS {archive};')
