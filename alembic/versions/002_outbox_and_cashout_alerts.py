"""Outbox for change events; operations alert marker on cashouts.

Revision ID: 002_outbox_and_cashout_alerts
Revises: 001_baseline
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "002_outbox_and_cashout_alerts"
down_revision: str | None = "001_baseline"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.execute("""
        CREATE TABLE IF NOT EXISTS outbox_events (
            id BIGSERIAL PRIMARY KEY,
            stream VARCHAR(64) NOT NULL,
            doc_id VARCHAR(128) NOT NULL,
            payload TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            published_at TIMESTAMPTZ
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_outbox_unpublished
        ON outbox_events(published_at, id)
    """)
    op.execute("ALTER TABLE cashouts ADD COLUMN IF NOT EXISTS operations_notified_at TIMESTAMPTZ")


def downgrade() -> None:
    op.execute("ALTER TABLE cashouts DROP COLUMN IF EXISTS operations_notified_at")
    op.execute("DROP TABLE IF EXISTS outbox_events")
