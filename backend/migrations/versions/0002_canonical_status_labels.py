"""rewrite legacy repair status labels to their canonical form

Revision ID: 0002_canonical_status_labels
Revises: 0001_initial_schema
Create Date: 2026-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0002_canonical_status_labels'
down_revision = '0001_initial_schema'
branch_labels = None
depends_on = None

# Frozen copy: migrations must not change when the runtime constants do
LEGACY_STATUS_LABELS = {
    'Sent to Company for Repair': 'Sent to Manufacturer',
}


def upgrade():
    bind = op.get_bind()
    for legacy, canonical in LEGACY_STATUS_LABELS.items():
        for table, column in (('repairs', 'status'), ('status_change_logs', 'old_status'), ('status_change_logs', 'new_status')):
            bind.execute(
                sa.text(f"UPDATE {table} SET {column} = :canonical WHERE {column} = :legacy"),
                {'canonical': canonical, 'legacy': legacy},
            )


def downgrade():
    # Not reversible: canonical rows that were never legacy cannot be told apart
    pass
