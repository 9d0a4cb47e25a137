"""track when each record took its P1/P2 slot

Revision ID: 0004
Revises: 0003
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0004"
down_revision = "0003"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "formation_interests",
        sa.Column("quota_reserved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "registrations",
        sa.Column("quota_reserved_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.execute(
        "UPDATE formation_interests SET quota_reserved_at = expressed_at"
        " WHERE priority IN ('P1', 'P2') AND status IN ('pending', 'approved')"
    )
    op.execute(
        "UPDATE registrations SET quota_reserved_at = registered_at"
        " WHERE priority IN ('P1', 'P2') AND status IN ('validated', 'completed')"
    )


def downgrade() -> None:
    op.drop_column("registrations", "quota_reserved_at")
    op.drop_column("formation_interests", "quota_reserved_at")
