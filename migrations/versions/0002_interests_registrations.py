"""formation interests and registrations

Revision ID: 0002
Revises: 0001
Create Date: 2026-09-15 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "formation_interests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "formation_id",
            sa.Integer(),
            sa.ForeignKey("formations.id", ondelete="CASCADE"),
            nullable=True,
        ),
        sa.Column("priority", sa.String(2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("coach_status", sa.String(16), nullable=True),
        sa.Column(
            "coach_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("coach_validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "expressed_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column("custom_title", sa.String(255), nullable=True),
        sa.Column("custom_description", sa.Text(), nullable=True),
        sa.Column("custom_link", sa.String(512), nullable=True),
        sa.Column("custom_planned_date", sa.Date(), nullable=True),
    )
    op.create_index(
        "ix_formation_interests_user_formation",
        "formation_interests",
        ["user_id", "formation_id"],
    )

    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "formation_id",
            sa.Integer(),
            sa.ForeignKey("formations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("priority", sa.String(2), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column(
            "registered_at", sa.DateTime(timezone=True), server_default=sa.func.now()
        ),
        sa.Column("attended", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index(
        "ix_registrations_session_status", "registrations", ["session_id", "status"]
    )
    op.create_index(
        "ix_registrations_user_formation", "registrations", ["user_id", "formation_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_registrations_user_formation", table_name="registrations")
    op.drop_index("ix_registrations_session_status", table_name="registrations")
    op.drop_table("registrations")
    op.drop_index(
        "ix_formation_interests_user_formation", table_name="formation_interests"
    )
    op.drop_table("formation_interests")
