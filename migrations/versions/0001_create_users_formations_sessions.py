"""create users, formations and sessions

Revision ID: 0001
Revises: 
Create Date: 2026-09-14 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("seniority", sa.String(16), nullable=True),
        sa.Column("business_unit", sa.String(255), nullable=True),
        sa.Column("is_consultant", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_rh", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_coach", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_formateur", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "is_formateur_externe", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("is_manager", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("p1_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("p2_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        sa.CheckConstraint("p1_used >= 0 AND p1_used <= 1", name="ck_users_p1_used"),
        sa.CheckConstraint("p2_used >= 0 AND p2_used <= 1", name="ck_users_p2_used"),
    )
    op.create_index(
        "ix_users_email_lower", "users", [sa.text("lower(email)")], unique=True
    )

    op.create_table(
        "formations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("objectives", sa.Text(), nullable=True),
        sa.Column("prerequisites", sa.Text(), nullable=True),
        sa.Column("duration", sa.String(64), nullable=True),
        sa.Column("modality", sa.String(16), nullable=True),
        sa.Column("seniority_required", sa.String(16), nullable=True),
        sa.Column("theme", sa.String(255), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "sessions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "formation_id",
            sa.Integer(),
            sa.ForeignKey("formations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("location", sa.String(255), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column(
            "instructor_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
    )
    op.create_index("ix_sessions_formation_id", "sessions", ["formation_id"])


def downgrade() -> None:
    op.drop_index("ix_sessions_formation_id", table_name="sessions")
    op.drop_table("sessions")
    op.drop_table("formations")
    op.drop_index("ix_users_email_lower", table_name="users")
    op.drop_table("users")
