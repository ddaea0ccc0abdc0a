"""Initial schema — users, profiles, matches, notifications, audit log.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from __future__ import annotations

from typing import Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, tuple[str, ...], None] = None
depends_on: Union[str, tuple[str, ...], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=True), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    ]


def _profile_columns() -> list[sa.Column]:
    return [
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("organ_type", sa.String(50), nullable=False),
        sa.Column("blood_group", sa.String(3), nullable=False, comment="ABO/Rh, e.g. 'O-'"),
        sa.Column("age", sa.Integer()),
        sa.Column("age_group", sa.String(20), nullable=False),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(100)),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("verified_at", sa.DateTime(timezone=True)),
        sa.Column("verified_by", sa.String(100), comment="Doctor/admin ID or 'system'"),
        sa.Column("verification_notes", sa.Text()),
        sa.Column("last_pass_at", sa.DateTime(timezone=True)),
    ]


def upgrade() -> None:
    # ── Standalone tables (no FKs) ─────────────────────────────────────

    op.create_table(
        "audit_log",
        sa.Column("event_type", sa.String(100), nullable=False, index=True),
        sa.Column("profile_id", sa.String(36), index=True),
        sa.Column("actor_id", sa.String(100), comment="User ID, admin ID, or 'system'"),
        sa.Column("actor_role", sa.String(50), comment="doctor, admin, system"),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "users",
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("role", sa.String(20), nullable=False),
        sa.Column("full_name", sa.String(200)),
        sa.Column("phone", sa.String(20)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ── Tables with FK to users ────────────────────────────────────────

    op.create_table(
        "donor_profiles",
        *_profile_columns(),
        sa.Column("medical_history", sa.Text()),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "recipient_profiles",
        *_profile_columns(),
        sa.Column("urgency_level", sa.String(20), nullable=False),
        sa.Column("medical_condition", sa.Text()),
        sa.Column("hospital_name", sa.String(200)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "notifications",
        sa.Column(
            "user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False, index=True,
        ),
        sa.Column("type", sa.String(50), nullable=False, comment="NotificationType enum value"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("data", postgresql.JSONB(astext_type=sa.Text())),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # ── Tables with FK to profiles ─────────────────────────────────────

    op.create_table(
        "matches",
        sa.Column(
            "recipient_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("recipient_profiles.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column(
            "donor_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("donor_profiles.id", ondelete="CASCADE"), nullable=False, index=True,
        ),
        sa.Column("urgency_score", sa.Integer(), nullable=False),
        sa.Column("location_score", sa.Integer(), nullable=False),
        sa.Column("wait_time_score", sa.Integer(), nullable=False),
        sa.Column("age_gap_score", sa.Integer(), nullable=False),
        sa.Column("total_score", sa.Numeric(5, 2), nullable=False, index=True),
        sa.Column("scored_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False, index=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("decided_by", sa.String(100)),
        sa.Column("decided_at", sa.DateTime(timezone=True)),
        sa.Column("notified_at", sa.DateTime(timezone=True)),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("recipient_id", "donor_id", name="uq_matches_pair"),
        sa.CheckConstraint("total_score >= 0 AND total_score <= 100", name="ck_matches_total_range"),
    )


def downgrade() -> None:
    # Drop in reverse dependency order
    op.drop_table("matches")
    op.drop_table("notifications")
    op.drop_table("recipient_profiles")
    op.drop_table("donor_profiles")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("audit_log")
