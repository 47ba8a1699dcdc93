"""Create users and the BMNL assessment tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- users --
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), unique=True, nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "role",
            sa.Enum("platform_admin", "organizer", "member", name="userrole"),
            nullable=False,
            server_default="member",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("hashed_password", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"])

    # -- bmnl_participants --
    op.create_table(
        "bmnl_participants",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("auth_user_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("consent_granted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assessment_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assessment_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("manually_deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("erasure_scheduled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_delete_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("needs_human_review", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint(
            "status IN ('pending', 'in_progress', 'completed', 'deleted')",
            name="ck_bmnl_participants_status",
        ),
    )
    op.create_index(
        "uq_bmnl_participants_live_email",
        "bmnl_participants",
        ["email"],
        unique=True,
        postgresql_where=sa.text("status != 'deleted'"),
    )
    op.create_index("ix_bmnl_participants_auth_user_id", "bmnl_participants", ["auth_user_id"])
    op.create_index("ix_bmnl_participants_status", "bmnl_participants", ["status"])

    # -- bmnl_answers --
    op.create_table(
        "bmnl_answers",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "participant_id",
            sa.Uuid(),
            sa.ForeignKey("bmnl_participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question_number", sa.Integer(), nullable=False),
        sa.Column("question_text", sa.Text(), nullable=False),
        sa.Column("raw_answer", sa.Text(), nullable=False),
        sa.Column("encrypted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("answered_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("participant_id", "question_number", name="uq_bmnl_answers_participant_question"),
    )
    op.create_index("ix_bmnl_answers_participant_id", "bmnl_answers", ["participant_id"])

    # -- bmnl_signals --
    op.create_table(
        "bmnl_signals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "participant_id",
            sa.Uuid(),
            sa.ForeignKey("bmnl_participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question_number", sa.Integer(), nullable=False),
        sa.Column("signal_level", sa.String(20), nullable=False),
        sa.Column("is_garbage", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_gaming", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_phobic", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_defensive", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("participant_id", "question_number", name="uq_bmnl_signals_participant_question"),
    )
    op.create_index("ix_bmnl_signals_participant_id", "bmnl_signals", ["participant_id"])

    # -- bmnl_flags --
    op.create_table(
        "bmnl_flags",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "participant_id",
            sa.Uuid(),
            sa.ForeignKey("bmnl_participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question_number", sa.Integer(), nullable=False),
        sa.Column("flag_type", sa.String(20), nullable=False),
        sa.Column("flag_reason", sa.String(255), nullable=False),
        sa.Column("severity", sa.String(10), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.Uuid(), nullable=True),
    )
    op.create_index("ix_bmnl_flags_participant_id", "bmnl_flags", ["participant_id"])

    # -- bmnl_radar_profiles --
    op.create_table(
        "bmnl_radar_profiles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "participant_id",
            sa.Uuid(),
            sa.ForeignKey("bmnl_participants.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("participation", sa.Float(), nullable=False),
        sa.Column("consent_literacy", sa.Float(), nullable=False),
        sa.Column("communal_responsibility", sa.Float(), nullable=False),
        sa.Column("inclusion_awareness", sa.Float(), nullable=False),
        sa.Column("self_regulation", sa.Float(), nullable=False),
        sa.Column("openness_to_learning", sa.Float(), nullable=False),
        sa.Column("gate_experience", sa.Float(), nullable=False),
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("scoring_version", sa.String(20), nullable=False, server_default="v1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("participant_id", name="uq_bmnl_radar_profiles_participant"),
    )

    # -- bmnl_consent_records (append-only ledger) --
    op.create_table(
        "bmnl_consent_records",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("consent_type", sa.String(32), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consent_text", sa.Text(), nullable=True),
        sa.Column("version", sa.String(20), nullable=False, server_default="v1"),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.String(512), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "ix_bmnl_consent_records_subject_type",
        "bmnl_consent_records",
        ["subject_id", "consent_type"],
    )

    # -- bmnl_analytics_events (consent-gated usage events) --
    op.create_table(
        "bmnl_analytics_events",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("subject_id", sa.Uuid(), nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_bmnl_analytics_events_subject_id", "bmnl_analytics_events", ["subject_id"])


def downgrade() -> None:
    op.drop_index("ix_bmnl_analytics_events_subject_id", table_name="bmnl_analytics_events")
    op.drop_table("bmnl_analytics_events")
    op.drop_table("bmnl_consent_records")
    op.drop_table("bmnl_radar_profiles")
    op.drop_table("bmnl_flags")
    op.drop_table("bmnl_signals")
    op.drop_table("bmnl_answers")
    op.drop_table("bmnl_participants")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS userrole")
