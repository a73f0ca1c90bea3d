"""Verification workflow schema: users, items, feedback, auto-approval, achievements.

Revision ID: 0001_verification_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_verification_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    ]


def _verification_columns() -> list[sa.Column]:
    """Columns shared by rapid_assessments and rapid_responses."""
    return [
        sa.Column("submitter_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("submitter_name", sa.Text(), nullable=False, server_default=""),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("completeness", sa.Float(), nullable=False, server_default="0"),
        sa.Column("gps_accuracy_meters", sa.Float(), nullable=True),
        sa.Column("media_attachments", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("data", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("verification_status", sa.Text(), nullable=False, server_default="PENDING"),
        sa.Column("auto_approval_rule_id", sa.Text(), nullable=True),
        sa.Column("verified_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "verification_status IN ('PENDING', 'VERIFIED', 'AUTO_VERIFIED', 'REJECTED')",
            name="verification_status_valid",
        ),
        sa.CheckConstraint("completeness >= 0 AND completeness <= 100", name="completeness_range"),
    ]


# ---------------------------------------------------------------------------
# UPGRADE
# ---------------------------------------------------------------------------


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.Text(), nullable=True, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False, server_default="ASSESSOR"),
        sa.Column("organization", sa.Text(), nullable=True),
        sa.Column("reputation_score", sa.Float(), nullable=True),
        sa.Column("password_hash", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "role IN ('ASSESSOR', 'RESPONDER', 'COORDINATOR', 'DONOR', 'ADMIN')",
            name="users_role_valid",
        ),
    )
    op.create_index("ix_users_email", "users", ["email"])

    op.create_table(
        "rapid_assessments",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("assessment_type", sa.Text(), nullable=False),
        *_verification_columns(),
        *_timestamps(),
    )
    op.create_index("ix_rapid_assessments_status", "rapid_assessments", ["verification_status"])
    op.create_index("ix_rapid_assessments_type", "rapid_assessments", ["assessment_type"])
    op.create_index("ix_rapid_assessments_submitter", "rapid_assessments", ["submitter_id"])

    op.create_table(
        "rapid_responses",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("response_type", sa.Text(), nullable=False),
        sa.Column("donor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("commitment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("beneficiaries_served", sa.Integer(), nullable=False, server_default="0"),
        *_verification_columns(),
        *_timestamps(),
    )
    op.create_index("ix_rapid_responses_status", "rapid_responses", ["verification_status"])
    op.create_index("ix_rapid_responses_type", "rapid_responses", ["response_type"])
    op.create_index("ix_rapid_responses_submitter", "rapid_responses", ["submitter_id"])
    op.create_index("ix_rapid_responses_donor", "rapid_responses", ["donor_id"])

    op.create_table(
        "feedback",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("target_type", sa.Text(), nullable=False),
        sa.Column("target_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("coordinator_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("coordinator_name", sa.Text(), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("comments", sa.Text(), nullable=False, server_default=""),
        sa.Column("priority", sa.Text(), nullable=False, server_default="NORMAL"),
        sa.Column("requires_resubmission", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_resolved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "type IN ('REJECTION', 'CLARIFICATION_REQUEST', 'APPROVAL_NOTE')",
            name="feedback_type_valid",
        ),
    )
    op.create_index("ix_feedback_target", "feedback", ["target_id"])
    op.create_index("ix_feedback_recipient", "feedback", ["recipient_id"])

    # Saving a configuration always inserts a new version
    op.create_table(
        "auto_approval_configs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("version", sa.Integer(), nullable=False, unique=True),
        sa.Column("document", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("updated_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_table(
        "auto_approval_overrides",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("target_type", sa.Text(), nullable=False),
        sa.Column("target_ids", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("original_status", sa.Text(), nullable=False),
        sa.Column("new_status", sa.Text(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("justification", sa.Text(), nullable=False),
        sa.Column("coordinator_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("coordinator_name", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "reason IN ('EMERGENCY_OVERRIDE', 'QUALITY_CONCERN', 'POLICY_CHANGE', 'OTHER')",
            name="override_reason_valid",
        ),
    )
    op.create_index("ix_auto_approval_overrides_created", "auto_approval_overrides", ["created_at"])
    op.create_index("ix_auto_approval_overrides_coordinator", "auto_approval_overrides", ["coordinator_id"])

    # The override log is append-only
    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_override_mutation() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'auto_approval_overrides is append-only';
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute("""
        CREATE TRIGGER overrides_immutable
        BEFORE UPDATE OR DELETE ON auto_approval_overrides
        FOR EACH ROW EXECUTE FUNCTION prevent_override_mutation()
    """)

    op.create_table(
        "donor_achievements",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("donor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.Text(), nullable=False),
        sa.Column("badge_icon", sa.Text(), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("response_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("verification_id", sa.Text(), nullable=True),
        sa.UniqueConstraint("donor_id", "type", name="uq_donor_achievement_type"),
    )
    op.create_index("ix_donor_achievements_donor", "donor_achievements", ["donor_id"])


# ---------------------------------------------------------------------------
# DOWNGRADE
# ---------------------------------------------------------------------------


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS overrides_immutable ON auto_approval_overrides")
    op.execute("DROP FUNCTION IF EXISTS prevent_override_mutation()")

    op.drop_table("donor_achievements")
    op.drop_table("auto_approval_overrides")
    op.drop_table("auto_approval_configs")
    op.drop_table("feedback")
    op.drop_table("rapid_responses")
    op.drop_table("rapid_assessments")
    op.drop_table("users")
