"""initial_schema

Revision ID: 001_initial_schema
Revises: 
Create Date: 2026-10-19 12:00:00.000000 UTC

Creates the five core tables:
  - users          (temporary + permanent accounts)
  - quiz_attempts  (quiz submissions, JSONB answers, tiered expires_at)
  - payments       (report unlocks; partial unique index on completed unlocks)
  - ai_contents    (AI output cache, unique per attempt + content_type)
  - refunds        (admin-issued refunds against payments)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- users table ---
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False, comment="Lower-cased email. Unique across temporary and permanent users."),
        sa.Column("password_hash", sa.String(length=128), nullable=True, comment="bcrypt hash. NULL for email-only temporary users."),
        sa.Column("first_name", sa.String(length=100), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=True),
        sa.Column("is_temporary", sa.Boolean(), nullable=False, comment="True until the first completed payment promotes the account"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, comment="True once any report unlock has completed — drives repeat-purchase pricing"),
        sa.Column("is_unsubscribed", sa.Boolean(), nullable=False),
        sa.Column("session_id", sa.String(length=512), nullable=True, comment="Session key that created the temporary record"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True, comment="Set only for temporary users; NULL once permanent"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_index(op.f("ix_users_expires_at"), "users", ["expires_at"], unique=False)

    # --- quiz_attempts table ---
    op.create_table(
        "quiz_attempts",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True, comment="Owning user; NULL while the attempt is anonymous"),
        sa.Column("session_id", sa.String(length=512), nullable=True, comment="Session key of an anonymous submitter; cleared when claimed"),
        sa.Column("quiz_data", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="Quiz answers payload (opaque)"),
        sa.Column("is_paid", sa.Boolean(), nullable=False, comment="True once the report for this attempt has been unlocked"),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True, comment="Retention deadline by owner tier; NULL = keep forever"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_quiz_attempts_user_id"), "quiz_attempts", ["user_id"], unique=False)
    op.create_index(op.f("ix_quiz_attempts_session_id"), "quiz_attempts", ["session_id"], unique=False)
    op.create_index(op.f("ix_quiz_attempts_expires_at"), "quiz_attempts", ["expires_at"], unique=False)

    # --- payments table ---
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("quiz_attempt_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False, comment="Charged amount in the smallest currency unit (499 / 999)"),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("type", sa.String(length=32), nullable=False, comment="Purchase type — only 'report_unlock' today"),
        sa.Column("status", sa.String(length=16), nullable=False, comment="'pending' | 'completed' | 'failed' | 'refunded'"),
        sa.Column("stripe_payment_intent_id", sa.String(length=255), nullable=True),
        sa.Column("paypal_order_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["quiz_attempt_id"], ["quiz_attempts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_payment_intent_id"),
        sa.UniqueConstraint("paypal_order_id"),
    )
    op.create_index(op.f("ix_payments_user_id"), "payments", ["user_id"], unique=False)
    op.create_index(op.f("ix_payments_quiz_attempt_id"), "payments", ["quiz_attempt_id"], unique=False)
    op.create_index(
        "uq_payments_completed_unlock",
        "payments",
        ["user_id", "quiz_attempt_id"],
        unique=True,
        postgresql_where=sa.text("status = 'completed' AND type = 'report_unlock'"),
    )

    # --- ai_contents table ---
    op.create_table(
        "ai_contents",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("quiz_attempt_id", sa.Integer(), nullable=False),
        sa.Column("content_type", sa.String(length=100), nullable=False, comment="Cache key within the attempt, e.g. 'results-preview', 'model_freelancing'"),
        sa.Column("content", postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment="AI output payload (opaque JSON)"),
        sa.Column("content_hash", sa.String(length=64), nullable=True, comment="SHA-256 of the canonical JSON content"),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["quiz_attempt_id"], ["quiz_attempts.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("quiz_attempt_id", "content_type", name="uq_ai_contents_attempt_type"),
    )
    op.create_index(op.f("ix_ai_contents_quiz_attempt_id"), "ai_contents", ["quiz_attempt_id"], unique=False)

    # --- refunds table ---
    op.create_table(
        "refunds",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("payment_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, comment="'pending' | 'succeeded' | 'failed'"),
        sa.Column("provider_refund_id", sa.String(length=255), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["payment_id"], ["payments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_refunds_payment_id"), "refunds", ["payment_id"], unique=False)


def downgrade() -> None:
    op.drop_index(op.f("ix_refunds_payment_id"), table_name="refunds")
    op.drop_table("refunds")
    op.drop_index(op.f("ix_ai_contents_quiz_attempt_id"), table_name="ai_contents")
    op.drop_table("ai_contents")
    op.drop_index("uq_payments_completed_unlock", table_name="payments")
    op.drop_index(op.f("ix_payments_quiz_attempt_id"), table_name="payments")
    op.drop_index(op.f("ix_payments_user_id"), table_name="payments")
    op.drop_table("payments")
    op.drop_index(op.f("ix_quiz_attempts_expires_at"), table_name="quiz_attempts")
    op.drop_index(op.f("ix_quiz_attempts_session_id"), table_name="quiz_attempts")
    op.drop_index(op.f("ix_quiz_attempts_user_id"), table_name="quiz_attempts")
    op.drop_table("quiz_attempts")
    op.drop_index(op.f("ix_users_expires_at"), table_name="users")
    op.drop_table("users")
