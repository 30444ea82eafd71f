"""Create students, trainings, enrollments and verification_tokens.

Revision ID: 001_verification_schema
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001_verification_schema"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    op.create_table(
        "students",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("national_id", sa.String(20), nullable=False),
        sa.Column("first_names", sa.String(150), nullable=False),
        sa.Column("last_names", sa.String(150), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        _timestamp("email_verified_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.UniqueConstraint("national_id", name="uq_students_national_id"),
    )

    op.create_table(
        "trainings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
    )

    op.create_table(
        "enrollments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "student_id",
            sa.Integer(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "training_id",
            sa.Integer(),
            sa.ForeignKey("trainings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("status", sa.SmallInteger(), nullable=False, server_default="1"),
        _timestamp("enrolled_at"),
        sa.UniqueConstraint(
            "student_id", "training_id", name="uq_enrollments_student_training"
        ),
    )

    op.create_table(
        "verification_tokens",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("token_hash", sa.String(64), nullable=False),
        sa.Column(
            "subject_id",
            sa.Integer(),
            sa.ForeignKey("students.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("purpose", sa.String(20), nullable=False),
        sa.Column("contact_address", sa.String(255), nullable=False),
        sa.Column(
            "metadata",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _timestamp("created_at"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        _timestamp("used_at", nullable=True),
        sa.Column("used_from_ip", sa.String(45), nullable=True),
        sa.Column("issuing_ip", sa.String(45), nullable=True),
        _timestamp("superseded_at", nullable=True),
        sa.UniqueConstraint("token_hash", name="uq_verification_tokens_token_hash"),
        sa.CheckConstraint(
            "purpose IN ('registration', 'recovery', 'email_change')",
            name="ck_verification_tokens_purpose",
        ),
    )
    # Backstop for the one-active-token-per-pair rule
    op.create_index(
        "uq_verification_tokens_one_active",
        "verification_tokens",
        ["subject_id", "purpose"],
        unique=True,
        postgresql_where=sa.text("used_at IS NULL AND superseded_at IS NULL"),
    )
    op.create_index(
        "ix_verification_tokens_expires_at", "verification_tokens", ["expires_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_verification_tokens_expires_at", table_name="verification_tokens")
    op.drop_index("uq_verification_tokens_one_active", table_name="verification_tokens")
    op.drop_table("verification_tokens")
    op.drop_table("enrollments")
    op.drop_table("trainings")
    op.drop_table("students")
