"""Verification token model - email confirmation links.

Single-use, time-limited tokens. Only the SHA-256 digest of the token is
stored. A token leaves the active set exactly once, either by being used
(used_at) or by being displaced by a newer issuance (superseded_at).
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ciepi.models.base import Base

if TYPE_CHECKING:
    from ciepi.models.student import Student

_PURPOSE_CHECK = "purpose IN ('registration', 'recovery', 'email_change')"


class VerificationToken(Base):
    """Email verification token.

    Attributes:
        id: Integer primary key.
        token_hash: SHA-256 hex digest of the plain token. Unique.
        subject_id: Student being verified.
        purpose: ``registration``, ``recovery`` or ``email_change``.
        contact_address: Address the link was sent to.
        token_metadata: Purpose-specific payload (``metadata`` column).
        created_at: Issuance timestamp.
        expires_at: Expiry timestamp.
        used_at: Consumption timestamp. NULL until consumed, then fixed.
        used_from_ip: Client IP at consumption.
        issuing_ip: Client IP at issuance.
        superseded_at: When a newer token for the same pair displaced this one.
    """

    __tablename__ = "verification_tokens"
    __table_args__ = (
        CheckConstraint(_PURPOSE_CHECK, name="ck_verification_tokens_purpose"),
        # At most one unused, unsuperseded token per (subject, purpose)
        Index(
            "uq_verification_tokens_one_active",
            "subject_id",
            "purpose",
            unique=True,
            postgresql_where=text("used_at IS NULL AND superseded_at IS NULL"),
        ),
        Index("ix_verification_tokens_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_hash: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )
    subject_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    purpose: Mapped[str] = mapped_column(String(20), nullable=False)
    contact_address: Mapped[str] = mapped_column(String(255), nullable=False)
    # "metadata" is reserved on declarative classes
    token_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)
    used_from_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    issuing_ip: Mapped[str | None] = mapped_column(String(45), nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(nullable=True)

    student: Mapped["Student"] = relationship(
        "Student", back_populates="verification_tokens"
    )
