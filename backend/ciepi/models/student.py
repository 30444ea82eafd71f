"""Student model - citizen registrants.

Students self-register with their national ID (cédula) and are the subjects
that verification tokens confirm an email address for.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ciepi.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from ciepi.models.training import Enrollment
    from ciepi.models.verification_token import VerificationToken


class Student(Base, TimestampMixin):
    """Registered student.

    Attributes:
        id: Integer primary key.
        national_id: Cédula, unique.
        first_names: Given names.
        last_names: Family names.
        email: Current contact address. NULL until provided.
        email_verified_at: When the current address was confirmed.
            NULL = unverified.
    """

    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    national_id: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
    )
    first_names: Mapped[str] = mapped_column(String(150), nullable=False)
    last_names: Mapped[str] = mapped_column(String(150), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)

    enrollments: Mapped[list["Enrollment"]] = relationship(
        "Enrollment",
        back_populates="student",
        cascade="all, delete-orphan",
    )
    verification_tokens: Mapped[list["VerificationToken"]] = relationship(
        "VerificationToken",
        back_populates="student",
        cascade="all, delete-orphan",
    )

    @property
    def is_email_verified(self) -> bool:
        """Whether the current email address has been confirmed."""
        return self.email_verified_at is not None
