"""Training course and enrollment models.

Trainings ("capacitaciones") are the courses a registration token may be
tied to. An Enrollment is created when a registration token is consumed.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Integer, SmallInteger, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ciepi.models.base import Base

if TYPE_CHECKING:
    from ciepi.models.student import Student

# Enrollment status id for a freshly confirmed enrollment awaiting review
ENROLLMENT_STATUS_PENDING = 1


class Training(Base):
    """Training course.

    Attributes:
        id: Integer primary key.
        name: Display name, used as the email context label.
    """

    __tablename__ = "trainings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)


class Enrollment(Base):
    """Student enrollment in a training.

    One row per (student, training); the unique constraint keeps repeated
    registrations for the same course from creating duplicates.

    Attributes:
        id: Integer primary key.
        student_id: FK to students.
        training_id: FK to trainings.
        status: Enrollment status id (1 = pending review).
        enrolled_at: When the enrollment was created.
    """

    __tablename__ = "enrollments"
    __table_args__ = (
        UniqueConstraint(
            "student_id", "training_id", name="uq_enrollments_student_training"
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
    )
    training_id: Mapped[int] = mapped_column(
        ForeignKey("trainings.id", ondelete="CASCADE"),
        nullable=False,
    )
    status: Mapped[int] = mapped_column(
        SmallInteger,
        nullable=False,
        default=ENROLLMENT_STATUS_PENDING,
        server_default=str(ENROLLMENT_STATUS_PENDING),
    )
    enrolled_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    student: Mapped["Student"] = relationship("Student", back_populates="enrollments")
