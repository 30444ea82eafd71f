"""SQLAlchemy ORM models for the CIEPI verification service.

All models are exported from this module for convenient imports:
    from ciepi.models import Student, VerificationToken, ...

Models are organized by domain:
- student.py: Student (registrants, the subjects being verified)
- training.py: Training, Enrollment
- verification_token.py: VerificationToken (email confirmation links)
"""

from ciepi.models.base import Base, TimestampMixin
from ciepi.models.student import Student
from ciepi.models.training import ENROLLMENT_STATUS_PENDING, Enrollment, Training
from ciepi.models.verification_token import VerificationToken

__all__ = [
    "ENROLLMENT_STATUS_PENDING",
    "Base",
    "Enrollment",
    "Student",
    "TimestampMixin",
    "Training",
    "VerificationToken",
]
