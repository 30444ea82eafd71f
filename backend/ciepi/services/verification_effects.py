"""Purpose-specific effects of a consumed verification token.

Runs in the same transaction as the winning consume_token() call, so each
effect happens at most once per token. Dispatch is on the metadata variant:

- registration: email verified + enrollment (if a training was given)
- recovery: email verified
- email_change: student email replaced by the confirmed address
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.core.errors import NotFoundError
from ciepi.models.student import Student
from ciepi.models.verification_token import VerificationToken
from ciepi.repositories.student_repository import StudentRepository
from ciepi.repositories.training_repository import TrainingRepository
from ciepi.schemas.verification import (
    EmailChangeMetadata,
    RecoveryMetadata,
    RegistrationMetadata,
    parse_token_metadata,
)

logger = logging.getLogger(__name__)


async def _apply_registration(
    db: AsyncSession,
    student: Student,
    metadata: RegistrationMetadata,
    now: datetime,
) -> dict[str, Any]:
    await StudentRepository.mark_email_verified(db, student, verified_at=now)
    summary: dict[str, Any] = {"email_verified": True, "enrollment": None}

    if metadata.capacitacion_id is None:
        return summary

    training = await TrainingRepository.get_by_id(db, metadata.capacitacion_id)
    if training is None:
        # Raising rolls the consumption back; the token stays usable
        raise NotFoundError("Training", str(metadata.capacitacion_id))

    enrollment, created = await TrainingRepository.get_or_create_enrollment(
        db, student_id=student.id, training_id=training.id
    )
    summary["enrollment"] = {
        "id": enrollment.id,
        "training_id": enrollment.training_id,
        "training_name": training.name,
        "status": enrollment.status,
        "enrolled_at": enrollment.enrolled_at.isoformat(),
        "created": created,
    }
    return summary


async def _apply_recovery(
    db: AsyncSession,
    student: Student,
    metadata: RecoveryMetadata,  # noqa: ARG001
    now: datetime,
) -> dict[str, Any]:
    await StudentRepository.mark_email_verified(db, student, verified_at=now)
    return {"email_verified": True}


async def _apply_email_change(
    db: AsyncSession,
    student: Student,
    record: VerificationToken,
    now: datetime,
) -> dict[str, Any]:
    # contact_address was set from new_address at issuance
    previous = student.email
    await StudentRepository.change_email(
        db, student, new_email=record.contact_address, verified_at=now
    )
    return {
        "email_verified": True,
        "previous_email": previous,
        "new_email": student.email,
    }


async def apply_consumption_effects(
    db: AsyncSession,
    record: VerificationToken,
    *,
    now: datetime,
) -> tuple[Student, dict[str, Any]]:
    """Run the effects for a token that was just consumed.

    Args:
        db: Database session (same transaction as the consume).
        record: The consumed token.
        now: Consumption time, reused as the verification timestamp.

    Returns:
        (student, summary) where summary describes what changed.

    Raises:
        NotFoundError: If the student or the registration's training is gone.
    """
    student = await StudentRepository.get_by_id(db, record.subject_id)
    if student is None:
        raise NotFoundError("Student", str(record.subject_id))

    metadata = parse_token_metadata(record.purpose, record.token_metadata)

    if isinstance(metadata, RegistrationMetadata):
        summary = await _apply_registration(db, student, metadata, now)
    elif isinstance(metadata, RecoveryMetadata):
        summary = await _apply_recovery(db, student, metadata, now)
    elif isinstance(metadata, EmailChangeMetadata):
        summary = await _apply_email_change(db, student, record, now)
    else:  # pragma: no cover - union is closed
        msg = f"Unhandled token purpose: {record.purpose}"
        raise TypeError(msg)

    logger.info(
        "Applied %s effects for subject %s", record.purpose, record.subject_id
    )
    return student, summary
