"""Repository for Training and Enrollment operations."""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.models.training import ENROLLMENT_STATUS_PENDING, Enrollment, Training


class TrainingRepository:
    """Stateless repository for Training and Enrollment table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, training_id: int) -> Training | None:
        """Fetch a training by primary key.

        Args:
            db: Async database session.
            training_id: Integer primary key.

        Returns:
            Training if found, None otherwise.
        """
        return await db.get(Training, training_id)

    @staticmethod
    async def get_enrollment(
        db: AsyncSession,
        *,
        student_id: int,
        training_id: int,
    ) -> Enrollment | None:
        """Fetch the enrollment of a student in a training.

        Args:
            db: Async database session.
            student_id: Student ID.
            training_id: Training ID.

        Returns:
            Enrollment if found, None otherwise.
        """
        stmt = select(Enrollment).where(
            Enrollment.student_id == student_id,
            Enrollment.training_id == training_id,
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_enrollment(
        db: AsyncSession,
        *,
        student_id: int,
        training_id: int,
    ) -> tuple[Enrollment, bool]:
        """Return the student's enrollment in a training, creating it if absent.

        The INSERT runs in a savepoint. If a concurrent request created the
        same enrollment first, uq_enrollments_student_training fires, the
        savepoint is rolled back and the existing row is returned.

        Args:
            db: Async database session.
            student_id: Student ID.
            training_id: Training ID.

        Returns:
            (enrollment, created) tuple.

        Raises:
            sqlalchemy.exc.IntegrityError: If the training or student does
                not exist (foreign key violation).
        """
        existing = await TrainingRepository.get_enrollment(
            db, student_id=student_id, training_id=training_id
        )
        if existing is not None:
            return existing, False

        enrollment = Enrollment(
            student_id=student_id,
            training_id=training_id,
            status=ENROLLMENT_STATUS_PENDING,
        )
        try:
            async with db.begin_nested():
                db.add(enrollment)
                await db.flush()
        except IntegrityError:
            winner = await TrainingRepository.get_enrollment(
                db, student_id=student_id, training_id=training_id
            )
            if winner is None:
                raise
            return winner, False

        await db.refresh(enrollment)
        return enrollment, True
