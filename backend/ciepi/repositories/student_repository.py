"""Repository for Student operations.

Provides the subject lookups the verification flows need and the two
writes a consumed token may trigger (email verified, email changed).
"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.models.student import Student


class StudentRepository:
    """Stateless repository for Student table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, student_id: int) -> Student | None:
        """Fetch a student by primary key.

        Args:
            db: Async database session.
            student_id: Integer primary key.

        Returns:
            Student if found, None otherwise.
        """
        return await db.get(Student, student_id)

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        national_id: str,
        first_names: str,
        last_names: str,
        email: str | None = None,
        email_verified_at: datetime | None = None,
    ) -> Student:
        """Create a new student.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            national_id: Cédula.
            first_names: Given names.
            last_names: Family names.
            email: Contact address.
            email_verified_at: When the address was confirmed.

        Returns:
            Created Student with database-generated fields populated.

        Raises:
            sqlalchemy.exc.IntegrityError: If national_id already exists.
        """
        student = Student(
            national_id=national_id.strip(),
            first_names=first_names,
            last_names=last_names,
            email=email.strip().lower() if email else None,
            email_verified_at=email_verified_at,
        )
        db.add(student)
        await db.flush()
        await db.refresh(student)
        return student

    @staticmethod
    async def mark_email_verified(
        db: AsyncSession,
        student: Student,
        *,
        verified_at: datetime,
    ) -> Student:
        """Record that the student's current email was confirmed.

        An earlier confirmation timestamp is kept.

        Args:
            db: Async database session.
            student: Student to update.
            verified_at: Confirmation timestamp.

        Returns:
            The updated Student.
        """
        if student.email_verified_at is None:
            student.email_verified_at = verified_at
            await db.flush()
        return student

    @staticmethod
    async def change_email(
        db: AsyncSession,
        student: Student,
        *,
        new_email: str,
        verified_at: datetime,
    ) -> Student:
        """Replace the student's email with a confirmed address.

        Args:
            db: Async database session.
            student: Student to update.
            new_email: Address that was just confirmed.
            verified_at: Confirmation timestamp.

        Returns:
            The updated Student.
        """
        student.email = new_email.strip().lower()
        student.email_verified_at = verified_at
        await db.flush()
        return student
