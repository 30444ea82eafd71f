"""Verification token lifecycle against a real PostgreSQL database.

Covers the storage-level guarantees that mocks cannot: one active token per
(subject, purpose), single-use consumption under concurrency, expiry at the
boundary, and retention cleanup.
"""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from ciepi.core.errors import (
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenSupersededError,
)
from ciepi.models.training import Enrollment
from ciepi.models.verification_token import VerificationToken
from ciepi.repositories.verification_token_repository import (
    VerificationTokenRepository,
)
from ciepi.schemas.verification import (
    RecoveryMetadata,
    RegistrationMetadata,
    TokenPurpose,
)
from ciepi.services.token_cleanup import cleanup_expired_tokens
from ciepi.services.verification_effects import apply_consumption_effects
from ciepi.services.verification_token_service import (
    InvalidReason,
    consume_token,
    get_token_status,
    hash_token,
    invalidate_active,
    issue_token,
    validate_token,
)

_NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


async def _issue(db, student, *, metadata=None, now=_NOW, ttl_minutes=15):
    return await issue_token(
        db,
        subject_id=student.id,
        contact_address=student.email,
        purpose=TokenPurpose.REGISTRATION,
        metadata=metadata or RegistrationMetadata(),
        ttl_minutes=ttl_minutes,
        issuing_ip="203.0.113.1",
        now=now,
    )


class TestIssue:
    """Issuance stores a hashed token and supersedes predecessors."""

    @pytest.mark.asyncio
    async def test_issue_stores_hash_not_plain(self, db_session, test_student):
        issued = await _issue(db_session, test_student)

        assert issued.record.token_hash == hash_token(issued.token)
        assert issued.record.token_hash != issued.token
        assert issued.expires_at == _NOW + timedelta(minutes=15)
        assert issued.record.issuing_ip == "203.0.113.1"

    @pytest.mark.asyncio
    async def test_reissue_supersedes_previous(self, db_session, test_student):
        first = await _issue(db_session, test_student)
        second = await _issue(db_session, test_student, now=_NOW + timedelta(minutes=1))

        assert first.token != second.token
        result = await validate_token(db_session, first.token, now=_NOW)
        assert result.reason == InvalidReason.SUPERSEDED
        assert (await validate_token(db_session, second.token, now=_NOW)).valid

    @pytest.mark.asyncio
    async def test_at_most_one_active_after_many_issues(self, db_session, test_student):
        tokens = [
            await _issue(db_session, test_student, now=_NOW + timedelta(seconds=i))
            for i in range(5)
        ]

        active = await VerificationTokenRepository.count_active(
            db_session,
            subject_id=test_student.id,
            purpose="registration",
            now=_NOW,
        )
        assert active == 1
        assert (await validate_token(db_session, tokens[-1].token, now=_NOW)).valid

    @pytest.mark.asyncio
    async def test_purposes_are_independent(self, db_session, test_student):
        registration = await _issue(db_session, test_student)
        await issue_token(
            db_session,
            subject_id=test_student.id,
            contact_address=test_student.email,
            purpose=TokenPurpose.RECOVERY,
            metadata=RecoveryMetadata(),
            now=_NOW,
        )

        assert (await validate_token(db_session, registration.token, now=_NOW)).valid

    @pytest.mark.asyncio
    async def test_concurrent_issues_leave_one_active(
        self, session_factory, test_student
    ):
        """Parallel issuers for one pair serialize on the advisory lock."""

        async def issue_in_own_session(offset: int) -> str:
            async with session_factory() as session:
                issued = await _issue(
                    session, test_student, now=_NOW + timedelta(seconds=offset)
                )
                await session.commit()
                return issued.token

        await asyncio.gather(*(issue_in_own_session(i) for i in range(4)))

        async with session_factory() as session:
            active = await VerificationTokenRepository.count_active(
                session,
                subject_id=test_student.id,
                purpose="registration",
                now=_NOW,
            )
        assert active == 1


class TestInvalidate:
    """invalidate_active() is idempotent."""

    @pytest.mark.asyncio
    async def test_invalidate_then_noop(self, db_session, test_student):
        issued = await _issue(db_session, test_student)

        first = await invalidate_active(
            db_session,
            subject_id=test_student.id,
            purpose=TokenPurpose.REGISTRATION,
            now=_NOW,
        )
        second = await invalidate_active(
            db_session,
            subject_id=test_student.id,
            purpose=TokenPurpose.REGISTRATION,
            now=_NOW,
        )

        assert first == 1
        assert second == 0
        with pytest.raises(TokenSupersededError):
            await consume_token(db_session, issued.token, now=_NOW)


class TestValidateAndStatus:
    """Reads never mutate."""

    @pytest.mark.asyncio
    async def test_validate_is_idempotent(self, db_session, test_student):
        issued = await _issue(db_session, test_student)

        first = await validate_token(db_session, issued.token, now=_NOW)
        second = await validate_token(db_session, issued.token, now=_NOW)

        assert first.valid is True
        assert second.valid is True
        assert issued.record.used_at is None

    @pytest.mark.asyncio
    async def test_unknown_token(self, db_session, test_student):  # noqa: ARG002
        result = await validate_token(db_session, "0" * 64, now=_NOW)
        assert result.reason == InvalidReason.NOT_FOUND
        status = await get_token_status(db_session, "0" * 64, now=_NOW)
        assert status.exists is False

    @pytest.mark.asyncio
    async def test_expired_status(self, db_session, test_student):
        issued = await _issue(db_session, test_student)

        status = await get_token_status(
            db_session, issued.token, now=_NOW + timedelta(minutes=20)
        )

        assert (status.exists, status.used, status.expired) == (True, False, True)
        assert status.state == "expirado"


class TestConsume:
    """Consumption is single-use."""

    @pytest.mark.asyncio
    async def test_consume_then_already_used(self, db_session, test_student):
        issued = await _issue(db_session, test_student)

        record = await consume_token(
            db_session, issued.token, used_from_ip="198.51.100.1", now=_NOW
        )
        assert record.used_at == _NOW
        assert record.used_from_ip == "198.51.100.1"

        with pytest.raises(TokenAlreadyUsedError):
            await consume_token(db_session, issued.token, now=_NOW)

        status = await get_token_status(db_session, issued.token, now=_NOW)
        assert status.state == "verificado"

    @pytest.mark.asyncio
    async def test_unknown_token_raises_not_found(self, db_session, test_student):  # noqa: ARG002
        with pytest.raises(TokenNotFoundError):
            await consume_token(db_session, "0" * 64, now=_NOW)

    @pytest.mark.asyncio
    async def test_expiry_boundary(self, db_session, test_student):
        issued = await _issue(db_session, test_student, ttl_minutes=15)
        expires_at = _NOW + timedelta(minutes=15)

        with pytest.raises(TokenExpiredError):
            await consume_token(
                db_session, issued.token, now=expires_at + timedelta(seconds=1)
            )

        record = await consume_token(
            db_session, issued.token, now=expires_at - timedelta(seconds=1)
        )
        assert record.used_at is not None

    @pytest.mark.asyncio
    async def test_valid_at_exact_expiry(self, db_session, test_student):
        issued = await _issue(db_session, test_student, ttl_minutes=15)
        record = await consume_token(
            db_session, issued.token, now=_NOW + timedelta(minutes=15)
        )
        assert record.used_at == _NOW + timedelta(minutes=15)

    @pytest.mark.asyncio
    async def test_concurrent_consume_single_winner(
        self, session_factory, test_student, test_training
    ):
        """Of two racing consumers exactly one wins and one enrollment exists."""
        async with session_factory() as session:
            issued = await _issue(
                session,
                test_student,
                metadata=RegistrationMetadata(capacitacion_id=test_training.id),
                now=datetime.now(UTC),
            )
            await session.commit()

        async def attempt() -> str:
            async with session_factory() as session:
                try:
                    now = datetime.now(UTC)
                    record = await consume_token(session, issued.token, now=now)
                    await apply_consumption_effects(session, record, now=now)
                    await session.commit()
                except TokenAlreadyUsedError:
                    await session.rollback()
                    return "already_used"
                return "ok"

        outcomes = await asyncio.gather(attempt(), attempt())

        assert sorted(outcomes) == ["already_used", "ok"]
        async with session_factory() as session:
            count = await session.scalar(
                select(func.count())
                .select_from(Enrollment)
                .where(Enrollment.student_id == test_student.id)
            )
        assert count == 1


class TestCleanup:
    """Retention cleanup removes only old expired tokens."""

    @pytest.mark.asyncio
    async def test_deletes_tokens_past_retention(self, db_session, test_student):
        old = await _issue(db_session, test_student, now=_NOW - timedelta(days=10))
        recent = await issue_token(
            db_session,
            subject_id=test_student.id,
            contact_address=test_student.email,
            purpose=TokenPurpose.RECOVERY,
            metadata=RecoveryMetadata(),
            now=_NOW - timedelta(days=2),
        )
        old_hash = old.record.token_hash
        recent_hash = recent.record.token_hash

        deleted = await cleanup_expired_tokens(db_session, retention_days=7, now=_NOW)

        assert deleted == 1
        remaining = (
            await db_session.scalars(select(VerificationToken.token_hash))
        ).all()
        assert recent_hash in remaining
        assert old_hash not in remaining
