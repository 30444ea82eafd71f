"""Repository for VerificationToken operations.

Single-use email confirmation tokens stored as SHA-256 digests. The two
state-changing statements are conditional updates whose affected-row count
tells the caller whether it won:

- supersede_active(): active → superseded for one (subject, purpose)
- mark_used(): active → used for one token (compare-and-swap)
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.models.verification_token import VerificationToken


class VerificationTokenRepository:
    """Stateless repository for VerificationToken table operations.

    All methods are static; no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def lock_subject_purpose(
        db: AsyncSession,
        *,
        subject_id: int,
        purpose: str,
    ) -> None:
        """Serialize issuance for one (subject, purpose) pair.

        Takes a transaction-scoped advisory lock; it is released on commit
        or rollback. Concurrent issuers for the same pair queue here, so
        supersede + insert run one at a time.

        Args:
            db: Async database session.
            subject_id: Student ID.
            purpose: Token purpose.
        """
        await db.execute(
            select(func.pg_advisory_xact_lock(subject_id, func.hashtext(purpose)))
        )

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        token_hash: str,
        subject_id: int,
        purpose: str,
        contact_address: str,
        token_metadata: dict[str, Any],
        created_at: datetime,
        expires_at: datetime,
        issuing_ip: str | None = None,
    ) -> VerificationToken:
        """Store a new verification token.

        Args:
            db: Async database session.
            token_hash: SHA-256 hash of the plain token.
            subject_id: Student ID.
            purpose: Token purpose.
            contact_address: Address the link is sent to.
            token_metadata: Purpose-specific payload.
            created_at: Issuance timestamp.
            expires_at: Expiry timestamp.
            issuing_ip: Client IP of the issuing request.

        Returns:
            Created VerificationToken.

        Raises:
            IntegrityError: On token hash collision or a second active
                token for the pair.
        """
        vt = VerificationToken(
            token_hash=token_hash,
            subject_id=subject_id,
            purpose=purpose,
            contact_address=contact_address,
            token_metadata=token_metadata,
            created_at=created_at,
            expires_at=expires_at,
            issuing_ip=issuing_ip,
        )
        db.add(vt)
        await db.flush()
        await db.refresh(vt)
        return vt

    @staticmethod
    async def get_by_hash(
        db: AsyncSession,
        token_hash: str,
    ) -> VerificationToken | None:
        """Look up a token by its hash.

        Args:
            db: Async database session.
            token_hash: SHA-256 hash of the plain token.

        Returns:
            VerificationToken if found, None otherwise.
        """
        # Always re-read: a concurrent consume may have changed the row
        stmt = (
            select(VerificationToken)
            .where(VerificationToken.token_hash == token_hash)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def supersede_active(
        db: AsyncSession,
        *,
        subject_id: int,
        purpose: str,
        now: datetime,
    ) -> int:
        """Mark every active token of a (subject, purpose) pair as superseded.

        Expired-but-unused tokens count as active here so they also leave
        the partial unique index.

        Args:
            db: Async database session.
            subject_id: Student ID.
            purpose: Token purpose.
            now: Timestamp written to superseded_at.

        Returns:
            Number of tokens superseded (0 when none were active).
        """
        stmt = (
            update(VerificationToken)
            .where(
                VerificationToken.subject_id == subject_id,
                VerificationToken.purpose == purpose,
                VerificationToken.used_at.is_(None),
                VerificationToken.superseded_at.is_(None),
            )
            .values(superseded_at=now)
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def mark_used(
        db: AsyncSession,
        *,
        token_hash: str,
        used_from_ip: str | None,
        now: datetime,
    ) -> VerificationToken | None:
        """Atomically consume a token if it is still valid.

        The WHERE clause repeats the validity rule, so of N concurrent
        callers exactly one gets a row back.

        Args:
            db: Async database session.
            token_hash: SHA-256 hash of the plain token.
            used_from_ip: Client IP of the consuming request.
            now: Timestamp written to used_at and compared to expires_at.

        Returns:
            The consumed VerificationToken, or None if the token was not
            valid at write time.
        """
        stmt = (
            update(VerificationToken)
            .where(
                VerificationToken.token_hash == token_hash,
                VerificationToken.used_at.is_(None),
                VerificationToken.superseded_at.is_(None),
                VerificationToken.expires_at >= now,
            )
            .values(used_at=now, used_from_ip=used_from_ip)
            .returning(VerificationToken)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def delete_expired_before(db: AsyncSession, cutoff: datetime) -> int:
        """Delete tokens that expired before ``cutoff`` (retention cleanup).

        Args:
            db: Async database session.
            cutoff: Tokens with expires_at < cutoff are deleted.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(VerificationToken).where(VerificationToken.expires_at < cutoff)
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count

    @staticmethod
    async def count_active(
        db: AsyncSession,
        *,
        subject_id: int,
        purpose: str,
        now: datetime,
    ) -> int:
        """Count consumable tokens for a pair (unused, unsuperseded, unexpired).

        Args:
            db: Async database session.
            subject_id: Student ID.
            purpose: Token purpose.
            now: Reference time for expiry.

        Returns:
            Number of consumable tokens (0 or 1 when the invariant holds).
        """
        stmt = select(func.count()).where(
            VerificationToken.subject_id == subject_id,
            VerificationToken.purpose == purpose,
            VerificationToken.used_at.is_(None),
            VerificationToken.superseded_at.is_(None),
            VerificationToken.expires_at >= now,
        )
        result = await db.execute(stmt)
        return int(result.scalar_one())

