"""Retention cleanup for verification tokens.

Expired tokens are kept for a grace period (default 7 days) so support
staff can still explain a "link expired" report, then deleted.
"""

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.core.errors import StoreUnavailableError
from ciepi.repositories.verification_token_repository import (
    VerificationTokenRepository,
)

logger = logging.getLogger(__name__)


async def cleanup_expired_tokens(
    db: AsyncSession,
    *,
    retention_days: int = 7,
    now: datetime | None = None,
) -> int:
    """Delete tokens whose expiry is older than the retention window.

    Does not commit.

    Args:
        db: Database session.
        retention_days: Days to keep a token after it expires.
        now: Reference time (defaults to current UTC time).

    Returns:
        Number of tokens deleted.

    Raises:
        ValueError: If retention_days is negative.
        StoreUnavailableError: If the database operation fails.
    """
    if retention_days < 0:
        msg = f"retention_days must be >= 0, got {retention_days}"
        raise ValueError(msg)

    cutoff = (now or datetime.now(UTC)) - timedelta(days=retention_days)
    try:
        deleted = await VerificationTokenRepository.delete_expired_before(db, cutoff)
    except SQLAlchemyError as exc:
        logger.error("Verification token cleanup failed: %s", exc)
        raise StoreUnavailableError("Verification token cleanup failed") from exc

    logger.info("Deleted %d verification tokens expired before %s", deleted, cutoff)
    return deleted
