"""Verification token lifecycle.

Issues, validates, consumes and reports on single-use email confirmation
tokens. A token is valid iff it exists, is unused, is not superseded and
``now <= expires_at``.

Concurrency:
- Issuance for one (subject, purpose) pair is serialized by an advisory
  lock held for the caller's transaction; supersede + insert run inside
  a savepoint that is retried on unique violations.
- Consumption is a conditional UPDATE (compare-and-swap). Of N concurrent
  consumers of one token exactly one wins; the rest see ALREADY_USED.

Callers own the transaction: commit after issue_token() before sending the
email, and commit after consume_token() + effects.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import NoReturn

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.core.errors import (
    InternalError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenSupersededError,
)
from ciepi.models.verification_token import VerificationToken
from ciepi.repositories.verification_token_repository import (
    VerificationTokenRepository,
)
from ciepi.schemas.verification import (
    EmailChangeMetadata,
    RecoveryMetadata,
    RegistrationMetadata,
    TokenPurpose,
    metadata_to_storage,
)

logger = logging.getLogger(__name__)

DEFAULT_TTL_MINUTES = 15

# Supersede + insert attempts before giving up on unique violations
_MAX_ISSUE_ATTEMPTS = 3

# 32 random bytes rendered as 64 hex chars
_TOKEN_BYTES = 32


class InvalidReason(str, Enum):
    """Why a token cannot be consumed."""

    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"


@dataclass(frozen=True)
class TokenValidation:
    """Result of a validity check.

    Attributes:
        valid: True if the token can be consumed right now.
        reason: Why it cannot, when ``valid`` is False.
        record: The stored token, when one exists.
    """

    valid: bool
    reason: InvalidReason | None = None
    record: VerificationToken | None = None


@dataclass(frozen=True)
class TokenStatus:
    """Polling view of a token.

    Attributes:
        exists: A token with this value was issued.
        used: The token was consumed.
        expired: The expiry time has passed.
        superseded: A newer token replaced this one.
    """

    exists: bool
    used: bool
    expired: bool
    superseded: bool

    @property
    def state(self) -> str:
        """``verificado``, ``expirado`` or ``pendiente`` for the waiting page."""
        if self.used:
            return "verificado"
        if self.expired or self.superseded:
            return "expirado"
        return "pendiente"


@dataclass(frozen=True)
class IssuedToken:
    """A freshly issued token.

    Attributes:
        token: Plain token value (goes into the email link only).
        record: Stored row (holds the hash, never the plain value).
        ttl_minutes: Lifetime used to compute expires_at.
    """

    token: str
    record: VerificationToken
    ttl_minutes: int

    @property
    def contact_address(self) -> str:
        return self.record.contact_address

    @property
    def expires_at(self) -> datetime:
        return self.record.expires_at


# =============================================================================
# Helpers
# =============================================================================


def _utcnow() -> datetime:
    return datetime.now(UTC)


def hash_token(plain: str) -> str:
    """SHA-256 hex digest used as the stored lookup key."""
    return hashlib.sha256(plain.encode()).hexdigest()


def generate_token() -> tuple[str, str]:
    """Generate a verification token and its SHA-256 hash.

    Returns:
        (plain_token, token_hash): plain for the email, hash for storage.
    """
    plain = secrets.token_hex(_TOKEN_BYTES)
    return plain, hash_token(plain)


def evaluate_token(record: VerificationToken | None, now: datetime) -> TokenValidation:
    """Decide whether a stored token is consumable at ``now``.

    Checks run in a fixed order: missing, used, superseded, expired. A
    token is still valid at exactly ``expires_at``.

    Args:
        record: Stored token, or None if the lookup found nothing.
        now: Reference time.

    Returns:
        TokenValidation for the record.
    """
    if record is None:
        return TokenValidation(valid=False, reason=InvalidReason.NOT_FOUND)
    if record.used_at is not None:
        return TokenValidation(
            valid=False, reason=InvalidReason.ALREADY_USED, record=record
        )
    if record.superseded_at is not None:
        return TokenValidation(
            valid=False, reason=InvalidReason.SUPERSEDED, record=record
        )
    if now > record.expires_at:
        return TokenValidation(valid=False, reason=InvalidReason.EXPIRED, record=record)
    return TokenValidation(valid=True, record=record)


def compute_status(record: VerificationToken | None, now: datetime) -> TokenStatus:
    """Build the polling view of a stored token."""
    if record is None:
        return TokenStatus(exists=False, used=False, expired=False, superseded=False)
    return TokenStatus(
        exists=True,
        used=record.used_at is not None,
        expired=now > record.expires_at,
        superseded=record.superseded_at is not None,
    )


_REASON_ERRORS = {
    InvalidReason.NOT_FOUND: TokenNotFoundError,
    InvalidReason.ALREADY_USED: TokenAlreadyUsedError,
    InvalidReason.SUPERSEDED: TokenSupersededError,
    InvalidReason.EXPIRED: TokenExpiredError,
}


def raise_for_reason(reason: InvalidReason) -> NoReturn:
    """Raise the API error that corresponds to an invalid reason."""
    raise _REASON_ERRORS[reason]()


# =============================================================================
# Issuer
# =============================================================================


async def invalidate_active(
    db: AsyncSession,
    *,
    subject_id: int,
    purpose: TokenPurpose,
    now: datetime | None = None,
) -> int:
    """Supersede every active token of a (subject, purpose) pair.

    Idempotent: returns 0 when nothing was active.

    Args:
        db: Database session.
        subject_id: Student ID.
        purpose: Token purpose.
        now: Supersede timestamp (defaults to current UTC time).

    Returns:
        Number of tokens superseded.
    """
    return await VerificationTokenRepository.supersede_active(
        db,
        subject_id=subject_id,
        purpose=purpose.value,
        now=now or _utcnow(),
    )


async def issue_token(
    db: AsyncSession,
    *,
    subject_id: int,
    contact_address: str,
    purpose: TokenPurpose,
    metadata: RegistrationMetadata | RecoveryMetadata | EmailChangeMetadata,
    ttl_minutes: int = DEFAULT_TTL_MINUTES,
    issuing_ip: str | None = None,
    now: datetime | None = None,
) -> IssuedToken:
    """Issue a new token for (subject, purpose), superseding predecessors.

    Does not commit. The caller commits and only then dispatches the email.

    Args:
        db: Database session.
        subject_id: Student ID.
        contact_address: Address the link will be sent to.
        purpose: Token purpose.
        metadata: Purpose-specific payload; its variant must match ``purpose``.
        ttl_minutes: Token lifetime.
        issuing_ip: Client IP of the issuing request.
        now: Issuance time (defaults to current UTC time).

    Returns:
        IssuedToken with the plain value and the stored row.

    Raises:
        ValueError: If the metadata variant does not match the purpose or
            ttl_minutes is not positive.
        InternalError: If every insert attempt hit a unique violation.
    """
    if metadata.purpose != purpose.value:
        msg = f"Metadata for '{metadata.purpose}' given for purpose '{purpose.value}'"
        raise ValueError(msg)
    if ttl_minutes <= 0:
        msg = f"ttl_minutes must be positive, got {ttl_minutes}"
        raise ValueError(msg)

    now = now or _utcnow()
    expires_at = now + timedelta(minutes=ttl_minutes)
    stored_metadata = metadata_to_storage(metadata)

    await VerificationTokenRepository.lock_subject_purpose(
        db, subject_id=subject_id, purpose=purpose.value
    )

    for attempt in range(1, _MAX_ISSUE_ATTEMPTS + 1):
        plain, token_hash = generate_token()
        try:
            async with db.begin_nested():
                superseded = await VerificationTokenRepository.supersede_active(
                    db, subject_id=subject_id, purpose=purpose.value, now=now
                )
                record = await VerificationTokenRepository.create(
                    db,
                    token_hash=token_hash,
                    subject_id=subject_id,
                    purpose=purpose.value,
                    contact_address=contact_address,
                    token_metadata=stored_metadata,
                    created_at=now,
                    expires_at=expires_at,
                    issuing_ip=issuing_ip,
                )
        except IntegrityError:
            logger.warning(
                "Verification token insert conflict for subject %s (%s), attempt %d",
                subject_id,
                purpose.value,
                attempt,
            )
            continue

        logger.info(
            "Issued %s verification token for subject %s (superseded %d)",
            purpose.value,
            subject_id,
            superseded,
        )
        return IssuedToken(token=plain, record=record, ttl_minutes=ttl_minutes)

    raise InternalError("No se pudo generar el token de verificación")


# =============================================================================
# Validator / Status Poller
# =============================================================================


async def validate_token(
    db: AsyncSession,
    token: str,
    *,
    now: datetime | None = None,
) -> TokenValidation:
    """Check whether a plain token is consumable. Pure read.

    Args:
        db: Database session.
        token: Plain token value.
        now: Reference time (defaults to current UTC time).

    Returns:
        TokenValidation; ``record`` is set whenever the token exists.
    """
    record = await VerificationTokenRepository.get_by_hash(db, hash_token(token))
    return evaluate_token(record, now or _utcnow())


async def get_token_status(
    db: AsyncSession,
    token: str,
    *,
    now: datetime | None = None,
) -> TokenStatus:
    """Polling view of a plain token. Pure read.

    Args:
        db: Database session.
        token: Plain token value.
        now: Reference time (defaults to current UTC time).

    Returns:
        TokenStatus (``exists`` is False for unknown tokens).
    """
    record = await VerificationTokenRepository.get_by_hash(db, hash_token(token))
    return compute_status(record, now or _utcnow())


# =============================================================================
# Consumer
# =============================================================================


async def consume_token(
    db: AsyncSession,
    token: str,
    *,
    used_from_ip: str | None = None,
    now: datetime | None = None,
) -> VerificationToken:
    """Consume a token exactly once.

    Validates first (no mutation on failure), then claims the token with a
    conditional UPDATE. If the UPDATE matches no row another request got
    there first, so the row is re-read to report the precise reason.

    Does not commit. Run the purpose effects in the same transaction, then
    commit.

    Args:
        db: Database session.
        token: Plain token value.
        used_from_ip: Client IP of the consuming request.
        now: Consumption time (defaults to current UTC time).

    Returns:
        The consumed VerificationToken.

    Raises:
        TokenNotFoundError: Unknown token.
        TokenAlreadyUsedError: Token already consumed (including lost races).
        TokenSupersededError: A newer token replaced this one.
        TokenExpiredError: Token expired.
    """
    now = now or _utcnow()
    token_hash = hash_token(token)

    record = await VerificationTokenRepository.get_by_hash(db, token_hash)
    validation = evaluate_token(record, now)
    if validation.reason is not None:
        raise_for_reason(validation.reason)

    claimed = await VerificationTokenRepository.mark_used(
        db, token_hash=token_hash, used_from_ip=used_from_ip, now=now
    )
    if claimed is None:
        current = await VerificationTokenRepository.get_by_hash(db, token_hash)
        reason = evaluate_token(current, now).reason
        logger.info("Lost consumption race for token %s", token_hash[:8])
        raise_for_reason(reason or InvalidReason.ALREADY_USED)

    logger.info(
        "Consumed %s verification token for subject %s",
        claimed.purpose,
        claimed.subject_id,
    )
    return claimed
