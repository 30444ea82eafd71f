"""Email verification endpoints.

Public endpoints used by the registration portal. The token in the path is
the credential; no session is required.

Endpoints:
- POST /verificacion/generar - issue a token and email the link
- POST /verificacion/reenviar - reissue (supersedes the previous token)
- GET /verificacion/estado/{token} - status poll for the waiting page
- POST /verificacion/validar/{token} - consume the token and apply effects
- GET /verificacion/validar/{token} - read-only info for the confirm page
"""

from datetime import UTC, datetime
from typing import Annotated

import structlog
from fastapi import APIRouter, BackgroundTasks, Path, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ciepi.api.deps import ClientIp, DbSession
from ciepi.core.config import settings
from ciepi.core.email import send_verification_email
from ciepi.core.errors import NotFoundError, TokenNotFoundError, ValidationError
from ciepi.core.rate_limiting import limiter
from ciepi.core.responses import DataResponse
from ciepi.core.urls import build_verification_url, build_waiting_url
from ciepi.models.student import Student
from ciepi.repositories.student_repository import StudentRepository
from ciepi.repositories.training_repository import TrainingRepository
from ciepi.repositories.verification_token_repository import (
    VerificationTokenRepository,
)
from ciepi.schemas.verification import (
    AlreadyVerifiedResponse,
    ConsumeTokenResponse,
    EmailChangeMetadata,
    IssuedTokenResponse,
    IssueTokenRequest,
    RecoveryMetadata,
    RegistrationMetadata,
    ReissueTokenRequest,
    SubjectSnapshot,
    TokenInfoResponse,
    TokenPurpose,
    TokenStatusResponse,
    parse_token_metadata,
)
from ciepi.services.verification_effects import apply_consumption_effects
from ciepi.services.verification_token_service import (
    compute_status,
    consume_token,
    evaluate_token,
    get_token_status,
    hash_token,
    issue_token,
)

logger = structlog.get_logger()

router = APIRouter()

_DEFAULT_CONTEXT_LABEL = "CIEPI"

TokenPath = Annotated[str, Path(min_length=1, max_length=256)]

IssueResult = IssuedTokenResponse | AlreadyVerifiedResponse


def _snapshot(student: Student) -> SubjectSnapshot:
    return SubjectSnapshot(
        id=student.id,
        first_names=student.first_names,
        last_names=student.last_names,
        email=student.email,
    )


# ===================================================================
# Issue helper (shared by generar / reenviar)
# ===================================================================


async def _issue_for_student(
    db: AsyncSession,
    background_tasks: BackgroundTasks,
    *,
    subject_id: int,
    purpose: TokenPurpose,
    metadata: RegistrationMetadata | RecoveryMetadata | EmailChangeMetadata,
    issuing_ip: str | None,
) -> IssueResult:
    """Issue a token for a student, commit, then queue the email.

    Raises:
        NotFoundError: Unknown student or training.
        ValidationError: Student has no email on file.
    """
    student = await StudentRepository.get_by_id(db, subject_id)
    if student is None:
        raise NotFoundError("Student", str(subject_id))

    if purpose == TokenPurpose.REGISTRATION and student.is_email_verified:
        return AlreadyVerifiedResponse()

    if isinstance(metadata, EmailChangeMetadata):
        contact_address = str(metadata.new_address)
    elif student.email:
        contact_address = student.email
    else:
        raise ValidationError("El estudiante no tiene correo electrónico registrado")

    context_label = _DEFAULT_CONTEXT_LABEL
    if (
        isinstance(metadata, RegistrationMetadata)
        and metadata.capacitacion_id is not None
    ):
        training = await TrainingRepository.get_by_id(db, metadata.capacitacion_id)
        if training is None:
            raise NotFoundError("Training", str(metadata.capacitacion_id))
        context_label = training.name

    issued = await issue_token(
        db,
        subject_id=student.id,
        contact_address=contact_address,
        purpose=purpose,
        metadata=metadata,
        ttl_minutes=settings.verification_token_ttl_minutes,
        issuing_ip=issuing_ip,
    )

    # The token must be durable before the link leaves the server
    await db.commit()

    background_tasks.add_task(
        send_verification_email,
        to_email=contact_address,
        first_names=student.first_names,
        last_names=student.last_names,
        verification_url=build_verification_url(issued.token),
        context_label=context_label,
        ttl_minutes=issued.ttl_minutes,
    )

    return IssuedTokenResponse(
        token=issued.token,
        contact_address=issued.contact_address,
        expires_at=issued.expires_at,
        ttl_minutes=issued.ttl_minutes,
        waiting_url=build_waiting_url(issued.token),
    )


# ===================================================================
# POST /verificacion/generar
# ===================================================================


@router.post("/generar")
@limiter.limit(lambda: settings.rate_limit_issue)
async def generate_token(
    request: Request,  # noqa: ARG001
    body: IssueTokenRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    ip: ClientIp,
) -> DataResponse[IssueResult]:
    """Issue a verification token and send the confirmation email.

    Any previous active token for the same student and purpose is
    superseded. A registration for an already verified email returns
    ``already_verified: true`` and issues nothing.
    """
    result = await _issue_for_student(
        db,
        background_tasks,
        subject_id=body.subject_id,
        purpose=body.purpose,
        metadata=body.token_metadata(),
        issuing_ip=ip,
    )
    return DataResponse(data=result)


# ===================================================================
# POST /verificacion/reenviar
# ===================================================================


@router.post("/reenviar")
@limiter.limit(lambda: settings.rate_limit_issue)
async def resend_token(
    request: Request,  # noqa: ARG001
    body: ReissueTokenRequest,
    background_tasks: BackgroundTasks,
    db: DbSession,
    ip: ClientIp,
) -> DataResponse[IssueResult]:
    """Issue a fresh token, superseding the previous one.

    With ``token``, subject, purpose and metadata are copied from that
    token (used, expired or superseded tokens are all accepted).
    """
    if body.token is not None:
        previous = await VerificationTokenRepository.get_by_hash(
            db, hash_token(body.token)
        )
        if previous is None:
            raise TokenNotFoundError()
        subject_id = previous.subject_id
        purpose = TokenPurpose(previous.purpose)
        metadata = parse_token_metadata(purpose, previous.token_metadata)
    else:
        # Both set: enforced by the request validator
        subject_id = body.subject_id  # type: ignore[assignment]
        purpose = body.purpose  # type: ignore[assignment]
        metadata = parse_token_metadata(purpose, body.metadata)

    logger.info("verification_resend", subject_id=subject_id, purpose=purpose.value)

    result = await _issue_for_student(
        db,
        background_tasks,
        subject_id=subject_id,
        purpose=purpose,
        metadata=metadata,
        issuing_ip=ip,
    )
    return DataResponse(data=result)


# ===================================================================
# GET /verificacion/estado/{token}
# ===================================================================


@router.get("/estado/{token}")
@limiter.limit(lambda: settings.rate_limit_status_poll)
async def get_status(
    request: Request,  # noqa: ARG001
    token: TokenPath,
    db: DbSession,
) -> DataResponse[TokenStatusResponse]:
    """Report token status for the waiting page. Read-only.

    The page polls every ``poll_interval_seconds`` until ``state`` is
    ``verificado`` or ``expirado``.
    """
    status = await get_token_status(db, token)
    if not status.exists:
        raise TokenNotFoundError()

    return DataResponse(
        data=TokenStatusResponse(
            exists=status.exists,
            used=status.used,
            expired=status.expired,
            superseded=status.superseded,
            state=status.state,
            poll_interval_seconds=settings.verification_poll_interval_seconds,
        )
    )


# ===================================================================
# /verificacion/validar/{token}
# ===================================================================


@router.post("/validar/{token}")
@limiter.limit(lambda: settings.rate_limit_consume)
async def consume(
    request: Request,  # noqa: ARG001
    token: TokenPath,
    db: DbSession,
    ip: ClientIp,
) -> DataResponse[ConsumeTokenResponse]:
    """Consume a token and apply its purpose effects.

    Exactly one of any number of concurrent calls succeeds; the others get
    TOKEN_ALREADY_USED. Effects commit together with the consumption.
    """
    now = datetime.now(UTC)
    record = await consume_token(db, token, used_from_ip=ip, now=now)
    student, effects = await apply_consumption_effects(db, record, now=now)
    await db.commit()

    logger.info(
        "verification_consumed",
        subject_id=record.subject_id,
        purpose=record.purpose,
    )

    return DataResponse(
        data=ConsumeTokenResponse(
            subject=_snapshot(student),
            purpose=TokenPurpose(record.purpose),
            effects=effects,
        )
    )


@router.get("/validar/{token}")
@limiter.limit(lambda: settings.rate_limit_status_poll)
async def get_token_info(
    request: Request,  # noqa: ARG001
    token: TokenPath,
    db: DbSession,
) -> DataResponse[TokenInfoResponse]:
    """Token details for the confirmation page. Does not consume."""
    record = await VerificationTokenRepository.get_by_hash(db, hash_token(token))
    if record is None:
        raise TokenNotFoundError()

    student = await StudentRepository.get_by_id(db, record.subject_id)
    if student is None:
        raise NotFoundError("Student", str(record.subject_id))

    now = datetime.now(UTC)
    validation = evaluate_token(record, now)
    status = compute_status(record, now)

    return DataResponse(
        data=TokenInfoResponse(
            subject=_snapshot(student),
            purpose=TokenPurpose(record.purpose),
            valid=validation.valid,
            reason=validation.reason.value if validation.reason else None,
            used=status.used,
            expired=status.expired,
            superseded=status.superseded,
            expires_at=record.expires_at,
            metadata=record.token_metadata,
        )
    )
