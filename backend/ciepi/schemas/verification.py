"""Verification API request/response schemas.

Token metadata is a tagged union keyed by ``purpose``: each purpose defines
its own payload, so consumption effects can dispatch exhaustively on the
variant instead of poking at an untyped dict.

All request schemas use ConfigDict(extra="forbid") to reject unexpected fields.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError


class TokenPurpose(str, Enum):
    """Why a token was issued. Selects the post-consumption effects."""

    REGISTRATION = "registration"
    RECOVERY = "recovery"
    EMAIL_CHANGE = "email_change"


# =============================================================================
# Purpose metadata (tagged union)
# =============================================================================


class RegistrationMetadata(BaseModel):
    """Metadata for a registration token.

    Attributes:
        capacitacion_id: Training the registrant is enrolling in. When set,
            consuming the token creates the enrollment.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    purpose: Literal["registration"] = "registration"
    capacitacion_id: int | None = Field(default=None, gt=0)


class RecoveryMetadata(BaseModel):
    """Metadata for an account recovery token (no payload)."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    purpose: Literal["recovery"] = "recovery"


class EmailChangeMetadata(BaseModel):
    """Metadata for an email change token.

    Attributes:
        new_address: Address being confirmed. The link is sent here and it
            replaces the student's email on consumption.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    purpose: Literal["email_change"] = "email_change"
    new_address: EmailStr


TokenMetadata = Annotated[
    RegistrationMetadata | RecoveryMetadata | EmailChangeMetadata,
    Field(discriminator="purpose"),
]

_metadata_adapter: TypeAdapter[TokenMetadata] = TypeAdapter(TokenMetadata)


def parse_token_metadata(
    purpose: TokenPurpose | str,
    payload: dict[str, Any] | None,
) -> RegistrationMetadata | RecoveryMetadata | EmailChangeMetadata:
    """Validate a raw metadata payload against the schema for ``purpose``.

    The ``purpose`` argument is authoritative; a ``purpose`` key inside the
    payload is ignored.

    Args:
        purpose: Token purpose.
        payload: Raw metadata dict (stored JSON or request body).

    Returns:
        The metadata variant for the purpose.

    Raises:
        pydantic.ValidationError: If the payload does not fit the schema.
    """
    raw = dict(payload or {})
    raw["purpose"] = TokenPurpose(purpose).value
    return _metadata_adapter.validate_python(raw)


def metadata_to_storage(
    metadata: RegistrationMetadata | RecoveryMetadata | EmailChangeMetadata,
) -> dict[str, Any]:
    """Serialize metadata for the JSONB column (purpose lives in its own column)."""
    return metadata.model_dump(mode="json", exclude={"purpose"}, exclude_none=True)


def _check_metadata(purpose: TokenPurpose, payload: dict[str, Any] | None) -> None:
    """Raise ValueError with the first schema error, for request validators."""
    try:
        parse_token_metadata(purpose, payload)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(part) for part in first["loc"])
        msg = f"Invalid metadata for purpose '{purpose.value}': {loc} {first['msg']}"
        raise ValueError(msg) from None


# =============================================================================
# Request Schemas
# =============================================================================


class IssueTokenRequest(BaseModel):
    """Request body for POST /verificacion/generar.

    Attributes:
        subject_id: Student to verify.
        purpose: Token purpose.
        metadata: Purpose-specific payload (validated against the purpose).
    """

    model_config = ConfigDict(extra="forbid")

    subject_id: int = Field(gt=0)
    purpose: TokenPurpose
    metadata: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def validate_metadata(self) -> "IssueTokenRequest":
        """Metadata must match the schema of the declared purpose."""
        _check_metadata(self.purpose, self.metadata)
        return self

    def token_metadata(
        self,
    ) -> RegistrationMetadata | RecoveryMetadata | EmailChangeMetadata:
        """Typed metadata for this request."""
        return parse_token_metadata(self.purpose, self.metadata)


class ReissueTokenRequest(BaseModel):
    """Request body for POST /verificacion/reenviar.

    Either ``token`` (copy subject, purpose and metadata from a previous
    token) or ``subject_id`` + ``purpose`` (+ optional ``metadata``).
    """

    model_config = ConfigDict(extra="forbid")

    token: str | None = Field(default=None, min_length=1, max_length=256)
    subject_id: int | None = Field(default=None, gt=0)
    purpose: TokenPurpose | None = None
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def validate_source(self) -> "ReissueTokenRequest":
        """Require exactly one way of identifying what to reissue."""
        if self.token is not None:
            if self.subject_id is not None or self.purpose is not None:
                msg = "Provide either 'token' or 'subject_id' and 'purpose', not both"
                raise ValueError(msg)
            return self

        if self.subject_id is None or self.purpose is None:
            msg = "Se requiere 'token' o 'subject_id' y 'purpose' para reenviar"
            raise ValueError(msg)

        _check_metadata(self.purpose, self.metadata)
        return self


# =============================================================================
# Response Schemas
# =============================================================================


class IssuedTokenResponse(BaseModel):
    """Issue / reissue result.

    ``token`` is the plain value: the only time it leaves the server other
    than inside the email link. The waiting page uses it to poll status.
    """

    token: str
    contact_address: str
    expires_at: datetime
    ttl_minutes: int
    waiting_url: str
    already_verified: Literal[False] = False


class AlreadyVerifiedResponse(BaseModel):
    """Returned instead of a token when a registration needs no confirmation."""

    already_verified: Literal[True] = True
    message: str = "El correo ya está verificado"


class TokenStatusResponse(BaseModel):
    """Status poll result.

    ``state`` is ``verificado`` (used), ``expirado`` (expired or superseded:
    the user should request a resend) or ``pendiente``.
    """

    exists: bool
    used: bool
    expired: bool
    superseded: bool
    state: Literal["verificado", "expirado", "pendiente"]
    poll_interval_seconds: int


class SubjectSnapshot(BaseModel):
    """Student fields echoed back after a verification."""

    id: int
    first_names: str
    last_names: str
    email: str | None


class ConsumeTokenResponse(BaseModel):
    """Consume result: who was verified, why, and what it caused."""

    subject: SubjectSnapshot
    purpose: TokenPurpose
    effects: dict[str, Any]


class TokenInfoResponse(BaseModel):
    """Read-only token details for the confirmation page."""

    subject: SubjectSnapshot
    purpose: TokenPurpose
    valid: bool
    reason: str | None
    used: bool
    expired: bool
    superseded: bool
    expires_at: datetime
    metadata: dict[str, Any]
