"""Pydantic request/response schemas for API endpoints."""

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
    TokenMetadata,
    TokenPurpose,
    TokenStatusResponse,
    metadata_to_storage,
    parse_token_metadata,
)

__all__ = [
    # Metadata
    "EmailChangeMetadata",
    "RecoveryMetadata",
    "RegistrationMetadata",
    "TokenMetadata",
    "TokenPurpose",
    "metadata_to_storage",
    "parse_token_metadata",
    # Requests
    "IssueTokenRequest",
    "ReissueTokenRequest",
    # Responses
    "AlreadyVerifiedResponse",
    "ConsumeTokenResponse",
    "IssuedTokenResponse",
    "SubjectSnapshot",
    "TokenInfoResponse",
    "TokenStatusResponse",
]
