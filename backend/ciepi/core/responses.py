"""Response envelope models.

Every success body is ``{"data": ...}``; every error body is
``{"error": {"code", "message", "details"}}``. The portal pages branch on
``error.code`` to pick between "resend" and "start over" screens.
"""

from typing import Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class DataResponse(BaseModel, Generic[T]):
    """Standard response envelope for single resources.

    Usage:
        @router.get("/verificacion/estado/{token}")
        async def get_status(token: str) -> DataResponse[TokenStatusResponse]:
            status = await get_token_status(db, token)
            return DataResponse(data=TokenStatusResponse.from_status(status))
    """

    data: T


class ErrorDetail(BaseModel):
    """Error detail for response body.

    Attributes:
        code: Machine-readable error code (e.g., "TOKEN_EXPIRED").
        message: Human-readable error message.
        details: Optional list of field-level errors (for validation).
    """

    code: str
    message: str
    details: list[dict] | None = None


class ErrorResponse(BaseModel):
    """Standard error response envelope."""

    error: ErrorDetail
