"""API error classes.

HTTP status codes and machine-readable error codes for every failure the
verification API can surface.

Token failures carry distinct codes: the portal offers "resend" for
expired or superseded links and "start over" for used ones.
"""


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "NOT_FOUND").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Field validation failed (400).

    Use for request body validation errors, query param errors, etc.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class NotFoundError(APIError):
    """Resource not found (404)."""

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        if resource_id:
            message = f"{resource} with id '{resource_id}' not found"
        else:
            message = f"{resource} not found"
        super().__init__(
            code="NOT_FOUND",
            message=message,
            status_code=404,
        )


# =============================================================================
# Verification token errors
# =============================================================================


class TokenNotFoundError(APIError):
    """Token string does not match any issued token (404)."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_NOT_FOUND",
            message="El enlace de verificación no existe",
            status_code=404,
        )


class TokenExpiredError(APIError):
    """Token TTL elapsed before consumption (400).

    Recoverable: the client should offer a resend.
    """

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_EXPIRED",
            message="El enlace de verificación ha expirado",
            status_code=400,
        )


class TokenAlreadyUsedError(APIError):
    """Token was already consumed (400).

    Not recoverable with a resend: the originating flow must restart.
    Also returned to the loser of a concurrent consumption race.
    """

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_ALREADY_USED",
            message="Este enlace ya fue usado",
            status_code=400,
        )


class TokenSupersededError(APIError):
    """A newer token was issued for the same subject and purpose (400)."""

    def __init__(self) -> None:
        super().__init__(
            code="TOKEN_SUPERSEDED",
            message="Este enlace fue reemplazado por uno más reciente",
            status_code=400,
        )


class StoreUnavailableError(APIError):
    """Persistence failure (500).

    Raised for database errors. The underlying exception is logged,
    never returned to the client.
    """

    def __init__(self, message: str = "The data store is unavailable") -> None:
        super().__init__(
            code="STORE_UNAVAILABLE",
            message=message,
            status_code=500,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
