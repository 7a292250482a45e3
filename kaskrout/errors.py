class KaskroutError(Exception):
    """Base exception for all domain errors."""

    status_code = 500
    code = "internal_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class ValidationError(KaskroutError):
    """Raised when input is well-formed JSON but semantically invalid.

    Examples:
    - an unknown period filter on a list endpoint
    - a profile update that changes nothing
    """

    status_code = 400
    code = "validation_error"


class UnauthorizedError(KaskroutError):
    """Raised when the bearer token is missing, unknown, expired or revoked."""

    status_code = 401
    code = "unauthorized"


class ForbiddenError(KaskroutError):
    """Raised when the caller's role lacks the capability for a write."""

    status_code = 403
    code = "forbidden"


class NotFoundError(KaskroutError):
    """Raised when a referenced row id does not exist."""

    status_code = 404
    code = "not_found"


class ConflictError(KaskroutError):
    """Raised on unique-name clashes and on deletes blocked by dependent rows."""

    status_code = 409
    code = "conflict"
