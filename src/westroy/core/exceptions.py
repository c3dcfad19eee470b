"""Domain error taxonomy.

Services raise these; `westroy.main` renders them as
`{"detail": {"code": ..., "message": ...}}` with the matching status code.
"""


class MarketplaceError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    @property
    def public_message(self) -> str:
        return self.message


class ValidationError(MarketplaceError):
    """Malformed or missing input (user-correctable)."""

    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(MarketplaceError):
    status_code = 401
    code = "UNAUTHENTICATED"


class AuthorizationError(MarketplaceError):
    """Authenticated, but not permitted to act on this resource."""

    status_code = 403
    code = "FORBIDDEN"


class NotFoundError(MarketplaceError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(MarketplaceError):
    """The target is already in an incompatible state (duplicate, race lost)."""

    status_code = 409
    code = "CONFLICT"


class InvalidStateError(ConflictError):
    """A lifecycle transition that the state machine does not allow."""

    status_code = 400
    code = "INVALID_STATE"


class DependencyError(MarketplaceError):
    """Database or external-service failure. Details go to the log only."""

    status_code = 500
    code = "DEPENDENCY_ERROR"

    @property
    def public_message(self) -> str:
        return "Service temporarily unavailable"
