class AppException(Exception):
    """Base application exception."""

    pass


class NotFoundError(AppException):
    """Resource not found exception."""

    pass


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or [message]


class ConflictError(AppException):
    """Request conflicts with the current state of a resource."""

    pass


class ExternalIntegrationError(AppException):
    """An external collaborator (payment platform, etc.) call failed."""

    pass
