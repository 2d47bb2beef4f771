class ServiceHubError(ValueError):
    """Base class for user-visible booking errors."""

    code = "error"


class ValidationError(ServiceHubError):
    code = "validation"


class NotFoundError(ServiceHubError):
    code = "not_found"


class InvalidTransitionError(ServiceHubError):
    code = "invalid_transition"


class ConflictError(ServiceHubError):
    code = "conflict"


class TransientError(ServiceHubError):
    """Retryable failure of the remote store (consistency or availability)."""

    code = "transient"


class AuthorizationError(ServiceHubError):
    code = "authorization"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        ValidationError,
        NotFoundError,
        InvalidTransitionError,
        ConflictError,
        TransientError,
        AuthorizationError,
    )
}
