"""Custom exceptions for TrueName.

Every error carries a stable ``code`` so the transport layer can map it
without string matching. Expected "nothing to do" outcomes (no pending
consent to grant, nothing to revoke) are return values, not exceptions.
"""


class TrueNameError(Exception):
    """Base class for all TrueName errors."""

    code = "internal_error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.code
        super().__init__(self.message)


class ValidationError(TrueNameError):
    """Raised for malformed input, before the store is touched."""

    code = "validation_error"


class NotFoundError(TrueNameError):
    """Raised when a resource is unknown or not owned by the caller.

    Both cases share one message so callers cannot probe for other
    users' resources.
    """

    code = "not_found"

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"{resource} not found")


class ConflictError(TrueNameError):
    """Raised when a write collides with existing state."""

    code = "conflict"


class UniqueViolationError(ConflictError):
    """Raised by a store when a unique constraint rejects a write."""

    code = "unique_violation"

    def __init__(self, constraint: str) -> None:
        self.constraint = constraint
        super().__init__(f"Unique constraint violated: {constraint}")


class DeletionBlockedError(ConflictError):
    """Raised when a delete is refused because other records depend on it."""

    code = "deletion_blocked"

    def __init__(self, message: str, reason_code: str) -> None:
        self.reason_code = reason_code
        super().__init__(message)


class DependencyError(TrueNameError):
    """Raised when the backing store is unreachable or misbehaves."""

    code = "dependency_failure"


class AuthenticationRequiredError(TrueNameError):
    """Raised when a bearer token is missing or malformed."""

    code = "authentication_required"


class InvalidTokenError(TrueNameError):
    """Raised when a bearer token is unknown or expired."""

    code = "invalid_token"


class NoContextAssignedError(TrueNameError):
    """Raised when a session's (profile, client) pair has no context binding."""

    code = "no_context_assigned"
