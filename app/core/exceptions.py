"""
Notice-board exception hierarchy.

Services raise these types; blueprints map them to HTTP status codes once
through ``app.utils.errors.register_error_handlers``.

    ValidationError     → 422  malformed input (missing field, length bounds)
    AuthorizationError  → 403  caller's role is insufficient (401 if anonymous)
    StateError          → 409  transition is illegal from the current status
    TransientIOError    → 503  storage / network failure; caller may re-issue
    NotFoundError       → 404  missing, or not visible to the caller
    ConflictError       → 409  unique constraint would be violated

Usage:
    from app.core.exceptions import StateError, ValidationError

    raise ValidationError("Title is required", details={"title": "required"})
    raise StateError("notice", 42, "approved", "approve")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist or is not visible.

    Used for both genuinely missing rows and notices the caller may not
    read, so a 404 does not confirm that an unpublished notice exists.

    Args:
        resource: Human-readable entity name (e.g. "Notice", "User").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AuthorizationError(Exception):
    """Raised when the caller's role does not permit the requested operation.

    Args:
        action: Operation that was attempted (e.g. "notice.approve").
        user_id: Caller identity, None for anonymous callers.
        role: Effective role the caller holds, if any.
    """

    def __init__(
        self,
        action: str,
        user_id: int | None = None,
        role: str | None = None,
        message: str | None = None,
    ) -> None:
        self.action = action
        self.user_id = user_id
        self.role = role
        self.authenticated = user_id is not None
        if message is None:
            if user_id is None:
                message = f"Authentication required for '{action}'"
            else:
                message = f"Role '{role}' is not permitted to perform '{action}'"
        super().__init__(message)


class StateError(Exception):
    """Raised when a lifecycle transition is illegal from the current status.

    Args:
        resource: Entity name ("notice").
        resource_id: PK of the entity.
        current_status: Status the entity is in.
        action: Transition that was requested.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        current_status: str,
        action: str,
        reason: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current_status
        self.action = action
        msg = f"Cannot '{action}' {resource} {resource_id} (status={current_status})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TransientIOError(Exception):
    """Raised when a storage or persistence call fails.

    Retryable by the caller re-issuing the request; nothing retries
    automatically.

    Args:
        operation: Stage that failed (e.g. "notice.create", "storage.upload").
        message: Human-readable message surfaced to the caller.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique value.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)
