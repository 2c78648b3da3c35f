"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from shiftcheck.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Shift", resource_id=42)
    raise ValidationError("Message cannot be empty", details={"text": "..."})
"""


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "AdminRequest", "Shift").
        resource_id: The id that was looked up. Included in logs and message.
    """

    status_code = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names.
    """

    status_code = 422

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique record.

    Maps to HTTP 409.
    """

    status_code = 409

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class AlreadyProcessedError(ConflictError):
    """Raised when a decision targets a record that has left the pending state.

    The check happens in the store (conditional update), so a second admin
    racing the same decision lands here rather than overwriting the first.
    """

    def __init__(self, resource: str, resource_id: int | str, status: str | None = None) -> None:
        self.resource = resource
        self.field = "status"
        self.value = status
        self.resource_id = resource_id
        msg = f"{resource} id={resource_id} already processed"
        if status:
            msg += f": {status}"
        Exception.__init__(self, msg)


class OperationInFlightError(AlreadyProcessedError):
    """Raised when the same operation id is already being processed.

    A decision that arrives while another one for the same record is still
    inside its transaction has lost the race, so callers see it as an
    ``AlreadyProcessedError`` with status ``processing``.
    """

    def __init__(self, operation_id: str) -> None:
        resource, _, resource_id = operation_id.partition(":")
        self.operation_id = operation_id
        self.resource = resource
        self.field = "status"
        self.value = "processing"
        self.resource_id = resource_id or operation_id
        Exception.__init__(self, f"Operation {operation_id} is already in progress")


class PermissionDeniedError(Exception):
    """Raised when the signed-in user may not perform the action. HTTP 403."""

    status_code = 403

    def __init__(self, message: str = "You do not have permission to perform this action") -> None:
        super().__init__(message)


class UnauthenticatedError(Exception):
    """Raised when no valid signed-in session is present. HTTP 401."""

    status_code = 401

    def __init__(self, message: str = "Please log in to continue") -> None:
        super().__init__(message)
