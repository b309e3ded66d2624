"""
Service-wide exception hierarchy.

Every service in ``toolroom.services`` raises one of these types. The
application registers a single handler per type (see
``toolroom.utils.errors.init_error_handlers``) so every endpoint answers
with the same envelope and HTTP status for the same failure.

Usage:
    from toolroom.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Diecut", resource_id="DC-1001")
    raise ValidationError("diecutSn is required", details={"diecutSn": "missing"})
"""


class NotFoundError(Exception):
    """Raised when a referenced diecut, serial or modification does not exist
    or is not in an operable state (e.g. an INACTIVE diecut).

    Maps to HTTP 404.

    Args:
        resource: Human-readable entity name (e.g. "Diecut", "DiecutSerial").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" {resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when a required identifier or field is missing or malformed.

    Always raised before any store access. Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an insert would duplicate an existing key.

    Maps to HTTP 409. ``register_batch`` catches the duplicate case itself
    and counts it as a skip instead.

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


class InvalidTransitionError(Exception):
    """Raised when a workflow action is not allowed from the current state.

    Maps to HTTP 409.
    """

    def __init__(self, machine: str, current: str, target: str) -> None:
        self.machine = machine
        self.current = current
        self.target = target
        super().__init__(f"Invalid {machine} transition: {current} → {target}")


class StorageError(Exception):
    """Raised when the relational store fails (connectivity, constraint
    violation not otherwise classified).

    Maps to HTTP 500. The message returned to clients is generic; the
    original low-level error is kept on ``__cause__`` and in the logs.
    """

    def __init__(self, operation: str, message: str = "Database error") -> None:
        self.operation = operation
        super().__init__(message)


class DeadlineExceededError(StorageError):
    """Raised when a store call is aborted by the statement timeout.

    Maps to HTTP 504.
    """

    def __init__(self, operation: str) -> None:
        super().__init__(operation, "Database call exceeded its deadline")
