"""
Service-wide exception hierarchy.

Services raise these; the field app blueprint registers handlers against
them once and gets consistent HTTP status codes everywhere.

Usage:
    from fieldsync.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkItem", resource_id=42)
    raise ValidationError("workItemIds array is required")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the caller's organization.

    Used for BOTH genuinely missing records AND cross-organization access,
    so a response never confirms that another organization's record exists.

    Args:
        resource: Human-readable model/entity name (e.g. "WorkItem", "Step record").
        resource_id: The key that was looked up. Included in logs, not in HTTP response.
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
    """Raised when input is malformed or misses a required field.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate existing data. Maps to HTTP 409."""

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        super().__init__(f"{resource} with {field}={value!r} already exists")


class PermissionDeniedError(Exception):
    """Raised when the caller may not touch the requested record. Maps to HTTP 403."""


class UnsupportedMediaError(Exception):
    """Raised when an uploaded file fails the extension / MIME allow-list. Maps to HTTP 415."""


class PayloadTooLargeError(Exception):
    """Raised when an uploaded file exceeds its per-kind size limit. Maps to HTTP 413."""

    def __init__(self, kind: str, size: int, limit: int) -> None:
        self.kind = kind
        self.size = size
        self.limit = limit
        super().__init__(f"{kind} of {size} bytes exceeds the {limit} byte limit")
