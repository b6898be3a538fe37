"""Service-level error taxonomy rendered by the API exception handlers."""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base class for errors surfaced to API consumers."""

    status_code = 500
    public_message = "Request failed"

    def __init__(self, message: str | None = None, *, errors: list[dict[str, Any]] | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.errors = errors or []


class ValidationError(ServiceError, ValueError):
    """Malformed input or a disallowed state transition."""

    status_code = 400
    public_message = "Invalid request data"


class NotFoundError(ServiceError, LookupError):
    """A referenced entity does not exist."""

    status_code = 404
    public_message = "Resource not found"


class PersistenceError(ServiceError):
    """The backing store could not be read or written.

    The message returned to callers stays generic; the original error is
    chained and logged where it was caught.
    """

    status_code = 500
