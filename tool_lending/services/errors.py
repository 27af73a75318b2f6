"""
Error taxonomy for the lending services.

Every error carries the HTTP status it maps to and a human readable
message; the API layer renders both into the standard response envelope.
"""


class LendingError(Exception):
    """Base class for expected lending failures."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(LendingError):
    """A required field is missing, empty or malformed."""

    status_code = 400


class NotFoundError(LendingError):
    """The referenced tool, record or notification does not exist."""

    status_code = 404


class ConflictError(LendingError):
    """The requested change is not allowed in the current state."""

    status_code = 400


class InternalError(LendingError):
    """Persistence failed in a way the caller cannot fix."""

    status_code = 500
