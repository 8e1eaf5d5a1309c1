"""
Shared error types.

Every error a core operation can raise lives here so the API layer can map
them to HTTP responses in one place, and tests can import the same classes.
"""

from typing import Optional


class CivicPulseError(Exception):
    """Base class for all domain errors."""
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "", detail: Optional[dict] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.detail = detail or {}

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message}
        if self.detail:
            body["context"] = self.detail
        return body


class NotFound(CivicPulseError):
    """Identifier does not resolve to an existing record."""
    status_code = 404
    code = "not_found"


class Forbidden(CivicPulseError):
    """Principal's role does not allow the operation."""
    status_code = 403
    code = "forbidden"


class InvalidTransition(CivicPulseError):
    """Requested status change is not allowed from the current state."""
    status_code = 409
    code = "invalid_transition"


class MissingBeforeImage(CivicPulseError):
    """Issue has no stored image to compare the after image against."""
    status_code = 422
    code = "missing_before_image"


class VerificationServiceError(CivicPulseError):
    """Verifier failed, timed out or answered with a malformed payload."""
    status_code = 502
    code = "verification_service_error"


class NotificationFailed(CivicPulseError):
    """Notifier failed after a positive verification."""
    status_code = 502
    code = "notification_failed"


class ValidationError(CivicPulseError):
    """Missing or malformed input fields."""
    status_code = 400
    code = "validation_error"
