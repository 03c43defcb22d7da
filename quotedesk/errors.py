"""
quotedesk/errors.py

Domain exceptions.

Every failure raised by the services carries a stable machine code, an HTTP status
and a human-readable message. The app factory registers a single handler that renders
them as JSON (see quotedesk/__init__.py).

Partial email failures are NOT exceptions: the orchestrator reports them as counts and
error lists in its batch result.
"""

from __future__ import annotations


class QuoteDeskError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "QUOTEDESK_ERROR"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict:
        return {"success": False, "error": {"code": self.code, "message": self.message}}


class ValidationError(QuoteDeskError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(QuoteDeskError):
    code = "NOT_FOUND"
    status_code = 404


class InvalidTransitionError(QuoteDeskError):
    """A quote status change the lifecycle does not allow."""

    code = "INVALID_TRANSITION"
    status_code = 409


class ConflictError(QuoteDeskError):
    code = "CONFLICT"
    status_code = 409


class BackendError(QuoteDeskError):
    """Database create/update/query failure (wrapped SQLAlchemyError)."""

    code = "DATABASE_ERROR"
    status_code = 500


class EmailDeliveryError(QuoteDeskError):
    """A single outbound email could not be delivered."""

    code = "EMAIL_DELIVERY_FAILED"
    status_code = 502
