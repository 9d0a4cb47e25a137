"""Typed business-rule errors raised by the lifecycle engine."""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for rule violations surfaced to the caller unchanged."""

    kind = "LifecycleError"
    status_code = 400

    def __init__(self, message: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.kind, "message": self.message}


class ValidationError(LifecycleError):
    """Raised when request parameters are malformed."""

    kind = "ValidationError"
    status_code = 400


class NotFound(LifecycleError):
    kind = "NotFound"
    status_code = 404


class Forbidden(LifecycleError):
    kind = "Forbidden"
    status_code = 403


class QuotaExceeded(LifecycleError):
    """Raised when the yearly P1 or P2 slot is already spent."""

    kind = "QuotaExceeded"
    status_code = 409


class CapacityExceeded(LifecycleError):
    kind = "CapacityExceeded"
    status_code = 409


class DuplicateInterest(LifecycleError):
    kind = "DuplicateInterest"
    status_code = 409


class DuplicateEnrollment(LifecycleError):
    kind = "DuplicateEnrollment"
    status_code = 409


class InvalidTransition(LifecycleError):
    """Raised when an action is not legal from the record's current status."""

    kind = "InvalidTransition"
    status_code = 409
