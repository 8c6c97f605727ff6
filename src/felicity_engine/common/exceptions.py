"""Felicity-Engine exception hierarchy.

Every error carries a stable ``kind`` that crosses the HTTP boundary as
``{"kind": ..., "message": ...}`` together with the status code to use.
"""

from typing import Any


class FelicityError(Exception):
    """Base exception for all Felicity errors."""

    kind = "FelicityError"
    status_code = 400

    def __init__(self, message: str = "", details: list[dict[str, Any]] | None = None):
        self.message = message
        self.details = details or []
        super().__init__(message)


class ValidationError(FelicityError):
    """Bad or missing form answer, variant, team data or request field."""

    kind = "ValidationError"
    status_code = 422

    def __init__(self, message: str = "Validation failed", details: list[dict[str, Any]] | None = None):
        super().__init__(message, details)


class PaymentProofMissingError(ValidationError):
    def __init__(self, message: str = "No payment proof on file for this registration"):
        super().__init__(message)


class PaymentNotRequiredError(ValidationError):
    def __init__(self, message: str = "This registration does not require payment approval"):
        super().__init__(message)


class NotFoundError(FelicityError):
    kind = "NotFound"
    status_code = 404


class EventNotFoundError(NotFoundError):
    def __init__(self, message: str = "Event not found"):
        super().__init__(message)


class RegistrationNotFoundError(NotFoundError):
    def __init__(self, message: str = "Registration not found"):
        super().__init__(message)


class TicketNotFoundError(FelicityError):
    kind = "TicketNotFound"
    status_code = 404

    def __init__(self, message: str = "Invalid ticket - no registration found"):
        super().__init__(message)


class InvalidTicketPayloadError(TicketNotFoundError):
    """QR payload failed to parse or its signature did not verify."""

    def __init__(self, message: str = "Invalid ticket - QR payload could not be verified"):
        super().__init__(message)


class OutOfStockError(FelicityError):
    kind = "OutOfStock"
    status_code = 409

    def __init__(self, message: str = "Requested item is out of stock"):
        super().__init__(message)


class CapacityReachedError(FelicityError):
    kind = "CapacityReached"
    status_code = 409

    def __init__(self, message: str = "Event has reached maximum capacity"):
        super().__init__(message)


class RegistrationClosedError(FelicityError):
    kind = "RegistrationClosed"
    status_code = 409

    def __init__(self, message: str = "Registration is closed for this event"):
        super().__init__(message)


class DeadlinePassedError(FelicityError):
    kind = "DeadlinePassed"
    status_code = 409

    def __init__(self, message: str = "Registration deadline has passed"):
        super().__init__(message)


class NotEligibleError(FelicityError):
    kind = "NotEligible"
    status_code = 403

    def __init__(self, message: str = "Participant is not eligible for this event"):
        super().__init__(message)


class DuplicateActiveRegistrationError(FelicityError):
    kind = "DuplicateActiveRegistration"
    status_code = 409

    def __init__(self, message: str = "You have already registered for this event"):
        super().__init__(message)


class FormLockedError(FelicityError):
    kind = "FormLocked"
    status_code = 409

    def __init__(self, message: str = "Registration form is locked after the first registration"):
        super().__init__(message)


class ConflictError(FelicityError):
    kind = "Conflict"
    status_code = 409

    def __init__(self, message: str = "The resource was modified concurrently, retry"):
        super().__init__(message)


class NotConfirmedError(FelicityError):
    kind = "NotConfirmed"
    status_code = 409

    def __init__(self, message: str = "Registration is not confirmed"):
        super().__init__(message)


class AlreadyFinalizedError(FelicityError):
    kind = "AlreadyFinalized"
    status_code = 409

    def __init__(self, message: str = "Registration is already finalized"):
        super().__init__(message)


class InvalidTransitionError(FelicityError):
    kind = "InvalidTransition"
    status_code = 409


class ForbiddenError(FelicityError):
    kind = "Forbidden"
    status_code = 403

    def __init__(self, message: str = "Not authorized to act on this registration"):
        super().__init__(message)


class TicketIssueError(FelicityError):
    """Raised when no unique ticket id could be generated within the retry budget."""

    kind = "TicketIssueError"
    status_code = 500

    def __init__(self, message: str = "Could not allocate a unique ticket id"):
        super().__init__(message)
