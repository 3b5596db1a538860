"""
Booking error taxonomy.

Every failure the engine reports to callers is a BookingError subclass with a
stable error_code, a user-facing message (Spanish, shown to clients) and a
details dict. to_dict() produces the failure payload shape used across the
service: {"success": False, "error_code", "error_message", "details"}.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    VALIDATION = "validation"
    SLOT_CONFLICT = "slot_conflict"
    NO_PROFESSIONAL_AVAILABLE = "no_professional_available"
    PAYMENT_REQUIRED = "payment_required"
    INTERNAL = "internal"


class BookingError(Exception):
    """Base class for all booking engine errors."""

    kind: ErrorKind = ErrorKind.INTERNAL
    default_code: str = "BOOKING_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": False,
            "error_code": self.error_code,
            "error_message": self.message,
            "details": self.details,
        }


class NotFoundError(BookingError):
    kind = ErrorKind.NOT_FOUND
    default_code = "NOT_FOUND"


class BookingValidationError(BookingError):
    kind = ErrorKind.VALIDATION
    default_code = "VALIDATION_ERROR"


class SlotConflictError(BookingError):
    kind = ErrorKind.SLOT_CONFLICT
    default_code = "SLOT_CONFLICT"


class NoProfessionalAvailableError(BookingError):
    kind = ErrorKind.NO_PROFESSIONAL_AVAILABLE
    default_code = "NO_PROFESSIONAL_AVAILABLE"


class PaymentRequiredError(BookingError):
    """
    Soft failure: the client must prepay online or acknowledge the risk.

    details carries the scoring returned by the payment validation service.
    """

    kind = ErrorKind.PAYMENT_REQUIRED
    default_code = "PAYMENT_REQUIRED"


class InternalError(BookingError):
    kind = ErrorKind.INTERNAL
    default_code = "INTERNAL_ERROR"


class ConcurrentUpdateError(Exception):
    """Raised by the store when a serializable transaction must be retried."""
