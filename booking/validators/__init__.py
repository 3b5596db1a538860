"""
Transaction Validators.

Booking rules checked before the atomic check-and-insert (e.g., in
BookingOrchestrator.create_appointment).

Validators:
- validate_grid_alignment: Start must be on the :00/:30 booking grid
- validate_not_in_past: Start must not be in the past
- validate_within_window: Interval must fit the professional's working hours
- validate_no_break_overlap: Interval must not overlap a branch break
"""

from booking.validators.transaction_validators import (
    BOOKING_GRID_MINUTES,
    ValidationResult,
    raise_for_result,
    to_branch_local,
    validate_grid_alignment,
    validate_no_break_overlap,
    validate_not_in_past,
    validate_within_window,
)

__all__ = [
    "BOOKING_GRID_MINUTES",
    "ValidationResult",
    "raise_for_result",
    "to_branch_local",
    "validate_grid_alignment",
    "validate_no_break_overlap",
    "validate_not_in_past",
    "validate_within_window",
]
