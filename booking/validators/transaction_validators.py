"""
Transaction validators for appointment writes.

Validators for booking rules that must be checked before the atomic
check-and-insert. Each returns a ValidationResult; raise_for_result turns a
failed result into the matching BookingError subclass.

Validators:
- validate_grid_alignment: start must sit on the fixed :00/:30 booking grid
- validate_not_in_past: start must not be before now
- validate_within_window: interval must fit in the working window
- validate_no_break_overlap: interval must not touch a branch break
"""

import logging
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field

from booking.errors import BookingError
from booking.services.conflict_detector import TimeInterval, find_conflicts

logger = logging.getLogger(__name__)

# System-wide booking grid, independent of Business.slot_granularity_minutes
# (which only drives slot discovery).
BOOKING_GRID_MINUTES = 30


class ValidationResult(BaseModel):
    """Result of a validation operation."""

    valid: bool
    error_code: str | None = None
    error_message: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


OK = ValidationResult(valid=True)


def raise_for_result(result: ValidationResult, error_cls: type[BookingError]) -> None:
    if not result.valid:
        raise error_cls(
            result.error_message or "Solicitud inválida",
            error_code=result.error_code,
            details=result.details,
        )


def to_branch_local(start_time: datetime, tz: ZoneInfo) -> datetime:
    """Naive datetimes are interpreted in the branch timezone."""
    if start_time.tzinfo is None:
        return start_time.replace(tzinfo=tz)
    return start_time.astimezone(tz)


def validate_grid_alignment(start_local: datetime) -> ValidationResult:
    if (
        start_local.minute % BOOKING_GRID_MINUTES != 0
        or start_local.second != 0
        or start_local.microsecond != 0
    ):
        return ValidationResult(
            valid=False,
            error_code="INVALID_TIME_ALIGNMENT",
            error_message="Los turnos deben comenzar en horas en punto o y media (ej: 10:00, 10:30)",
            details={"start_time": start_local.isoformat()},
        )
    return OK


def validate_not_in_past(start_time: datetime, now: datetime) -> ValidationResult:
    if start_time < now:
        return ValidationResult(
            valid=False,
            error_code="START_TIME_IN_PAST",
            error_message="No se pueden reservar turnos en el pasado",
            details={"start_time": start_time.isoformat(), "now": now.isoformat()},
        )
    return OK


def validate_within_window(
    interval: TimeInterval, window: TimeInterval | None
) -> ValidationResult:
    """Start-inclusive, end-exclusive containment in the working window."""
    if window is None:
        return ValidationResult(
            valid=False,
            error_code="PROFESSIONAL_NOT_WORKING",
            error_message="El profesional no trabaja ese día",
            details={"start_time": interval.start.isoformat()},
        )
    if not window.contains(interval):
        return ValidationResult(
            valid=False,
            error_code="OUTSIDE_WORKING_HOURS",
            error_message="El horario solicitado está fuera del horario laboral del profesional",
            details={
                "start_time": interval.start.isoformat(),
                "end_time": interval.end.isoformat(),
                "working_hours": {
                    "start": window.start.strftime("%H:%M"),
                    "end": window.end.strftime("%H:%M"),
                },
            },
        )
    return OK


def validate_no_break_overlap(
    interval: TimeInterval, breaks: list[TimeInterval]
) -> ValidationResult:
    conflicting = find_conflicts(interval, breaks, interval_of=lambda b: b)
    if conflicting:
        first = conflicting[0]
        return ValidationResult(
            valid=False,
            error_code="BREAK_TIME_CONFLICT",
            error_message="El horario solicitado coincide con un descanso de la sucursal",
            details={
                "break_start": first.start.strftime("%H:%M"),
                "break_end": first.end.strftime("%H:%M"),
            },
        )
    return OK
