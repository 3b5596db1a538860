"""
Slot generation for a single professional and day.

Pure functions only: given the working window, breaks and active
appointments of one day, walk the discovery grid and return the free slots.
The same inputs always give the same output.

Algorithm:
    t = window.start
    while t + duration <= window.end:
        accept [t, t + duration) if it overlaps no break, no active
        appointment, and t >= now
        t += granularity  (regardless of acceptance)

Granularity is independent of duration: a 45 minute service on a 15 minute
grid yields candidates at :00, :15, :30, :45.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from zoneinfo import ZoneInfo

from booking.services.conflict_detector import TimeInterval, has_conflict

HIGH_URGENCY_OCCUPANCY = 80
MEDIUM_URGENCY_OCCUPANCY = 50
FEW_SLOTS_LEFT = 3


class UrgencyLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True, order=True)
class Slot:
    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class OccupancyStats:
    total_slots: int
    available_slots: int
    occupied_slots: int
    occupancy: int
    urgency_level: UrgencyLevel
    urgency_message: str

    def to_dict(self) -> dict:
        return {
            "total_slots": self.total_slots,
            "available_slots": self.available_slots,
            "occupied_slots": self.occupied_slots,
            "occupancy": self.occupancy,
            "urgency_level": self.urgency_level.value,
            "urgency_message": self.urgency_message,
        }


def local_interval(target_date: date, start: time, end: time, tz: ZoneInfo) -> TimeInterval:
    """Anchor a branch-local time-of-day range on target_date."""
    return TimeInterval(
        datetime.combine(target_date, start, tzinfo=tz),
        datetime.combine(target_date, end, tzinfo=tz),
    )


def _candidates(window: TimeInterval, duration: timedelta, step: timedelta):
    current = window.start
    while current + duration <= window.end:
        yield TimeInterval(current, current + duration)
        current += step


def generate_slots(
    window: TimeInterval,
    duration_minutes: int,
    granularity_minutes: int,
    breaks: list[TimeInterval],
    appointments: list[TimeInterval],
    now: datetime | None = None,
) -> list[Slot]:
    """
    Return the ordered free slots inside window.

    Args:
        window: Working window of the professional for the day
        duration_minutes: Service duration (D)
        granularity_minutes: Discovery step (G)
        breaks: Branch breaks for the weekday, anchored on the same day
        appointments: Active appointments of the professional that day
        now: Candidates starting before this instant are dropped

    Returns:
        List of Slot ordered by start, without duplicates
    """
    if duration_minutes <= 0 or granularity_minutes <= 0:
        raise ValueError("duration and granularity must be positive")

    slots: list[Slot] = []
    for candidate in _candidates(
        window, timedelta(minutes=duration_minutes), timedelta(minutes=granularity_minutes)
    ):
        if now is not None and candidate.start < now:
            continue
        if has_conflict(candidate, breaks) or has_conflict(candidate, appointments):
            continue
        slots.append(Slot(candidate.start, candidate.end))
    return slots


def compute_occupancy(
    window: TimeInterval,
    duration_minutes: int,
    granularity_minutes: int,
    breaks: list[TimeInterval],
    available_slots: int,
    now: datetime | None = None,
) -> OccupancyStats:
    """
    Occupancy of one professional's day on the discovery grid.

    total_slots counts grid candidates that are bookable in principle (not in
    the past, not blocked by a break). Whatever is not available among them
    is occupied by appointments.
    """
    total = 0
    for candidate in _candidates(
        window, timedelta(minutes=duration_minutes), timedelta(minutes=granularity_minutes)
    ):
        if now is not None and candidate.start < now:
            continue
        if has_conflict(candidate, breaks):
            continue
        total += 1
    return build_occupancy(total, available_slots)


def build_occupancy(total_slots: int, available_slots: int) -> OccupancyStats:
    occupied = max(total_slots - available_slots, 0)
    occupancy = round(occupied * 100 / total_slots) if total_slots else 0
    level = urgency_for(occupancy, available_slots)
    return OccupancyStats(
        total_slots=total_slots,
        available_slots=available_slots,
        occupied_slots=occupied,
        occupancy=occupancy,
        urgency_level=level,
        urgency_message=urgency_message(level, available_slots),
    )


def merge_occupancy(stats: list[OccupancyStats]) -> OccupancyStats:
    """Aggregate per-professional occupancy into a branch-level figure."""
    return build_occupancy(
        sum(s.total_slots for s in stats),
        sum(s.available_slots for s in stats),
    )


def urgency_for(occupancy: int, available_slots: int) -> UrgencyLevel:
    if occupancy >= HIGH_URGENCY_OCCUPANCY or 0 < available_slots <= FEW_SLOTS_LEFT:
        return UrgencyLevel.HIGH
    if occupancy >= MEDIUM_URGENCY_OCCUPANCY:
        return UrgencyLevel.MEDIUM
    return UrgencyLevel.LOW


def urgency_message(level: UrgencyLevel, available_slots: int) -> str:
    if available_slots == 0:
        return "No quedan turnos disponibles para este día"
    if level is UrgencyLevel.HIGH:
        if available_slots == 1:
            return "¡Último turno disponible!"
        return f"¡Solo quedan {available_slots} turnos disponibles!"
    if level is UrgencyLevel.MEDIUM:
        return "Alta demanda para este día"
    return "Buena disponibilidad"
