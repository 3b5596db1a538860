"""
Availability Service - read path of the booking engine.

Loads everything a branch day needs in three batched queries (working hours
of all candidate professionals, branch breaks for the weekday, active
appointments of all candidates for the day) and then runs the pure slot
generator per professional. Nothing is written.

Usage:
    service = AvailabilityService(repository)
    result = await service.list_available_slots(
        branch=branch,
        target_date=date(2025, 3, 3),
        duration_minutes=30,
        granularity_minutes=30,
        professionals=professionals,
    )
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from booking.services.conflict_detector import TimeInterval
from booking.services.slot_generator import (
    OccupancyStats,
    Slot,
    compute_occupancy,
    generate_slots,
    local_interval,
    merge_occupancy,
)
from database.models import Branch, Professional
from database.repository import BookingRepository

logger = logging.getLogger(__name__)


@dataclass
class DayContext:
    """Calendar data for one branch and date, shared by every professional."""

    target_date: date
    tz: ZoneInfo
    windows: dict[UUID, TimeInterval] = field(default_factory=dict)
    breaks: list[TimeInterval] = field(default_factory=list)
    appointments: dict[UUID, list[TimeInterval]] = field(default_factory=dict)

    def window_for(self, professional_id: UUID) -> TimeInterval | None:
        return self.windows.get(professional_id)

    def appointments_for(self, professional_id: UUID) -> list[TimeInterval]:
        return self.appointments.get(professional_id, [])


@dataclass
class ProfessionalAvailability:
    professional: Professional
    working_hours: TimeInterval | None
    slots: list[Slot]
    occupancy: OccupancyStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "professional_id": str(self.professional.id),
            "professional_name": self.professional.name,
            "working_hours": (
                {
                    "start": self.working_hours.start.strftime("%H:%M"),
                    "end": self.working_hours.end.strftime("%H:%M"),
                }
                if self.working_hours
                else None
            ),
            "slots": [slot.to_dict() for slot in self.slots],
            "occupancy": self.occupancy.to_dict(),
        }


@dataclass
class AvailabilityResult:
    branch_id: UUID
    target_date: date
    duration_minutes: int
    granularity_minutes: int
    professionals: list[ProfessionalAvailability]
    occupancy: OccupancyStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "branch_id": str(self.branch_id),
            "date": self.target_date.isoformat(),
            "duration_minutes": self.duration_minutes,
            "granularity_minutes": self.granularity_minutes,
            "professionals": [p.to_dict() for p in self.professionals],
            "occupancy": self.occupancy.to_dict(),
        }


def day_of_week(target_date: date) -> int:
    """Stored weekday number of a date: 0=Sunday, 1=Monday ... 6=Saturday."""
    return target_date.isoweekday() % 7


def day_bounds(target_date: date, tz: ZoneInfo) -> TimeInterval:
    start = datetime.combine(target_date, time.min, tzinfo=tz)
    return TimeInterval(start, datetime.combine(target_date + timedelta(days=1), time.min, tzinfo=tz))


async def load_day_context(
    repository: BookingRepository,
    branch: Branch,
    professional_ids: list[UUID],
    target_date: date,
) -> DayContext:
    """
    Load working windows, breaks and active appointments for a branch day.

    Issues one query per kind regardless of how many professionals are
    involved.
    """
    tz = ZoneInfo(branch.timezone)
    weekday = day_of_week(target_date)
    context = DayContext(target_date=target_date, tz=tz)

    hours = await repository.get_working_hours(professional_ids, weekday)
    context.windows = {
        pid: local_interval(target_date, wh.start_time, wh.end_time, tz)
        for pid, wh in hours.items()
    }

    breaks = await repository.list_break_times(branch.id, weekday)
    context.breaks = sorted(
        local_interval(target_date, b.start_time, b.end_time, tz) for b in breaks
    )

    working_ids = [pid for pid in professional_ids if pid in context.windows]
    bounds = day_bounds(target_date, tz)
    appointments = await repository.list_active_appointments(working_ids, bounds.start, bounds.end)
    grouped: dict[UUID, list[TimeInterval]] = defaultdict(list)
    for appointment in appointments:
        grouped[appointment.professional_id].append(
            TimeInterval(appointment.start_time, appointment.end_time)
        )
    context.appointments = dict(grouped)

    return context


class AvailabilityService:
    def __init__(self, repository: BookingRepository) -> None:
        self.repository = repository

    async def list_available_slots(
        self,
        branch: Branch,
        target_date: date,
        duration_minutes: int,
        granularity_minutes: int,
        professionals: list[Professional],
        include_non_working: bool = False,
        now: datetime | None = None,
    ) -> AvailabilityResult:
        """
        Compute free slots for each professional on target_date.

        Args:
            branch: Branch whose timezone and breaks apply
            target_date: Branch-local date
            duration_minutes: Service duration
            granularity_minutes: Discovery step
            professionals: Candidates, already filtered to active ones
            include_non_working: Keep professionals with no window (empty slots)
            now: Slots starting before now are omitted

        Returns:
            AvailabilityResult with per-professional slots and occupancy
        """
        context = await load_day_context(
            self.repository, branch, [p.id for p in professionals], target_date
        )

        # Pure CPU work on already-loaded data; no point fanning out
        entries: list[ProfessionalAvailability] = []
        for professional in professionals:
            window = context.window_for(professional.id)
            if window is None:
                if include_non_working:
                    entries.append(
                        ProfessionalAvailability(
                            professional=professional,
                            working_hours=None,
                            slots=[],
                            occupancy=merge_occupancy([]),
                        )
                    )
                continue

            slots = generate_slots(
                window,
                duration_minutes,
                granularity_minutes,
                context.breaks,
                context.appointments_for(professional.id),
                now=now,
            )
            occupancy = compute_occupancy(
                window,
                duration_minutes,
                granularity_minutes,
                context.breaks,
                available_slots=len(slots),
                now=now,
            )
            entries.append(
                ProfessionalAvailability(
                    professional=professional,
                    working_hours=window,
                    slots=slots,
                    occupancy=occupancy,
                )
            )

        logger.info(
            f"Availability computed for {target_date.isoformat()}: "
            f"{sum(len(e.slots) for e in entries)} slots across {len(entries)} professionals",
            extra={"branch_id": str(branch.id)},
        )

        return AvailabilityResult(
            branch_id=branch.id,
            target_date=target_date,
            duration_minutes=duration_minutes,
            granularity_minutes=granularity_minutes,
            professionals=entries,
            occupancy=merge_occupancy([e.occupancy for e in entries]),
        )
