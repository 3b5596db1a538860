"""
Break time registry maintenance.

Active breaks of the same branch and weekday never overlap. Create and update
reject an overlapping interval with BREAK_TIME_OVERLAP; an update ignores the
row being updated. The check and the write run in one break_time_scope(), so
concurrent writers on the same branch cannot both pass the check.
"""

import logging
from datetime import date, datetime, time
from uuid import UUID, uuid4

from booking.errors import BookingValidationError, NotFoundError
from booking.services.conflict_detector import TimeInterval, find_conflicts
from database.models import BreakTime
from database.repository import BookingRepository, BreakTimeUnit

logger = logging.getLogger(__name__)

DEFAULT_BREAK_NAME = "Descanso"

# Any fixed day works: breaks repeat weekly and are compared by time of day
_ANCHOR = date(2000, 1, 3)


def _interval(start: time, end: time) -> TimeInterval:
    return TimeInterval(datetime.combine(_ANCHOR, start), datetime.combine(_ANCHOR, end))


def _validate_shape(day_of_week: int, start: time, end: time) -> None:
    if not 0 <= day_of_week <= 6:
        raise BookingValidationError(
            "Día de la semana inválido",
            error_code="INVALID_DAY_OF_WEEK",
            details={"day_of_week": day_of_week},
        )
    if start >= end:
        raise BookingValidationError(
            "La hora de inicio debe ser anterior a la hora de fin",
            error_code="INVALID_TIME_RANGE",
            details={"start_time": start.isoformat(), "end_time": end.isoformat()},
        )


class BreakTimeService:
    def __init__(self, repository: BookingRepository) -> None:
        self.repository = repository

    async def _ensure_no_overlap(
        self,
        unit: BreakTimeUnit,
        branch_id: UUID,
        day_of_week: int,
        start: time,
        end: time,
        exclude_id: UUID | None = None,
    ) -> None:
        existing = [
            b
            for b in await unit.list_break_times(branch_id, day_of_week)
            if b.id != exclude_id
        ]
        conflicts = find_conflicts(
            _interval(start, end),
            existing,
            interval_of=lambda b: _interval(b.start_time, b.end_time),
        )
        if conflicts:
            other = conflicts[0]
            raise BookingValidationError(
                "El descanso se superpone con otro descanso existente",
                error_code="BREAK_TIME_OVERLAP",
                details={
                    "conflicting_break_id": str(other.id),
                    "conflicting_break_name": other.name,
                    "start_time": other.start_time.strftime("%H:%M"),
                    "end_time": other.end_time.strftime("%H:%M"),
                },
            )

    async def list_break_times(self, branch_id: UUID) -> list[BreakTime]:
        return await self.repository.list_break_times(branch_id)

    async def create_break_time(
        self,
        branch_id: UUID,
        day_of_week: int,
        start: time,
        end: time,
        name: str | None = None,
    ) -> BreakTime:
        _validate_shape(day_of_week, start, end)
        break_time = BreakTime(
            id=uuid4(),
            branch_id=branch_id,
            day_of_week=day_of_week,
            start_time=start,
            end_time=end,
            name=name or DEFAULT_BREAK_NAME,
            is_active=True,
        )
        async with self.repository.break_time_scope(branch_id) as unit:
            await self._ensure_no_overlap(unit, branch_id, day_of_week, start, end)
            saved = await unit.save_break_time(break_time)
        logger.info(
            f"Break time created: {saved.name} day={day_of_week} {start}-{end}",
            extra={"branch_id": str(branch_id)},
        )
        return saved

    async def update_break_time(
        self,
        business_id: UUID,
        break_time_id: UUID,
        day_of_week: int | None = None,
        start: time | None = None,
        end: time | None = None,
        name: str | None = None,
        is_active: bool | None = None,
    ) -> BreakTime:
        """
        Update a break belonging to one of the business's branches.

        Overlap is re-checked only when the result is active.
        """
        break_time = await self.repository.get_break_time(break_time_id)
        branch = await self.repository.get_branch(break_time.branch_id) if break_time else None
        if break_time is None or branch is None or branch.business_id != business_id:
            raise NotFoundError(
                "Descanso no encontrado",
                error_code="BREAK_TIME_NOT_FOUND",
                details={"break_time_id": str(break_time_id)},
            )

        new_day = break_time.day_of_week if day_of_week is None else day_of_week
        new_start = start or break_time.start_time
        new_end = end or break_time.end_time
        new_active = break_time.is_active if is_active is None else is_active

        _validate_shape(new_day, new_start, new_end)
        break_time.day_of_week = new_day
        break_time.start_time = new_start
        break_time.end_time = new_end
        break_time.is_active = new_active
        if name is not None:
            break_time.name = name or DEFAULT_BREAK_NAME

        async with self.repository.break_time_scope(break_time.branch_id) as unit:
            if new_active:
                await self._ensure_no_overlap(
                    unit,
                    break_time.branch_id,
                    new_day,
                    new_start,
                    new_end,
                    exclude_id=break_time.id,
                )
            saved = await unit.save_break_time(break_time)
        logger.info(f"Break time updated: {saved.id}", extra={"branch_id": str(saved.branch_id)})
        return saved
