"""Working hours calendar: weekly windows per professional."""

import logging
from datetime import time
from uuid import UUID

from booking.errors import BookingValidationError, NotFoundError
from database.models import Professional, WorkingHours
from database.repository import BookingRepository

logger = logging.getLogger(__name__)


class CalendarService:
    def __init__(self, repository: BookingRepository) -> None:
        self.repository = repository

    async def get_professional(self, business_id: UUID, professional_id: UUID) -> Professional:
        professional = await self.repository.get_professional(professional_id)
        if professional is None or professional.business_id != business_id:
            raise NotFoundError(
                "Profesional no encontrado",
                error_code="PROFESSIONAL_NOT_FOUND",
                details={"professional_id": str(professional_id)},
            )
        return professional

    async def replace_working_hours(
        self,
        business_id: UUID,
        professional_id: UUID,
        day_of_week: int,
        start: time,
        end: time,
    ) -> WorkingHours:
        """Deactivate the current window for the weekday and store a new one."""
        await self.get_professional(business_id, professional_id)
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

        hours = await self.repository.replace_working_hours(professional_id, day_of_week, start, end)
        logger.info(
            f"Working hours replaced: day={day_of_week} {start}-{end}",
            extra={"professional_id": str(professional_id)},
        )
        return hours
