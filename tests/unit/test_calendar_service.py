"""Unit tests for CalendarService (working hours maintenance)."""

from datetime import time
from uuid import uuid4

import pytest

from booking.errors import BookingValidationError, NotFoundError
from booking.services.calendar_service import CalendarService
from tests.fakes import MONDAY


@pytest.fixture
def calendar(repository):
    return CalendarService(repository)


class TestReplaceWorkingHours:
    @pytest.mark.asyncio
    async def test_replaces_active_window(self, calendar, repository, tenant):
        hours = await calendar.replace_working_hours(
            tenant.business.id, tenant.ana.id, 1, time(10, 0), time(12, 0)
        )

        active = [
            wh
            for wh in repository.working_hours.values()
            if wh.professional_id == tenant.ana.id and wh.day_of_week == 1 and wh.is_active
        ]
        assert [(wh.start_time, wh.end_time) for wh in active] == [(time(10, 0), time(12, 0))]
        assert hours.is_active is True

    @pytest.mark.asyncio
    async def test_new_window_drives_availability(self, orchestrator, tenant):
        await orchestrator.replace_working_hours(
            tenant.business.id, tenant.ana.id, 1, time(10, 0), time(12, 0)
        )

        result = await orchestrator.get_available_slots(
            business_id=tenant.business.id,
            branch_id=tenant.branch.id,
            target_date=MONDAY,
            service_id=tenant.haircut.id,
            professional_id=tenant.ana.id,
        )

        slots = result.professionals[0].slots
        assert [s.start.time() for s in slots] == [time(10, 0), time(10, 30), time(11, 0), time(11, 30)]

    @pytest.mark.asyncio
    async def test_rejects_inverted_range(self, calendar, tenant):
        with pytest.raises(BookingValidationError) as exc_info:
            await calendar.replace_working_hours(
                tenant.business.id, tenant.ana.id, 1, time(12, 0), time(12, 0)
            )

        assert exc_info.value.error_code == "INVALID_TIME_RANGE"

    @pytest.mark.asyncio
    async def test_rejects_invalid_weekday(self, calendar, tenant):
        with pytest.raises(BookingValidationError) as exc_info:
            await calendar.replace_working_hours(
                tenant.business.id, tenant.ana.id, 7, time(9, 0), time(12, 0)
            )

        assert exc_info.value.error_code == "INVALID_DAY_OF_WEEK"

    @pytest.mark.asyncio
    async def test_professional_of_other_business_not_found(self, calendar, tenant):
        with pytest.raises(NotFoundError):
            await calendar.replace_working_hours(uuid4(), tenant.ana.id, 1, time(9, 0), time(12, 0))
