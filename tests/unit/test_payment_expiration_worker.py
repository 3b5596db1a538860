"""Unit tests for the payment expiration worker."""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from booking.errors import InternalError
from booking.schemas import CreateAppointmentRequest
from booking.services.client_service import ClientIdentity
from booking.workers.payment_expiration import expire_pending_payments
from database.models import AppointmentStatus, PaymentMethod
from tests.fakes import local


class TestExpirePendingPayments:
    @pytest.mark.asyncio
    async def test_returns_number_of_expired(self):
        orchestrator = AsyncMock()
        orchestrator.expire_pending_payments = AsyncMock(return_value=[uuid4(), uuid4()])

        assert await expire_pending_payments(orchestrator) == 2

    @pytest.mark.asyncio
    async def test_store_failure_is_logged_not_raised(self):
        orchestrator = AsyncMock()
        orchestrator.expire_pending_payments = AsyncMock(
            side_effect=InternalError("timeout", error_code="STORE_TIMEOUT")
        )

        assert await expire_pending_payments(orchestrator) == 0

    @pytest.mark.asyncio
    async def test_releases_expired_slot_end_to_end(self, orchestrator, repository, tenant, clock):
        booked = await orchestrator.create_appointment(
            tenant.business.id,
            CreateAppointmentRequest(
                branch_id=tenant.branch.id,
                service_id=tenant.haircut.id,
                professional_id=tenant.ana.id,
                client=ClientIdentity(name="Carla", email="carla@example.com"),
                start_time=local(10, 0),
                payment_method=PaymentMethod.ONLINE,
            ),
        )
        clock.advance(minutes=20)

        assert await expire_pending_payments(orchestrator) == 1
        assert repository.appointments[booked.appointment.id].status is AppointmentStatus.CANCELLED
