"""
Unit tests for BookingOrchestrator against the in-memory repository.

Tests coverage:
- Availability listing through the orchestrator
- create_appointment: conflicts, concurrency, alignment, windows, breaks
- Auto-assignment (ordered candidates, fallback when a candidate loses the slot)
- Branch resolution (inactive branch fallback, main branch provisioning)
- Payment gate (payment required, risk override, fail-open)
- Online payments (checkout, checkout failure compensation, confirm/fail)
- update/cancel/evaluate lifecycle and pending payment expiration
- Store timeout and publish failure handling
"""

import asyncio
from datetime import UTC, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from booking.errors import (
    BookingValidationError,
    InternalError,
    NoProfessionalAvailableError,
    NotFoundError,
    PaymentRequiredError,
    SlotConflictError,
)
from booking.orchestrator import PAYMENT_RISK_NOTE, BookingResult
from booking.schemas import CreateAppointmentRequest, UpdateAppointmentRequest
from booking.services.client_service import ClientIdentity
from database.models import (
    Appointment,
    AppointmentStatus,
    Branch,
    BranchService,
    Business,
    PaymentMethod,
    Service,
)
from shared.payment_validation import ClientScoring, PaymentDecision
from tests.fakes import MONDAY, local

CARLA = ClientIdentity(name="Carla Gómez", email="carla@example.com")
DIEGO = ClientIdentity(name="Diego Paz", email="diego@example.com")


def booking_request(tenant, start, professional=None, service=None, client=CARLA, **overrides):
    return CreateAppointmentRequest(
        branch_id=overrides.pop("branch_id", tenant.branch.id),
        service_id=(service or tenant.haircut).id,
        professional_id=professional.id if professional else None,
        client=client,
        start_time=start,
        **overrides,
    )


def seed_appointment(repository, tenant, professional, start, minutes=30, status=AppointmentStatus.CONFIRMED):
    return repository.put(
        Appointment(
            id=uuid4(),
            business_id=tenant.business.id,
            branch_id=tenant.branch.id,
            client_id=uuid4(),
            service_id=tenant.haircut.id,
            professional_id=professional.id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            status=status,
            payment_method=PaymentMethod.LOCAL,
            price=Decimal("8000.00"),
            created_at=start - timedelta(days=1),
            updated_at=start - timedelta(days=1),
        )
    )


def slot_starts(availability) -> list[str]:
    return [slot.start.strftime("%H:%M") for slot in availability.slots]


# ============================================================================
# Availability
# ============================================================================


class TestGetAvailableSlots:
    @pytest.mark.asyncio
    async def test_lists_slots_per_professional(self, orchestrator, tenant):
        result = await orchestrator.get_available_slots(
            tenant.business.id, tenant.branch.id, MONDAY, tenant.haircut.id
        )

        by_name = {entry.professional.name: entry for entry in result.professionals}
        assert slot_starts(by_name["Ana"]) == [
            "09:00", "09:30", "10:00", "10:30", "11:00", "11:30", "12:00", "12:30",
        ]
        # Bruno 09:00-18:00 minus the 13:00-14:00 branch break
        bruno_starts = slot_starts(by_name["Bruno"])
        assert len(bruno_starts) == 16
        assert "13:00" not in bruno_starts
        assert "13:30" not in bruno_starts
        assert bruno_starts[-1] == "17:30"

    @pytest.mark.asyncio
    async def test_booked_interval_disappears(self, orchestrator, repository, tenant):
        seed_appointment(repository, tenant, tenant.ana, local(10, 0))

        result = await orchestrator.get_available_slots(
            tenant.business.id, tenant.branch.id, MONDAY, tenant.haircut.id, tenant.ana.id
        )

        assert "10:00" not in slot_starts(result.professionals[0])
        assert len(result.professionals[0].slots) == 7

    @pytest.mark.asyncio
    async def test_cancelled_appointments_do_not_block(self, orchestrator, repository, tenant):
        seed_appointment(repository, tenant, tenant.ana, local(10, 0), status=AppointmentStatus.CANCELLED)

        result = await orchestrator.get_available_slots(
            tenant.business.id, tenant.branch.id, MONDAY, tenant.haircut.id, tenant.ana.id
        )

        assert "10:00" in slot_starts(result.professionals[0])

    @pytest.mark.asyncio
    async def test_explicit_professional_not_working_returns_empty_entry(self, orchestrator, tenant):
        tuesday = MONDAY + timedelta(days=1)

        result = await orchestrator.get_available_slots(
            tenant.business.id, tenant.branch.id, tuesday, tenant.haircut.id, tenant.ana.id
        )

        assert len(result.professionals) == 1
        assert result.professionals[0].slots == []
        assert result.professionals[0].working_hours is None

    @pytest.mark.asyncio
    async def test_uses_business_granularity(self, orchestrator, repository, tenant):
        repository.businesses[tenant.business.id].slot_granularity_minutes = 15

        result = await orchestrator.get_available_slots(
            tenant.business.id, tenant.branch.id, MONDAY, tenant.haircut.id, tenant.ana.id
        )

        assert result.granularity_minutes == 15
        assert slot_starts(result.professionals[0])[:3] == ["09:00", "09:15", "09:30"]

    @pytest.mark.asyncio
    async def test_unknown_business(self, orchestrator, tenant):
        with pytest.raises(NotFoundError) as exc_info:
            await orchestrator.get_available_slots(uuid4(), None, MONDAY, tenant.haircut.id)

        assert exc_info.value.error_code == "BUSINESS_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_service_of_another_business(self, orchestrator, repository, tenant):
        foreign = repository.put(
            Service(id=uuid4(), business_id=uuid4(), name="Ajeno", duration_minutes=30, price=Decimal("1"))
        )

        with pytest.raises(NotFoundError) as exc_info:
            await orchestrator.get_available_slots(
                tenant.business.id, tenant.branch.id, MONDAY, foreign.id
            )

        assert exc_info.value.error_code == "SERVICE_NOT_FOUND"


# ============================================================================
# Create: conflicts and concurrency
# ============================================================================


class TestCreateAppointmentConflicts:
    @pytest.mark.asyncio
    async def test_taken_slot_conflicts_and_adjacent_slot_succeeds(
        self, orchestrator, repository, tenant
    ):
        """Existing 10:00-10:30 blocks 10:00 but not 10:30 for the same professional."""
        existing = seed_appointment(repository, tenant, tenant.ana, local(10, 0))

        with pytest.raises(SlotConflictError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
            )
        assert exc_info.value.details["conflicting_appointment_id"] == str(existing.id)

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 30), tenant.ana)
        )
        assert result.appointment.status is AppointmentStatus.CONFIRMED
        assert result.appointment.start_time == local(10, 30)

    @pytest.mark.asyncio
    async def test_concurrent_requests_for_same_interval(self, orchestrator, repository, tenant):
        """Two simultaneous bookings of Bruno 14:00-14:30: exactly one wins."""
        outcomes = await asyncio.gather(
            orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(14, 0), tenant.bruno, client=CARLA)
            ),
            orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(14, 0), tenant.bruno, client=DIEGO)
            ),
            return_exceptions=True,
        )

        created = [o for o in outcomes if isinstance(o, BookingResult)]
        conflicts = [o for o in outcomes if isinstance(o, SlotConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1
        active = [a for a in repository.appointments.values() if a.is_active]
        assert len(active) == 1

    @pytest.mark.asyncio
    async def test_end_time_derived_from_service_duration(self, orchestrator, tenant):
        result = await orchestrator.create_appointment(
            tenant.business.id,
            booking_request(tenant, local(15, 0), tenant.bruno, service=tenant.coloring),
        )

        assert result.appointment.end_time - result.appointment.start_time == timedelta(minutes=60)
        assert result.appointment.price == Decimal("25000.00")


# ============================================================================
# Create: request validation
# ============================================================================


class TestCreateAppointmentValidation:
    @pytest.mark.asyncio
    async def test_misaligned_start(self, orchestrator, tenant):
        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 15), tenant.ana)
            )

        assert exc_info.value.error_code == "INVALID_TIME_ALIGNMENT"

    @pytest.mark.asyncio
    async def test_alignment_checked_in_branch_time(self, orchestrator, tenant):
        # 13:30 UTC is 10:30 in Buenos Aires
        utc_start = local(10, 30).astimezone(UTC)

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, utc_start, tenant.ana)
        )

        assert result.appointment.start_time == local(10, 30)

    @pytest.mark.asyncio
    async def test_past_start(self, orchestrator, tenant, clock):
        clock.advance(hours=4)  # 11:00

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
            )

        assert exc_info.value.error_code == "START_TIME_IN_PAST"

    @pytest.mark.asyncio
    async def test_outside_working_hours(self, orchestrator, tenant):
        """Ana ends at 13:00: a 60 min service at 12:30 spills over."""
        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id,
                booking_request(tenant, local(12, 30), tenant.ana, service=tenant.coloring),
            )

        assert exc_info.value.error_code == "OUTSIDE_WORKING_HOURS"

    @pytest.mark.asyncio
    async def test_professional_not_working_that_day(self, orchestrator, tenant):
        tuesday = MONDAY + timedelta(days=1)

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0, day=tuesday), tenant.ana)
            )

        assert exc_info.value.error_code == "PROFESSIONAL_NOT_WORKING"

    @pytest.mark.asyncio
    async def test_break_overlap_is_a_conflict(self, orchestrator, tenant):
        with pytest.raises(SlotConflictError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(13, 30), tenant.bruno)
            )

        assert exc_info.value.error_code == "BREAK_TIME_CONFLICT"

    @pytest.mark.asyncio
    async def test_professional_of_another_branch(self, orchestrator, repository, tenant):
        other = repository.put(
            Branch(
                id=uuid4(),
                business_id=tenant.business.id,
                name="Estudio Norte - Palermo",
                slug="palermo",
                timezone=tenant.branch.timezone,
                is_main=False,
                is_active=True,
            )
        )

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id,
                booking_request(tenant, local(10, 0), tenant.ana, branch_id=other.id),
            )

        assert exc_info.value.error_code == "PROFESSIONAL_NOT_AVAILABLE"

    @pytest.mark.asyncio
    async def test_invalid_phone(self, orchestrator, tenant):
        client = ClientIdentity(name="Eva", phone="123")

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, client=client)
            )

        assert exc_info.value.error_code == "INVALID_PHONE"

    @pytest.mark.asyncio
    async def test_non_global_service_requires_branch_link(self, orchestrator, repository, tenant):
        keratin = repository.put(
            Service(
                id=uuid4(),
                business_id=tenant.business.id,
                name="Keratina",
                duration_minutes=30,
                price=Decimal("30000.00"),
                is_global=False,
                is_active=True,
            )
        )

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id,
                booking_request(tenant, local(10, 0), tenant.ana, service=keratin),
            )
        assert exc_info.value.error_code == "SERVICE_NOT_OFFERED_AT_BRANCH"

        repository.put(
            BranchService(
                id=uuid4(),
                branch_id=tenant.branch.id,
                service_id=keratin.id,
                price_override=Decimal("28000.00"),
                is_active=True,
            )
        )
        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, service=keratin)
        )
        assert result.appointment.price == Decimal("28000.00")


# ============================================================================
# Auto-assignment
# ============================================================================


class TestAutoAssignment:
    @pytest.mark.asyncio
    async def test_first_free_candidate_by_name(self, orchestrator, tenant):
        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0))
        )

        assert result.was_auto_assigned is True
        assert result.appointment.professional_id == tenant.ana.id

    @pytest.mark.asyncio
    async def test_skips_busy_professional(self, orchestrator, repository, tenant):
        seed_appointment(repository, tenant, tenant.ana, local(10, 0))

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0))
        )

        assert result.appointment.professional_id == tenant.bruno.id

    @pytest.mark.asyncio
    async def test_skips_professional_outside_window(self, orchestrator, tenant):
        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(15, 0))
        )

        assert result.appointment.professional_id == tenant.bruno.id

    @pytest.mark.asyncio
    async def test_nobody_free(self, orchestrator, repository, tenant):
        seed_appointment(repository, tenant, tenant.ana, local(10, 0))
        seed_appointment(repository, tenant, tenant.bruno, local(10, 0))

        with pytest.raises(NoProfessionalAvailableError):
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0))
            )

    @pytest.mark.asyncio
    async def test_falls_back_when_candidate_loses_the_slot(
        self, orchestrator, repository, tenant, monkeypatch
    ):
        """Ana looks free in the scan but the atomic check finds her booked."""
        seed_appointment(repository, tenant, tenant.ana, local(10, 0))
        monkeypatch.setattr(repository, "list_active_appointments", AsyncMock(return_value=[]))

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0))
        )

        assert result.appointment.professional_id == tenant.bruno.id
        assert result.was_auto_assigned is True


# ============================================================================
# Branch resolution
# ============================================================================


class TestBranchResolution:
    @pytest.mark.asyncio
    async def test_missing_branch_uses_main(self, orchestrator, tenant):
        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, branch_id=None)
        )

        assert result.appointment.branch_id == tenant.branch.id

    @pytest.mark.asyncio
    async def test_inactive_branch_falls_back_to_main(self, orchestrator, repository, tenant):
        closed = repository.put(
            Branch(
                id=uuid4(),
                business_id=tenant.business.id,
                name="Estudio Norte - Cerrada",
                slug="cerrada",
                timezone=tenant.branch.timezone,
                is_main=False,
                is_active=False,
            )
        )

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, branch_id=closed.id)
        )

        assert result.appointment.branch_id == tenant.branch.id

    @pytest.mark.asyncio
    async def test_branch_of_another_business_not_found(self, orchestrator, repository, tenant):
        foreign = repository.put(
            Branch(id=uuid4(), business_id=uuid4(), name="Otra", slug="otra", is_main=True, is_active=True)
        )

        with pytest.raises(NotFoundError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), branch_id=foreign.id)
            )

        assert exc_info.value.error_code == "BRANCH_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_main_branch_provisioned_for_business_without_branches(self, orchestrator, repository):
        business = repository.put(
            Business(
                id=uuid4(),
                name="Nuevo Spa",
                slug="nuevo-spa",
                timezone="America/Argentina/Buenos_Aires",
                slot_granularity_minutes=30,
                is_active=True,
            )
        )
        massage = repository.put(
            Service(
                id=uuid4(),
                business_id=business.id,
                name="Masaje",
                duration_minutes=60,
                price=Decimal("15000.00"),
                is_global=True,
                is_active=True,
            )
        )

        result = await orchestrator.get_available_slots(business.id, None, MONDAY, massage.id)

        branches = [b for b in repository.branches.values() if b.business_id == business.id]
        assert len(branches) == 1
        assert branches[0].name == "Nuevo Spa - Principal"
        assert branches[0].is_main is True
        assert result.branch_id == branches[0].id
        assert result.professionals == []


# ============================================================================
# Payment gate
# ============================================================================


class TestPaymentGate:
    @pytest.fixture
    def risky_client(self, payment_validation):
        payment_validation.decision = PaymentDecision(
            requires_online_payment=True,
            allowed_methods=["online"],
            scoring=ClientScoring(star_rating=2.0, total_bookings=5, attended_count=2, no_show_count=3),
            reason="Calificación 2.0 estrellas (3 ausencias en 5 turnos)",
        )
        return payment_validation

    @pytest.mark.asyncio
    async def test_payment_required_for_local_payment(self, orchestrator, repository, tenant, risky_client):
        with pytest.raises(PaymentRequiredError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
            )

        assert exc_info.value.details["scoring"]["star_rating"] == 2.0
        assert exc_info.value.details["allowed_methods"] == ["online"]
        assert repository.appointments == {}

    @pytest.mark.asyncio
    async def test_override_books_with_risk_annotation(self, orchestrator, tenant, risky_client):
        result = await orchestrator.create_appointment(
            tenant.business.id,
            booking_request(
                tenant, local(10, 0), tenant.ana, notes="Trae referencia", acknowledge_payment_risk=True
            ),
        )

        assert result.appointment.status is AppointmentStatus.CONFIRMED
        assert result.appointment.notes == f"Trae referencia\n{PAYMENT_RISK_NOTE}"
        assert result.payment_decision.requires_online_payment is True

    @pytest.mark.asyncio
    async def test_online_payment_satisfies_gate(self, orchestrator, tenant, risky_client):
        result = await orchestrator.create_appointment(
            tenant.business.id,
            booking_request(tenant, local(10, 0), tenant.ana, payment_method=PaymentMethod.ONLINE),
        )

        assert result.appointment.status is AppointmentStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_gate_failure_fails_open_with_warning(self, orchestrator, tenant, payment_validation):
        payment_validation.error = RuntimeError("scoring service down")

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        assert result.appointment.status is AppointmentStatus.CONFIRMED
        assert "No se pudo validar el historial de pagos del cliente" in result.warnings

    @pytest.mark.asyncio
    async def test_gate_receives_normalized_identity(self, orchestrator, tenant, payment_validation):
        client = ClientIdentity(name="Carla", email="Carla@Example.com", phone="+54 9 11 2345-6789")

        await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, client=client)
        )

        assert payment_validation.calls == [("carla@example.com", "+5491123456789")]


# ============================================================================
# Online payments
# ============================================================================


class TestOnlinePayment:
    async def _book_online(self, orchestrator, tenant, start=None):
        return await orchestrator.create_appointment(
            tenant.business.id,
            booking_request(
                tenant, start or local(10, 0), tenant.ana, payment_method=PaymentMethod.ONLINE
            ),
        )

    @pytest.mark.asyncio
    async def test_online_booking_is_pending_with_checkout(
        self, orchestrator, repository, tenant, publisher
    ):
        result = await self._book_online(orchestrator, tenant)

        stored = repository.appointments[result.appointment.id]
        assert stored.status is AppointmentStatus.PENDING_PAYMENT
        assert stored.checkout_handle == result.checkout.checkout_handle
        assert stored.checkout_url == result.checkout.redirect_url
        assert publisher.event_types == ["pending_payment"]

    @pytest.mark.asyncio
    async def test_pending_booking_holds_the_slot(self, orchestrator, tenant):
        await self._book_online(orchestrator, tenant)

        with pytest.raises(SlotConflictError):
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, client=DIEGO)
            )

    @pytest.mark.asyncio
    async def test_checkout_failure_cancels_booking(
        self, orchestrator, repository, tenant, payment_gateway, publisher
    ):
        payment_gateway.fail = True

        with pytest.raises(InternalError) as exc_info:
            await self._book_online(orchestrator, tenant)

        assert exc_info.value.error_code == "CHECKOUT_FAILED"
        (stored,) = repository.appointments.values()
        assert stored.status is AppointmentStatus.CANCELLED
        assert stored.cancellation_reason == "checkout_failed"
        assert publisher.events == []

    @pytest.mark.asyncio
    async def test_confirm_payment_is_idempotent(self, orchestrator, repository, tenant, publisher):
        booked = await self._book_online(orchestrator, tenant)
        handle = booked.checkout.checkout_handle

        first = await orchestrator.confirm_payment(booked.appointment.id, handle)
        second = await orchestrator.confirm_payment(booked.appointment.id, handle)

        assert first.appointment.status is AppointmentStatus.CONFIRMED
        assert second.appointment.status is AppointmentStatus.CONFIRMED
        assert publisher.event_types == ["pending_payment", "confirmed"]

    @pytest.mark.asyncio
    async def test_confirm_payment_with_foreign_checkout(self, orchestrator, repository, tenant):
        booked = await self._book_online(orchestrator, tenant)

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.confirm_payment(booked.appointment.id, "cs_test_other")

        assert exc_info.value.error_code == "CHECKOUT_MISMATCH"
        assert repository.appointments[booked.appointment.id].status is AppointmentStatus.PENDING_PAYMENT

    @pytest.mark.asyncio
    async def test_fail_payment_releases_slot(self, orchestrator, repository, tenant):
        booked = await self._book_online(orchestrator, tenant)

        result = await orchestrator.fail_payment(booked.appointment.id, reason="checkout.session.expired")

        assert result.appointment.status is AppointmentStatus.CANCELLED
        assert result.appointment.cancellation_reason == "checkout.session.expired"
        rebooked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, client=DIEGO)
        )
        assert rebooked.appointment.status is AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_confirm_unknown_appointment(self, orchestrator):
        with pytest.raises(NotFoundError):
            await orchestrator.confirm_payment(uuid4(), None)

    @pytest.mark.asyncio
    async def test_expire_pending_payments(self, orchestrator, repository, tenant, clock, publisher):
        booked = await self._book_online(orchestrator, tenant)

        assert await orchestrator.expire_pending_payments() == []

        clock.advance(minutes=16)
        expired = await orchestrator.expire_pending_payments()

        assert expired == [booked.appointment.id]
        stored = repository.appointments[booked.appointment.id]
        assert stored.status is AppointmentStatus.CANCELLED
        assert stored.cancellation_reason == "payment_timeout"
        assert publisher.event_types[-1] == "cancelled"


# ============================================================================
# Lifecycle: update, cancel, evaluate
# ============================================================================


class TestUpdateAppointment:
    @pytest.mark.asyncio
    async def test_reschedule_to_free_slot(self, orchestrator, tenant, publisher):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        result = await orchestrator.update_appointment(
            tenant.business.id,
            booked.appointment.id,
            UpdateAppointmentRequest(start_time=local(11, 0)),
        )

        assert result.appointment.start_time == local(11, 0)
        assert result.appointment.end_time == local(11, 30)
        assert publisher.event_types == ["confirmed", "modified"]

    @pytest.mark.asyncio
    async def test_extending_over_own_interval_is_not_a_conflict(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        result = await orchestrator.update_appointment(
            tenant.business.id,
            booked.appointment.id,
            UpdateAppointmentRequest(service_id=tenant.coloring.id),
        )

        assert result.appointment.end_time == local(11, 0)
        assert result.appointment.price == Decimal("25000.00")

    @pytest.mark.asyncio
    async def test_reschedule_onto_other_appointment(self, orchestrator, repository, tenant):
        seed_appointment(repository, tenant, tenant.ana, local(11, 0))
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        with pytest.raises(SlotConflictError):
            await orchestrator.update_appointment(
                tenant.business.id,
                booked.appointment.id,
                UpdateAppointmentRequest(start_time=local(11, 0)),
            )

        assert repository.appointments[booked.appointment.id].start_time == local(10, 0)

    @pytest.mark.asyncio
    async def test_reschedule_to_misaligned_time(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.update_appointment(
                tenant.business.id,
                booked.appointment.id,
                UpdateAppointmentRequest(start_time=local(11, 45)),
            )

        assert exc_info.value.error_code == "INVALID_TIME_ALIGNMENT"

    @pytest.mark.asyncio
    async def test_notes_only_update(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        result = await orchestrator.update_appointment(
            tenant.business.id, booked.appointment.id, UpdateAppointmentRequest(notes="Llega tarde")
        )

        assert result.appointment.notes == "Llega tarde"
        assert result.appointment.start_time == local(10, 0)

    @pytest.mark.asyncio
    async def test_cancelled_appointment_cannot_be_rescheduled(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )
        await orchestrator.cancel_appointment(tenant.business.id, booked.appointment.id)

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.update_appointment(
                tenant.business.id,
                booked.appointment.id,
                UpdateAppointmentRequest(start_time=local(11, 0)),
            )

        assert exc_info.value.error_code == "APPOINTMENT_NOT_MODIFIABLE"


class TestCancelAppointment:
    @pytest.mark.asyncio
    async def test_cancel_is_idempotent(self, orchestrator, tenant, publisher):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        first = await orchestrator.cancel_appointment(
            tenant.business.id, booked.appointment.id, reason="Viaje"
        )
        second = await orchestrator.cancel_appointment(tenant.business.id, booked.appointment.id)

        assert first.appointment.status is AppointmentStatus.CANCELLED
        assert second.appointment.status is AppointmentStatus.CANCELLED
        assert second.appointment.cancellation_reason == "Viaje"
        assert publisher.event_types == ["confirmed", "cancelled"]

    @pytest.mark.asyncio
    async def test_cancelled_slot_can_be_rebooked(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )
        await orchestrator.cancel_appointment(tenant.business.id, booked.appointment.id)

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana, client=DIEGO)
        )

        assert result.appointment.status is AppointmentStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_other_business_cannot_cancel(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        with pytest.raises(NotFoundError):
            await orchestrator.cancel_appointment(uuid4(), booked.appointment.id)


class TestEvaluateAppointment:
    @pytest.mark.asyncio
    async def test_before_end_is_rejected(self, orchestrator, tenant):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        with pytest.raises(BookingValidationError) as exc_info:
            await orchestrator.evaluate_appointment(tenant.business.id, booked.appointment.id, True)

        assert exc_info.value.error_code == "APPOINTMENT_NOT_FINISHED"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "attended,status,event",
        [(True, AppointmentStatus.COMPLETED, "completed"), (False, AppointmentStatus.NO_SHOW, "no_show")],
    )
    async def test_after_end(self, orchestrator, tenant, clock, publisher, attended, status, event):
        booked = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )
        clock.advance(hours=4)

        result = await orchestrator.evaluate_appointment(
            tenant.business.id, booked.appointment.id, attended
        )

        assert result.appointment.status is status
        assert publisher.event_types[-1] == event


# ============================================================================
# Infrastructure failures
# ============================================================================


class TestInfrastructureFailures:
    @pytest.mark.asyncio
    async def test_store_timeout(self, orchestrator, repository, tenant):
        repository.delay_seconds = 1.5

        with pytest.raises(InternalError) as exc_info:
            await orchestrator.create_appointment(
                tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
            )

        assert exc_info.value.error_code == "STORE_TIMEOUT"

    @pytest.mark.asyncio
    async def test_publish_failure_keeps_booking(self, orchestrator, repository, tenant, publisher):
        publisher.fail = True

        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        assert result.appointment.id in repository.appointments
        assert result.warnings == ["No se pudo enviar la notificación de la cita"]


# ============================================================================
# Result serialization and client records
# ============================================================================


class TestBookingResult:
    @pytest.mark.asyncio
    async def test_to_dict(self, orchestrator, tenant):
        result = await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )

        data = result.to_dict()

        assert data["success"] is True
        assert data["appointment"]["status"] == "confirmed"
        assert data["appointment"]["professional_id"] == str(tenant.ana.id)
        assert data["appointment"]["price"] == "8000.00"
        assert data["checkout"] is None
        assert data["was_auto_assigned"] is False
        assert "degraded" not in data["payment_decision"]

    @pytest.mark.asyncio
    async def test_returning_client_is_reused(self, orchestrator, repository, tenant):
        await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(10, 0), tenant.ana)
        )
        returning = ClientIdentity(name="Carla Gómez", email="CARLA@example.com")
        await orchestrator.create_appointment(
            tenant.business.id, booking_request(tenant, local(11, 0), tenant.ana, client=returning)
        )

        assert len(repository.clients) == 1
        client_ids = {a.client_id for a in repository.appointments.values()}
        assert client_ids == set(repository.clients)
