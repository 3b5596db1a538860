"""
Atomic booking transactions.

Every write that depends on the conflict predicate runs as one unit of work:
check, then write, then commit, inside a booking scope serialized per
professional. Serialization failures reported by the store are retried a
bounded number of times; when retries run out the caller gets a
SlotConflictError (details.reason = "concurrent_update").

Transactions commit the database FIRST. Side effects (checkout creation,
event publishing) are the orchestrator's job and happen after commit.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TypeVar
from uuid import UUID

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from booking.errors import (
    BookingError,
    BookingValidationError,
    ConcurrentUpdateError,
    NotFoundError,
    SlotConflictError,
)
from booking.fsm.appointment_fsm import AppointmentEvent, AppointmentStateMachine
from booking.services.client_service import ClientIdentity, upsert_client
from database.models import Appointment
from database.repository import BookingRepository, BookingUnit

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def run_in_booking_scope(
    repository: BookingRepository,
    professional_id: UUID | None,
    work: Callable[[BookingUnit], Awaitable[T]],
    max_attempts: int,
    trace_id: str,
) -> T:
    """Run work in a booking scope, retrying on serialization failures."""
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=0.05, max=0.5),
            retry=retry_if_exception_type(ConcurrentUpdateError),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        f"[{trace_id}] Retrying booking scope "
                        f"(attempt {attempt.retry_state.attempt_number}/{max_attempts})"
                    )
                async with repository.booking_scope(professional_id) as unit:
                    result = await work(unit)
    except ConcurrentUpdateError as e:
        logger.warning(f"[{trace_id}] Booking scope retries exhausted: {e}")
        raise SlotConflictError(
            "El horario fue modificado por otra reserva, intenta nuevamente",
            details={"reason": "concurrent_update"},
        ) from e
    return result


def _conflict_error(conflicts: list[Appointment], professional_id: UUID) -> SlotConflictError:
    return SlotConflictError(
        "El horario solicitado ya está reservado",
        details={
            "professional_id": str(professional_id),
            "conflicting_appointment_id": str(conflicts[0].id),
        },
    )


def _not_found(appointment_id: UUID) -> NotFoundError:
    return NotFoundError(
        "Cita no encontrada",
        error_code="APPOINTMENT_NOT_FOUND",
        details={"appointment_id": str(appointment_id)},
    )


class BookingTransaction:
    """
    Atomic transaction handlers for appointment writes.

    All operations re-validate the conflict predicate inside the scope, so a
    check made earlier (availability listing, auto-assignment scan) is never
    trusted on its own.
    """

    @staticmethod
    async def create(
        repository: BookingRepository,
        appointment: Appointment,
        identity: ClientIdentity,
        max_attempts: int,
        trace_id: str,
    ) -> Appointment:
        """
        Insert appointment for the client matching identity.

        appointment carries every field except client_id, which is resolved
        (or created) inside the scope.

        Raises:
            SlotConflictError: Another active appointment overlaps
        """

        async def work(unit: BookingUnit) -> Appointment:
            client = await upsert_client(unit, appointment.business_id, identity)
            conflicts = await unit.find_conflicts(
                appointment.professional_id, appointment.start_time, appointment.end_time
            )
            if conflicts:
                logger.warning(
                    f"[{trace_id}] Slot conflict on insert",
                    extra={
                        "professional_id": str(appointment.professional_id),
                        "conflict_id": str(conflicts[0].id),
                    },
                )
                raise _conflict_error(conflicts, appointment.professional_id)

            appointment.client_id = client.id
            await unit.add_appointment(appointment)
            return appointment

        created = await run_in_booking_scope(
            repository, appointment.professional_id, work, max_attempts, trace_id
        )
        logger.info(
            f"[{trace_id}] Appointment committed ({created.status.value})",
            extra={
                "appointment_id": str(created.id),
                "professional_id": str(created.professional_id),
            },
        )
        return created

    @staticmethod
    async def reschedule(
        repository: BookingRepository,
        appointment_id: UUID,
        changes: dict,
        now: datetime,
        max_attempts: int,
        trace_id: str,
    ) -> Appointment:
        """
        Apply time/service/professional changes to an appointment atomically.

        changes holds the already-derived column values (start_time,
        end_time, service_id, professional_id, price, notes). The conflict
        check excludes the appointment itself.
        """
        professional_id = changes.get("professional_id")

        async def work(unit: BookingUnit) -> Appointment:
            appointment = await unit.get_appointment(appointment_id)
            if appointment is None:
                raise _not_found(appointment_id)
            if not appointment.is_active:
                raise _reschedule_rejected(appointment)

            target_professional = professional_id or appointment.professional_id
            start = changes.get("start_time", appointment.start_time)
            end = changes.get("end_time", appointment.end_time)
            if target_professional is not None:
                conflicts = await unit.find_conflicts(
                    target_professional, start, end, exclude_appointment_id=appointment.id
                )
                if conflicts:
                    raise _conflict_error(conflicts, target_professional)

            for field, value in changes.items():
                setattr(appointment, field, value)
            appointment.updated_at = now
            await unit.save(appointment)
            return appointment

        updated = await run_in_booking_scope(
            repository, professional_id, work, max_attempts, trace_id
        )
        logger.info(
            f"[{trace_id}] Appointment rescheduled",
            extra={"appointment_id": str(updated.id)},
        )
        return updated

    @staticmethod
    async def transition(
        repository: BookingRepository,
        appointment_id: UUID,
        event: AppointmentEvent,
        now: datetime,
        max_attempts: int,
        trace_id: str,
        reason: str | None = None,
        skip_if: Callable[[Appointment], bool] | None = None,
        before_apply: Callable[[Appointment], None] | None = None,
    ) -> tuple[Appointment, bool]:
        """
        Apply a state machine event to an appointment under a row lock.

        Returns:
            (appointment, changed). changed is False when skip_if matched,
            which lets callers make an operation idempotent.
        """
        fsm = AppointmentStateMachine()

        async def work(unit: BookingUnit) -> tuple[Appointment, bool]:
            appointment = await unit.get_appointment(appointment_id)
            if appointment is None:
                raise _not_found(appointment_id)
            if skip_if is not None and skip_if(appointment):
                return appointment, False
            if before_apply is not None:
                before_apply(appointment)
            fsm.apply(appointment, event, now, reason=reason)
            await unit.save(appointment)
            return appointment, True

        return await run_in_booking_scope(repository, None, work, max_attempts, trace_id)

    @staticmethod
    async def record_checkout(
        repository: BookingRepository,
        appointment_id: UUID,
        checkout_handle: str,
        checkout_url: str,
        now: datetime,
        max_attempts: int,
        trace_id: str,
    ) -> Appointment:
        """Store the payment checkout reference on a pending appointment."""

        async def work(unit: BookingUnit) -> Appointment:
            appointment = await unit.get_appointment(appointment_id)
            if appointment is None:
                raise _not_found(appointment_id)
            appointment.checkout_handle = checkout_handle
            appointment.checkout_url = checkout_url
            appointment.updated_at = now
            await unit.save(appointment)
            return appointment

        return await run_in_booking_scope(repository, None, work, max_attempts, trace_id)


def _reschedule_rejected(appointment: Appointment) -> BookingError:
    return BookingValidationError(
        "No se puede modificar una cita cancelada o finalizada",
        error_code="APPOINTMENT_NOT_MODIFIABLE",
        details={"status": appointment.status.value},
    )
