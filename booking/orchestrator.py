"""
BookingOrchestrator - single entry point of the booking engine.

Read path:
    get_available_slots -> batched calendar load -> slot generator

Write path (create_appointment):
    1. Resolve branch (supplied/active, else main, else provisioned)
    2. Validate start: :00/:30 grid in branch time, not in the past
    3. Resolve professional (explicit, or first free candidate by name)
    4. Payment gate (fails open)
    5. Atomic client upsert + conflict check + insert
    6. After commit: checkout for online payments, outbound event

Every store interaction runs under the policy's store timeout. Side effects
after commit never undo a booking, except a failed checkout, which cancels
the pending appointment it was created for.
"""

import asyncio
import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError

from booking.errors import (
    BookingError,
    BookingValidationError,
    InternalError,
    NoProfessionalAvailableError,
    NotFoundError,
    PaymentRequiredError,
    SlotConflictError,
)
from booking.events import BookingEvent, BookingEventType, EventPublisher
from booking.fsm.appointment_fsm import AppointmentEvent
from booking.policy import BookingPolicy
from booking.schemas import (
    BreakTimeCreateRequest,
    BreakTimeUpdateRequest,
    CreateAppointmentRequest,
    UpdateAppointmentRequest,
)
from booking.services.availability_service import (
    AvailabilityResult,
    AvailabilityService,
    load_day_context,
)
from booking.services.branch_service import BranchService
from booking.services.break_time_service import BreakTimeService
from booking.services.calendar_service import CalendarService
from booking.services.client_service import ClientIdentity, normalized_identity
from booking.services.conflict_detector import TimeInterval, has_conflict
from booking.transactions.booking_transaction import BookingTransaction
from booking.validators.transaction_validators import (
    raise_for_result,
    to_branch_local,
    validate_grid_alignment,
    validate_no_break_overlap,
    validate_not_in_past,
    validate_within_window,
)
from database.models import (
    Appointment,
    AppointmentStatus,
    Branch,
    BreakTime,
    Business,
    PaymentMethod,
    Professional,
    Service,
    WorkingHours,
)
from database.repository import BookingRepository
from shared.payment_validation import PaymentDecision
from shared.stripe_client import CheckoutSession, PaymentGateway

logger = logging.getLogger(__name__)

PAYMENT_RISK_NOTE = "[Pago en sucursal aceptado pese a validación de pago]"


@dataclass
class BookingResult:
    appointment: Appointment
    was_auto_assigned: bool = False
    checkout: CheckoutSession | None = None
    payment_decision: PaymentDecision | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        a = self.appointment
        return {
            "success": True,
            "appointment": {
                "id": str(a.id),
                "business_id": str(a.business_id),
                "branch_id": str(a.branch_id),
                "client_id": str(a.client_id),
                "service_id": str(a.service_id),
                "professional_id": str(a.professional_id) if a.professional_id else None,
                "start_time": a.start_time.isoformat(),
                "end_time": a.end_time.isoformat(),
                "status": a.status.value,
                "payment_method": a.payment_method.value,
                "price": str(a.price),
                "notes": a.notes,
            },
            "was_auto_assigned": self.was_auto_assigned,
            "checkout": self.checkout.model_dump() if self.checkout else None,
            "payment_decision": (
                self.payment_decision.model_dump(exclude={"degraded"})
                if self.payment_decision
                else None
            ),
            "warnings": self.warnings,
        }


def _utc_now() -> datetime:
    return datetime.now(UTC)


class BookingOrchestrator:
    """
    Coordinates calendar reads, validation, payment gate, atomic writes and
    outbound events. Holds no per-request state.
    """

    def __init__(
        self,
        repository: BookingRepository,
        payment_validation,
        payment_gateway: PaymentGateway,
        publisher: EventPublisher,
        policy: BookingPolicy | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.repository = repository
        self.payment_validation = payment_validation
        self.payment_gateway = payment_gateway
        self.publisher = publisher
        self.policy = policy or BookingPolicy()
        self.clock = clock

        self.branches = BranchService(repository)
        self.calendar = CalendarService(repository)
        self.break_times = BreakTimeService(repository)
        self.availability = AvailabilityService(repository)

    # ------------------------------------------------------------------
    # Infrastructure helpers
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def _store(self, operation: str, trace_id: str = "-"):
        """Bound store work by the policy timeout and map store failures."""
        try:
            async with asyncio.timeout(self.policy.store_timeout_seconds):
                yield
        except TimeoutError as e:
            logger.error(
                f"[{trace_id}] Store operation '{operation}' timed out "
                f"after {self.policy.store_timeout_seconds}s"
            )
            raise InternalError(
                "El servicio no respondió a tiempo, intenta nuevamente",
                error_code="STORE_TIMEOUT",
                details={"operation": operation},
            ) from e
        except SQLAlchemyError as e:
            logger.error(
                f"[{trace_id}] Database error during '{operation}'",
                extra={"error": str(e)},
                exc_info=True,
            )
            raise InternalError(
                "Error al procesar la reserva en la base de datos",
                error_code="DATABASE_ERROR",
                details={"operation": operation},
            ) from e

    async def _publish(
        self, event_type: BookingEventType, appointment: Appointment, warnings: list[str], trace_id: str
    ) -> None:
        try:
            await self.publisher.publish(BookingEvent.from_appointment(event_type, appointment))
        except Exception as e:
            # Booking is already committed; delivery is best-effort
            logger.warning(
                f"[{trace_id}] Failed to publish {event_type.value} event: {e}",
                extra={"appointment_id": str(appointment.id)},
            )
            warnings.append("No se pudo enviar la notificación de la cita")

    async def _evaluate_payment(
        self, identity: ClientIdentity, warnings: list[str], trace_id: str
    ) -> PaymentDecision:
        try:
            async with asyncio.timeout(self.policy.payment_gate_timeout_seconds):
                decision = await self.payment_validation.evaluate(identity.email, identity.phone)
        except Exception as e:
            logger.warning(f"[{trace_id}] Payment gate unavailable, failing open: {e}")
            warnings.append("No se pudo validar el historial de pagos del cliente")
            return PaymentDecision.allow_all(degraded=True)

        if decision.degraded:
            warnings.append("No se pudo validar el historial de pagos del cliente")
        return decision

    # ------------------------------------------------------------------
    # Resolution helpers
    # ------------------------------------------------------------------

    async def _resolve_service(
        self, business: Business, branch: Branch, service_id: UUID
    ) -> tuple[Service, Decimal]:
        """Service offered at branch and its effective price."""
        service = await self.repository.get_service(service_id)
        if service is None or service.business_id != business.id or not service.is_active:
            raise NotFoundError(
                "Servicio no encontrado",
                error_code="SERVICE_NOT_FOUND",
                details={"service_id": str(service_id)},
            )

        branch_service = await self.repository.get_branch_service(branch.id, service.id)
        if not service.is_global and branch_service is None:
            raise BookingValidationError(
                "El servicio no está disponible en esta sucursal",
                error_code="SERVICE_NOT_OFFERED_AT_BRANCH",
                details={"service_id": str(service_id), "branch_id": str(branch.id)},
            )

        price = service.price
        if branch_service is not None and branch_service.price_override is not None:
            price = branch_service.price_override
        return service, price

    async def _resolve_professional(
        self, business: Business, branch: Branch, professional_id: UUID
    ) -> Professional:
        professional = await self.calendar.get_professional(business.id, professional_id)
        if not professional.is_active or professional.branch_id != branch.id:
            raise BookingValidationError(
                "El profesional no está disponible en esta sucursal",
                error_code="PROFESSIONAL_NOT_AVAILABLE",
                details={"professional_id": str(professional_id), "branch_id": str(branch.id)},
            )
        return professional

    async def _get_appointment(self, business_id: UUID | None, appointment_id: UUID) -> Appointment:
        appointment = await self.repository.get_appointment(appointment_id)
        if appointment is None or (business_id is not None and appointment.business_id != business_id):
            raise NotFoundError(
                "Cita no encontrada",
                error_code="APPOINTMENT_NOT_FOUND",
                details={"appointment_id": str(appointment_id)},
            )
        return appointment

    def _granularity(self, business: Business) -> int:
        return business.slot_granularity_minutes or self.policy.default_granularity_minutes

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_available_slots(
        self,
        business_id: UUID,
        branch_id: UUID | None,
        target_date: date,
        service_id: UUID,
        professional_id: UUID | None = None,
    ) -> AvailabilityResult:
        """
        Free slots per professional for a branch day. No side effects except
        provisioning a main branch for a business that has none.
        """
        trace_id = f"{business_id}_{target_date.isoformat()}"
        async with self._store("get_available_slots", trace_id):
            business = await self.branches.get_business(business_id)
            branch = await self.branches.resolve_branch(business, branch_id)
            service, _price = await self._resolve_service(business, branch, service_id)

            if professional_id is not None:
                professionals = [await self._resolve_professional(business, branch, professional_id)]
            else:
                professionals = await self.repository.list_active_professionals(branch.id)

            return await self.availability.list_available_slots(
                branch=branch,
                target_date=target_date,
                duration_minutes=service.duration_minutes,
                granularity_minutes=self._granularity(business),
                professionals=professionals,
                include_non_working=professional_id is not None,
                now=self.clock(),
            )

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def create_appointment(
        self, business_id: UUID, request: CreateAppointmentRequest
    ) -> BookingResult:
        """
        Create an appointment.

        Raises:
            NotFoundError: Business, branch, service or professional unknown
            BookingValidationError: Misaligned/past start, outside working hours
            SlotConflictError: Break overlap or taken slot
            NoProfessionalAvailableError: Auto-assignment found nobody free
            PaymentRequiredError: Client must prepay online or acknowledge risk
            InternalError: Store timeout/failure or checkout failure
        """
        trace_id = f"{business_id}_{request.start_time.isoformat()}"
        logger.info(
            f"[{trace_id}] Starting booking",
            extra={
                "business_id": str(business_id),
                "branch_id": str(request.branch_id) if request.branch_id else None,
                "professional_id": str(request.professional_id) if request.professional_id else None,
            },
        )
        now = self.clock()
        warnings: list[str] = []
        identity = normalized_identity(request.client, self.policy.phone_region)

        async with self._store("resolve_booking", trace_id):
            business = await self.branches.get_business(business_id)
            branch = await self.branches.resolve_branch(business, request.branch_id)
            service, price = await self._resolve_service(business, branch, request.service_id)

            tz = ZoneInfo(branch.timezone)
            start = to_branch_local(request.start_time, tz)
            raise_for_result(validate_grid_alignment(start), BookingValidationError)
            raise_for_result(validate_not_in_past(start, now), BookingValidationError)
            interval = TimeInterval(start, start + timedelta(minutes=service.duration_minutes))

            if request.professional_id is not None:
                candidates = [
                    await self._resolve_professional(business, branch, request.professional_id)
                ]
            else:
                candidates = await self.repository.list_active_professionals(branch.id)

            context = await load_day_context(
                self.repository, branch, [p.id for p in candidates], start.date()
            )

        if request.professional_id is not None:
            raise_for_result(
                validate_within_window(interval, context.window_for(candidates[0].id)),
                BookingValidationError,
            )
        raise_for_result(validate_no_break_overlap(interval, context.breaks), SlotConflictError)

        auto_assign = request.professional_id is None
        if auto_assign:
            candidates = [
                p
                for p in candidates
                if (window := context.window_for(p.id)) is not None
                and window.contains(interval)
                and not has_conflict(interval, context.appointments_for(p.id))
            ]
            if not candidates:
                logger.info(f"[{trace_id}] No professional free for requested interval")
                raise NoProfessionalAvailableError(
                    "No hay profesionales disponibles en ese horario",
                    details={"start_time": interval.start.isoformat(), "branch_id": str(branch.id)},
                )

        decision = await self._evaluate_payment(identity, warnings, trace_id)
        notes = request.notes
        if decision.requires_online_payment and request.payment_method is not PaymentMethod.ONLINE:
            if not request.acknowledge_payment_risk:
                logger.info(f"[{trace_id}] Payment required for client, booking rejected")
                raise PaymentRequiredError(
                    "Este cliente debe abonar el turno online para reservar",
                    details={
                        "scoring": decision.scoring.model_dump() if decision.scoring else None,
                        "reason": decision.reason,
                        "allowed_methods": decision.allowed_methods,
                    },
                )
            notes = f"{notes}\n{PAYMENT_RISK_NOTE}" if notes else PAYMENT_RISK_NOTE

        online = request.payment_method is PaymentMethod.ONLINE
        created: Appointment | None = None
        for position, professional in enumerate(candidates):
            appointment = Appointment(
                id=uuid4(),
                business_id=business.id,
                branch_id=branch.id,
                service_id=service.id,
                professional_id=professional.id,
                start_time=interval.start,
                end_time=interval.end,
                status=AppointmentStatus.PENDING_PAYMENT if online else AppointmentStatus.CONFIRMED,
                payment_method=request.payment_method,
                price=price,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            try:
                async with self._store("create_appointment", trace_id):
                    created = await BookingTransaction.create(
                        self.repository, appointment, identity, self.policy.max_attempts, trace_id
                    )
                break
            except SlotConflictError:
                if not auto_assign:
                    raise
                logger.info(
                    f"[{trace_id}] Candidate lost the slot, trying next "
                    f"({position + 1}/{len(candidates)})",
                    extra={"professional_id": str(professional.id)},
                )

        if created is None:
            raise NoProfessionalAvailableError(
                "No hay profesionales disponibles en ese horario",
                details={"start_time": interval.start.isoformat(), "branch_id": str(branch.id)},
            )

        result = BookingResult(
            appointment=created,
            was_auto_assigned=auto_assign,
            payment_decision=decision,
            warnings=warnings,
        )

        if online:
            result.checkout = await self._start_checkout(created, service, now, trace_id)
            await self._publish(BookingEventType.PENDING_PAYMENT, created, warnings, trace_id)
        else:
            await self._publish(BookingEventType.CONFIRMED, created, warnings, trace_id)

        logger.info(
            f"[{trace_id}] Booking completed ({created.status.value})",
            extra={"appointment_id": str(created.id), "professional_id": str(created.professional_id)},
        )
        return result

    async def _start_checkout(
        self, appointment: Appointment, service: Service, now: datetime, trace_id: str
    ) -> CheckoutSession:
        """Create the checkout; on failure cancel the pending appointment."""
        try:
            checkout = await self.payment_gateway.create_checkout(appointment, service.name)
        except Exception as e:
            logger.error(
                f"[{trace_id}] Checkout creation failed, cancelling pending appointment",
                extra={"appointment_id": str(appointment.id), "error": str(e)},
                exc_info=True,
            )
            async with self._store("cancel_after_checkout_failure", trace_id):
                await BookingTransaction.transition(
                    self.repository,
                    appointment.id,
                    AppointmentEvent.PAYMENT_FAILED,
                    now,
                    self.policy.max_attempts,
                    trace_id,
                    reason="checkout_failed",
                )
            raise InternalError(
                "No se pudo iniciar el pago online, la reserva fue cancelada",
                error_code="CHECKOUT_FAILED",
                details={"appointment_id": str(appointment.id)},
            ) from e

        async with self._store("record_checkout", trace_id):
            await BookingTransaction.record_checkout(
                self.repository,
                appointment.id,
                checkout.checkout_handle,
                checkout.redirect_url,
                now,
                self.policy.max_attempts,
                trace_id,
            )
        appointment.checkout_handle = checkout.checkout_handle
        appointment.checkout_url = checkout.redirect_url
        return checkout

    async def update_appointment(
        self, business_id: UUID, appointment_id: UUID, request: UpdateAppointmentRequest
    ) -> BookingResult:
        """
        Reschedule or edit an appointment.

        A change of start time, service or professional re-derives end_time
        and re-runs alignment, working window, break and conflict checks; the
        conflict check ignores the appointment itself.
        """
        trace_id = f"{appointment_id}_update"
        now = self.clock()
        warnings: list[str] = []
        changes: dict[str, Any] = {}

        async with self._store("resolve_update", trace_id):
            existing = await self._get_appointment(business_id, appointment_id)
            if request.changes_schedule:
                if not existing.is_active:
                    raise BookingValidationError(
                        "No se puede modificar una cita cancelada o finalizada",
                        error_code="APPOINTMENT_NOT_MODIFIABLE",
                        details={"status": existing.status.value},
                    )
                business = await self.branches.get_business(business_id)
                branch = await self.branches.get_branch(business_id, existing.branch_id)
                tz = ZoneInfo(branch.timezone)

                service_id = request.service_id or existing.service_id
                service, price = await self._resolve_service(business, branch, service_id)

                if request.start_time is not None:
                    start = to_branch_local(request.start_time, tz)
                    raise_for_result(validate_grid_alignment(start), BookingValidationError)
                    raise_for_result(validate_not_in_past(start, now), BookingValidationError)
                else:
                    start = existing.start_time.astimezone(tz)
                interval = TimeInterval(start, start + timedelta(minutes=service.duration_minutes))

                professional_id = request.professional_id or existing.professional_id
                if professional_id is not None:
                    professional = await self._resolve_professional(business, branch, professional_id)
                    context = await load_day_context(
                        self.repository, branch, [professional.id], start.date()
                    )
                    raise_for_result(
                        validate_within_window(interval, context.window_for(professional.id)),
                        BookingValidationError,
                    )
                    raise_for_result(
                        validate_no_break_overlap(interval, context.breaks), SlotConflictError
                    )

                changes.update(
                    start_time=interval.start,
                    end_time=interval.end,
                    service_id=service.id,
                    professional_id=professional_id,
                )
                if service.id != existing.service_id:
                    changes["price"] = price

        if request.notes is not None:
            changes["notes"] = request.notes
        if not changes:
            return BookingResult(appointment=existing)

        async with self._store("update_appointment", trace_id):
            updated = await BookingTransaction.reschedule(
                self.repository, appointment_id, changes, now, self.policy.max_attempts, trace_id
            )

        await self._publish(BookingEventType.MODIFIED, updated, warnings, trace_id)
        return BookingResult(appointment=updated, warnings=warnings)

    async def cancel_appointment(
        self, business_id: UUID, appointment_id: UUID, reason: str | None = None
    ) -> BookingResult:
        """Cancel an appointment. Cancelling a cancelled appointment is a no-op."""
        trace_id = f"{appointment_id}_cancel"
        warnings: list[str] = []
        async with self._store("cancel_appointment", trace_id):
            await self._get_appointment(business_id, appointment_id)
            appointment, changed = await BookingTransaction.transition(
                self.repository,
                appointment_id,
                AppointmentEvent.CANCEL,
                self.clock(),
                self.policy.max_attempts,
                trace_id,
                reason=reason,
                skip_if=lambda a: a.status is AppointmentStatus.CANCELLED,
            )
        if changed:
            await self._publish(BookingEventType.CANCELLED, appointment, warnings, trace_id)
        else:
            logger.info(f"[{trace_id}] Appointment already cancelled")
        return BookingResult(appointment=appointment, warnings=warnings)

    async def confirm_payment(self, appointment_id: UUID, checkout_handle: str | None) -> BookingResult:
        """Payment succeeded: pending_payment -> confirmed. Idempotent."""
        trace_id = f"{appointment_id}_payment"
        warnings: list[str] = []

        def verify_handle(appointment: Appointment) -> None:
            if (
                checkout_handle
                and appointment.checkout_handle
                and appointment.checkout_handle != checkout_handle
            ):
                raise BookingValidationError(
                    "El pago no corresponde a esta cita",
                    error_code="CHECKOUT_MISMATCH",
                    details={"appointment_id": str(appointment.id)},
                )

        async with self._store("confirm_payment", trace_id):
            appointment, changed = await BookingTransaction.transition(
                self.repository,
                appointment_id,
                AppointmentEvent.PAYMENT_SUCCEEDED,
                self.clock(),
                self.policy.max_attempts,
                trace_id,
                skip_if=lambda a: a.status is AppointmentStatus.CONFIRMED,
                before_apply=verify_handle,
            )
        if changed:
            await self._publish(BookingEventType.CONFIRMED, appointment, warnings, trace_id)
        return BookingResult(appointment=appointment, warnings=warnings)

    async def fail_payment(self, appointment_id: UUID, reason: str = "payment_failed") -> BookingResult:
        """Payment failed or timed out: pending_payment -> cancelled. Idempotent."""
        trace_id = f"{appointment_id}_payment"
        warnings: list[str] = []
        async with self._store("fail_payment", trace_id):
            appointment, changed = await BookingTransaction.transition(
                self.repository,
                appointment_id,
                AppointmentEvent.PAYMENT_FAILED,
                self.clock(),
                self.policy.max_attempts,
                trace_id,
                reason=reason,
                skip_if=lambda a: a.status is AppointmentStatus.CANCELLED,
            )
        if changed:
            await self._publish(BookingEventType.CANCELLED, appointment, warnings, trace_id)
        return BookingResult(appointment=appointment, warnings=warnings)

    async def evaluate_appointment(
        self, business_id: UUID, appointment_id: UUID, attended: bool
    ) -> BookingResult:
        """Record attendance after the appointment ended: completed or no_show."""
        trace_id = f"{appointment_id}_evaluation"
        warnings: list[str] = []
        event = AppointmentEvent.COMPLETE if attended else AppointmentEvent.MARK_NO_SHOW
        async with self._store("evaluate_appointment", trace_id):
            await self._get_appointment(business_id, appointment_id)
            appointment, _changed = await BookingTransaction.transition(
                self.repository,
                appointment_id,
                event,
                self.clock(),
                self.policy.max_attempts,
                trace_id,
            )
        event_type = BookingEventType.COMPLETED if attended else BookingEventType.NO_SHOW
        await self._publish(event_type, appointment, warnings, trace_id)
        return BookingResult(appointment=appointment, warnings=warnings)

    async def expire_pending_payments(self) -> list[UUID]:
        """Cancel pending_payment appointments older than the payment timeout."""
        cutoff = self.clock() - timedelta(minutes=self.policy.payment_timeout_minutes)
        async with self._store("list_expired_pending_payments"):
            expired = await self.repository.list_expired_pending_payments(cutoff)

        cancelled: list[UUID] = []
        for appointment in expired:
            try:
                await self.fail_payment(appointment.id, reason="payment_timeout")
                cancelled.append(appointment.id)
            except BookingError as e:
                logger.warning(
                    f"Could not expire pending appointment: {e.message}",
                    extra={"appointment_id": str(appointment.id)},
                )
        if cancelled:
            logger.info(f"Expired {len(cancelled)} pending payment appointments")
        return cancelled

    # ------------------------------------------------------------------
    # Calendar maintenance
    # ------------------------------------------------------------------

    async def set_main_branch(self, business_id: UUID, branch_id: UUID) -> Branch:
        async with self._store("set_main_branch"):
            return await self.branches.set_main_branch(business_id, branch_id)

    async def list_break_times(self, business_id: UUID, branch_id: UUID) -> list[BreakTime]:
        async with self._store("list_break_times"):
            branch = await self.branches.get_branch(business_id, branch_id)
            return await self.break_times.list_break_times(branch.id)

    async def create_break_time(
        self, business_id: UUID, branch_id: UUID, request: BreakTimeCreateRequest
    ) -> BreakTime:
        async with self._store("create_break_time"):
            branch = await self.branches.get_branch(business_id, branch_id)
            return await self.break_times.create_break_time(
                branch.id, request.day_of_week, request.start_time, request.end_time, request.name
            )

    async def update_break_time(
        self, business_id: UUID, break_time_id: UUID, request: BreakTimeUpdateRequest
    ) -> BreakTime:
        async with self._store("update_break_time"):
            return await self.break_times.update_break_time(
                business_id,
                break_time_id,
                day_of_week=request.day_of_week,
                start=request.start_time,
                end=request.end_time,
                name=request.name,
                is_active=request.is_active,
            )

    async def replace_working_hours(
        self, business_id: UUID, professional_id: UUID, day_of_week: int, start: time, end: time
    ) -> WorkingHours:
        async with self._store("replace_working_hours"):
            return await self.calendar.replace_working_hours(
                business_id, professional_id, day_of_week, start, end
            )
