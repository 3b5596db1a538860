"""
AppointmentStateMachine - lifecycle controller for appointments.

States:
    pending_payment -> confirmed       (payment succeeded)
    pending_payment -> cancelled       (payment failed / timed out / cancel)
    confirmed       -> cancelled       (cancel)
    confirmed       -> completed       (attended, after end time)
    confirmed       -> no_show         (not attended, after end time)

cancelled, completed and no_show are terminal. Any other transition is
rejected with a BookingValidationError (INVALID_TRANSITION).
"""

import logging
from datetime import datetime
from enum import Enum
from typing import ClassVar

from booking.errors import BookingValidationError
from database.models import Appointment, AppointmentStatus

logger = logging.getLogger(__name__)


class AppointmentEvent(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    CANCEL = "cancel"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


class AppointmentStateMachine:
    """
    Validates and applies status transitions on an Appointment.

    Example:
        >>> fsm = AppointmentStateMachine()
        >>> fsm.apply(appointment, AppointmentEvent.PAYMENT_SUCCEEDED, now)
        AppointmentStatus.CONFIRMED
    """

    TRANSITIONS: ClassVar[dict[AppointmentStatus, dict[AppointmentEvent, AppointmentStatus]]] = {
        AppointmentStatus.PENDING_PAYMENT: {
            AppointmentEvent.PAYMENT_SUCCEEDED: AppointmentStatus.CONFIRMED,
            AppointmentEvent.PAYMENT_FAILED: AppointmentStatus.CANCELLED,
            AppointmentEvent.CANCEL: AppointmentStatus.CANCELLED,
        },
        AppointmentStatus.CONFIRMED: {
            AppointmentEvent.CANCEL: AppointmentStatus.CANCELLED,
            AppointmentEvent.COMPLETE: AppointmentStatus.COMPLETED,
            AppointmentEvent.MARK_NO_SHOW: AppointmentStatus.NO_SHOW,
        },
        AppointmentStatus.CANCELLED: {},
        AppointmentStatus.COMPLETED: {},
        AppointmentStatus.NO_SHOW: {},
    }

    # Evaluation events only make sense once the appointment is over
    REQUIRES_ENDED: ClassVar[frozenset[AppointmentEvent]] = frozenset(
        {AppointmentEvent.COMPLETE, AppointmentEvent.MARK_NO_SHOW}
    )

    @classmethod
    def is_terminal(cls, status: AppointmentStatus) -> bool:
        return not cls.TRANSITIONS[status]

    @classmethod
    def can_transition(cls, status: AppointmentStatus, event: AppointmentEvent) -> bool:
        return event in cls.TRANSITIONS[status]

    def apply(
        self,
        appointment: Appointment,
        event: AppointmentEvent,
        now: datetime,
        reason: str | None = None,
    ) -> AppointmentStatus:
        """
        Move appointment to the next status for event.

        Sets cancelled_at/cancellation_reason when the target is CANCELLED.

        Raises:
            BookingValidationError: transition not allowed, or evaluation
                attempted before the appointment ended
        """
        current = appointment.status
        target = self.TRANSITIONS[current].get(event)
        if target is None:
            logger.warning(
                f"Rejected transition {current.value} --{event.value}-->",
                extra={"appointment_id": str(appointment.id)},
            )
            raise BookingValidationError(
                "La cita no puede cambiar de estado desde su estado actual",
                error_code="INVALID_TRANSITION",
                details={"status": current.value, "event": event.value},
            )

        if event in self.REQUIRES_ENDED and now < appointment.end_time:
            raise BookingValidationError(
                "La cita solo puede evaluarse después de su horario de finalización",
                error_code="APPOINTMENT_NOT_FINISHED",
                details={"end_time": appointment.end_time.isoformat()},
            )

        appointment.status = target
        if target is AppointmentStatus.CANCELLED:
            appointment.cancelled_at = now
            appointment.cancellation_reason = reason
        appointment.updated_at = now

        logger.info(
            f"Appointment transition {current.value} --{event.value}--> {target.value}",
            extra={"appointment_id": str(appointment.id)},
        )
        return target
