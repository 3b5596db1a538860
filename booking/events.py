"""
Outbound booking events.

After a successful state change the orchestrator publishes a BookingEvent to
an EventPublisher. Delivery to notification channels happens out of band
(booking/workers/notification_worker.py), so a slow or failing channel never
affects the booking decision.
"""

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from database.models import Appointment
from shared.redis_client import add_to_stream

logger = logging.getLogger(__name__)


class BookingEventType(str, Enum):
    CONFIRMED = "confirmed"
    PENDING_PAYMENT = "pending_payment"
    MODIFIED = "modified"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class BookingEvent(BaseModel):
    event_type: BookingEventType
    appointment_id: UUID
    business_id: UUID
    branch_id: UUID
    client_id: UUID
    service_id: UUID
    professional_id: UUID | None
    start_time: datetime
    end_time: datetime
    status: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_appointment(cls, event_type: BookingEventType, appointment: Appointment) -> "BookingEvent":
        return cls(
            event_type=event_type,
            appointment_id=appointment.id,
            business_id=appointment.business_id,
            branch_id=appointment.branch_id,
            client_id=appointment.client_id,
            service_id=appointment.service_id,
            professional_id=appointment.professional_id,
            start_time=appointment.start_time,
            end_time=appointment.end_time,
            status=appointment.status.value,
        )


class EventPublisher(ABC):
    @abstractmethod
    async def publish(self, event: BookingEvent) -> None:
        """Hand the event to the outbound channel. May raise on failure."""


class RedisEventPublisher(EventPublisher):
    """Publishes events to a Redis Stream consumed by the notification worker."""

    def __init__(self, stream: str) -> None:
        self.stream = stream

    async def publish(self, event: BookingEvent) -> None:
        message_id = await add_to_stream(self.stream, event.model_dump(mode="json"))
        logger.info(
            f"Booking event {event.event_type.value} published (id={message_id})",
            extra={"appointment_id": str(event.appointment_id)},
        )
