"""
Typed request models for booking operations.

Validated at the API boundary and passed unchanged into the orchestrator.
"""

from datetime import datetime, time
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from booking.services.client_service import ClientIdentity
from database.models import PaymentMethod


class CreateAppointmentRequest(BaseModel):
    branch_id: UUID | None = None
    service_id: UUID
    professional_id: UUID | None = None
    client: ClientIdentity
    start_time: datetime
    notes: str | None = Field(default=None, max_length=2000)
    payment_method: PaymentMethod = PaymentMethod.LOCAL
    acknowledge_payment_risk: bool = False


class UpdateAppointmentRequest(BaseModel):
    start_time: datetime | None = None
    service_id: UUID | None = None
    professional_id: UUID | None = None
    notes: str | None = Field(default=None, max_length=2000)

    @property
    def changes_schedule(self) -> bool:
        return any(
            value is not None
            for value in (self.start_time, self.service_id, self.professional_id)
        )


class CancelAppointmentRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class EvaluateAppointmentRequest(BaseModel):
    attended: bool


class BreakTimeCreateRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    name: str | None = Field(default=None, max_length=100)

    @model_validator(mode="after")
    def check_range(self) -> "BreakTimeCreateRequest":
        if self.start_time >= self.end_time:
            raise ValueError("start_time must be before end_time")
        return self


class BreakTimeUpdateRequest(BaseModel):
    day_of_week: int | None = Field(default=None, ge=0, le=6)
    start_time: time | None = None
    end_time: time | None = None
    name: str | None = Field(default=None, max_length=100)
    is_active: bool | None = None


class WorkingHoursRequest(BaseModel):
    start_time: time
    end_time: time
