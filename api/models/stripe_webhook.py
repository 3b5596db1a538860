"""Pydantic models for Stripe webhook payloads."""

from typing import Any
from uuid import UUID

from pydantic import BaseModel, field_validator


class StripeCheckoutEvent(BaseModel):
    """Checkout session outcome relevant to a pending appointment."""

    event_type: str
    appointment_id: UUID
    checkout_handle: str | None = None

    @field_validator("appointment_id", mode="before")
    @classmethod
    def validate_uuid(cls, v: Any) -> UUID:
        """Validate appointment_id is a valid UUID."""
        if isinstance(v, UUID):
            return v
        if isinstance(v, str):
            try:
                return UUID(v)
            except ValueError as exc:
                raise ValueError(f"Invalid UUID format: {v}") from exc
        raise ValueError(f"appointment_id must be UUID or string, got {type(v)}")
