"""Booking policy value object passed into the orchestrator."""

from dataclasses import dataclass

from shared.config import Settings


@dataclass(frozen=True)
class BookingPolicy:
    default_granularity_minutes: int = 30
    store_timeout_seconds: float = 5.0
    payment_gate_timeout_seconds: float = 3.0
    max_attempts: int = 3
    payment_timeout_minutes: int = 15
    phone_region: str = "AR"

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPolicy":
        return cls(
            default_granularity_minutes=settings.DEFAULT_SLOT_GRANULARITY_MINUTES,
            store_timeout_seconds=settings.STORE_TIMEOUT_SECONDS,
            payment_gate_timeout_seconds=settings.PAYMENT_VALIDATION_TIMEOUT_SECONDS,
            max_attempts=settings.BOOKING_MAX_ATTEMPTS,
            payment_timeout_minutes=settings.PAYMENT_TIMEOUT_MINUTES,
            phone_region=settings.DEFAULT_PHONE_REGION,
        )
