"""Production wiring of the booking orchestrator."""

from functools import lru_cache

from booking.events import RedisEventPublisher
from booking.orchestrator import BookingOrchestrator
from booking.policy import BookingPolicy
from database.connection import get_async_session
from database.repository import SqlAlchemyBookingRepository
from shared.config import get_settings
from shared.payment_validation import PaymentValidationClient
from shared.stripe_client import StripePaymentGateway


@lru_cache
def build_orchestrator() -> BookingOrchestrator:
    """Cached orchestrator backed by PostgreSQL, Redis and Stripe."""
    settings = get_settings()
    return BookingOrchestrator(
        repository=SqlAlchemyBookingRepository(get_async_session),
        payment_validation=PaymentValidationClient(),
        payment_gateway=StripePaymentGateway(),
        publisher=RedisEventPublisher(settings.BOOKING_EVENTS_STREAM),
        policy=BookingPolicy.from_settings(settings),
    )
