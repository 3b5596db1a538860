"""
Stripe API client for online prepayment.

Online bookings are created in pending_payment status and the client is sent
to a Stripe Checkout Session. The webhook (api/routes/stripe.py) confirms or
cancels the appointment once Stripe reports the outcome.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

import stripe
from pydantic import BaseModel

from database.models import Appointment
from shared.config import get_settings

logger = logging.getLogger(__name__)


class CheckoutSession(BaseModel):
    checkout_handle: str
    redirect_url: str


class PaymentGateway(ABC):
    @abstractmethod
    async def create_checkout(
        self, appointment: Appointment, description: str
    ) -> CheckoutSession:
        """Create a checkout for the appointment's price."""


class StripePaymentGateway(PaymentGateway):
    """PaymentGateway backed by Stripe Checkout Sessions."""

    def __init__(self) -> None:
        settings = get_settings()
        stripe.api_key = settings.STRIPE_SECRET_KEY
        self.currency = settings.STRIPE_CURRENCY
        self.success_url = settings.CHECKOUT_SUCCESS_URL
        self.cancel_url = settings.CHECKOUT_CANCEL_URL

    async def create_checkout(
        self, appointment: Appointment, description: str
    ) -> CheckoutSession:
        """
        Create a Stripe Checkout Session for an appointment.

        Uses ad-hoc price_data so no permanent Stripe products are created
        per service.

        Raises:
            stripe.StripeError: If Stripe API call fails
        """
        amount_cents = int(Decimal(appointment.price) * 100)
        metadata = {
            "appointment_id": str(appointment.id),
            "business_id": str(appointment.business_id),
            "client_id": str(appointment.client_id),
        }
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "unit_amount": amount_cents,
                        "product_data": {"name": "Reserva de turno", "description": description},
                    },
                    "quantity": 1,
                }
            ],
            "metadata": metadata,
            "client_reference_id": str(appointment.id),
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
        }

        logger.info(
            f"Creating Stripe Checkout Session for appointment {appointment.id}, "
            f"amount: {appointment.price} ({amount_cents} cents)",
            extra={"appointment_id": str(appointment.id)},
        )
        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.error(
                f"Stripe API error creating checkout for appointment {appointment.id}: {e}",
                extra={"appointment_id": str(appointment.id)},
            )
            raise

        logger.info(f"Checkout Session created: {session.id}")
        return CheckoutSession(checkout_handle=session.id, redirect_url=session.url)
