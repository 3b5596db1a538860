"""Stripe webhook route handler."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.dependencies import get_orchestrator
from api.middleware.signature_validation import validate_stripe_signature
from api.models.stripe_webhook import StripeCheckoutEvent
from booking.errors import BookingError, InternalError, NotFoundError
from booking.orchestrator import BookingOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()

# Checkout outcomes that settle a pending_payment appointment
PAYMENT_SUCCEEDED_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
PAYMENT_FAILED_EVENTS = {"checkout.session.expired", "checkout.session.async_payment_failed"}


@router.post("/stripe")
async def receive_stripe_webhook(
    event: dict[str, Any] = Depends(validate_stripe_signature),
    orchestrator: BookingOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Confirm or cancel pending appointments from Stripe checkout events.

    Unknown appointments and invalid transitions are acknowledged (200) so
    Stripe stops retrying; store failures return 503 so it retries later.

    Raises:
        HTTPException: 400 if appointment_id is missing from metadata
    """
    event_type = event.get("type")
    if event_type not in PAYMENT_SUCCEEDED_EVENTS | PAYMENT_FAILED_EVENTS:
        logger.debug(f"Ignoring Stripe event type: {event_type}")
        return JSONResponse(status_code=200, content={"status": "ignored"})

    session = event.get("data", {}).get("object", {})
    try:
        checkout_event = StripeCheckoutEvent(
            event_type=event_type,
            appointment_id=session.get("metadata", {}).get("appointment_id"),
            checkout_handle=session.get("id"),
        )
    except ValidationError as e:
        logger.error(f"Invalid Stripe checkout event {event.get('id')}: {e}")
        raise HTTPException(status_code=400, detail="Missing appointment_id in metadata") from e

    try:
        if event_type in PAYMENT_SUCCEEDED_EVENTS:
            result = await orchestrator.confirm_payment(
                checkout_event.appointment_id, checkout_event.checkout_handle
            )
        else:
            result = await orchestrator.fail_payment(checkout_event.appointment_id, reason=event_type)
    except InternalError:
        raise
    except NotFoundError as e:
        logger.warning(f"Stripe event for unknown appointment: {e.details}")
        return JSONResponse(status_code=200, content={"status": "ignored", "reason": e.error_code})
    except BookingError as e:
        logger.warning(
            f"Stripe event {event_type} rejected: {e.error_code}",
            extra={"appointment_id": str(checkout_event.appointment_id)},
        )
        return JSONResponse(status_code=200, content={"status": "ignored", "reason": e.error_code})

    logger.info(
        f"Stripe event processed: type={event_type}, status={result.appointment.status.value}",
        extra={"appointment_id": str(checkout_event.appointment_id)},
    )
    return JSONResponse(
        status_code=200,
        content={"status": "processed", "appointment_status": result.appointment.status.value},
    )
