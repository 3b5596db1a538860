"""Dependency for Stripe webhook signature validation."""

import logging
from typing import Any, cast

import stripe
from fastapi import HTTPException, Request
from stripe import SignatureVerificationError

from shared.config import get_settings

logger = logging.getLogger(__name__)


async def validate_stripe_signature(request: Request) -> dict[str, Any]:
    """
    Validate Stripe webhook signature and parse event.

    Returns:
        Parsed Stripe event object

    Raises:
        HTTPException: 401 if the header is missing or verification fails
    """
    settings = get_settings()
    body = await request.body()

    signature_header: str | None = request.headers.get("Stripe-Signature")
    if not signature_header:
        logger.warning("Stripe webhook received without signature header")
        raise HTTPException(status_code=401, detail="Invalid Stripe signature")

    try:
        event = stripe.Webhook.construct_event(
            payload=body,
            sig_header=signature_header,
            secret=settings.STRIPE_WEBHOOK_SECRET,
        )
    except (SignatureVerificationError, ValueError) as e:
        logger.warning(f"Stripe signature verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid Stripe signature") from e

    logger.debug(f"Stripe signature validated: event_type={event['type']}")
    return cast(dict[str, Any], event.to_dict() if hasattr(event, "to_dict") else event)
