"""
Payment Expiration Worker - Releases slots held by unpaid online bookings.

This worker runs periodically to find pending_payment appointments older
than PAYMENT_TIMEOUT_MINUTES and cancel them through the orchestrator, which
applies the PAYMENT_FAILED transition and publishes a cancelled event.

Configuration:
- Run interval: PENDING_PAYMENT_CHECK_INTERVAL_SECONDS (default 60)
- Payment timeout: PAYMENT_TIMEOUT_MINUTES (default 15)
"""

import asyncio
import logging

from booking.errors import BookingError
from booking.factory import build_orchestrator
from booking.orchestrator import BookingOrchestrator
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)


async def expire_pending_payments(orchestrator: BookingOrchestrator) -> int:
    """
    Run one expiration pass.

    Returns:
        int: Number of appointments cancelled in this run
    """
    try:
        expired = await orchestrator.expire_pending_payments()
    except BookingError as e:
        logger.error(f"Expiration pass failed: {e.error_code} {e.message}")
        return 0
    return len(expired)


async def run_expiration_worker(
    orchestrator: BookingOrchestrator | None = None,
    interval_seconds: int | None = None,
) -> None:
    """
    Main worker loop - runs an expiration pass every interval_seconds.

    Runs until cancelled.
    """
    orchestrator = orchestrator or build_orchestrator()
    interval = interval_seconds or get_settings().PENDING_PAYMENT_CHECK_INTERVAL_SECONDS

    logger.info(f"Payment expiration worker starting (interval={interval}s)")

    try:
        while True:
            expired_count = await expire_pending_payments(orchestrator)
            logger.debug(f"Expiration check completed | expired_count={expired_count}")
            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info("Payment expiration worker shutting down...")
        raise


if __name__ == "__main__":
    configure_logging()
    try:
        asyncio.run(run_expiration_worker())
    except KeyboardInterrupt:
        logger.info("Payment expiration worker stopped by user")
