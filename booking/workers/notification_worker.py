"""
Notification Worker - Delivers booking events to the notification webhook.

Consumes the booking events stream with a consumer group, POSTs each event
to NOTIFICATION_WEBHOOK_URL and acknowledges it. Events that still fail after
retries are moved to the dead letter stream so the stream keeps flowing.
Delivery is best-effort and never feeds back into booking state.
"""

import asyncio
import logging
import os
import socket
from typing import Any

import httpx
import pybreaker
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.circuit_breaker import call_with_breaker, notification_breaker
from shared.config import get_settings
from shared.logging_config import configure_logging
from shared.redis_client import (
    NOTIFICATION_CONSUMER_GROUP,
    StreamUnavailableError,
    acknowledge_message,
    create_consumer_group,
    move_to_dead_letter,
    read_from_stream,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """POSTs booking events to the notification webhook."""

    def __init__(
        self,
        webhook_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url if webhook_url is not None else get_settings().NOTIFICATION_WEBHOOK_URL
        self._transport = transport

    async def dispatch(self, event: dict[str, Any]) -> bool:
        """
        Deliver one event.

        Returns:
            True if delivered (or delivery disabled), False otherwise
        """
        if not self.webhook_url:
            logger.debug("Notification webhook not configured, dropping event")
            return True
        try:
            await call_with_breaker(notification_breaker, self._post, event)
            return True
        except pybreaker.CircuitBreakerError:
            logger.warning("Notification circuit open, event not delivered")
            return False
        except httpx.HTTPError as e:
            logger.error(
                f"Notification delivery failed: {e}",
                extra={"appointment_id": event.get("appointment_id")},
            )
            return False

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, event: dict[str, Any]) -> None:
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(self.webhook_url, json=event, timeout=10.0)
            response.raise_for_status()
        logger.info(
            f"Notification delivered: {event.get('event_type')}",
            extra={"appointment_id": event.get("appointment_id")},
        )


async def process_batch(dispatcher: NotificationDispatcher, stream: str, consumer: str) -> int:
    """Read, deliver and acknowledge one batch. Returns delivered count."""
    messages = await read_from_stream(stream, NOTIFICATION_CONSUMER_GROUP, consumer)
    delivered = 0
    for message_id, data in messages:
        if data.get("_parse_error"):
            await move_to_dead_letter(stream, NOTIFICATION_CONSUMER_GROUP, message_id, data, "invalid JSON")
            continue
        if await dispatcher.dispatch(data):
            await acknowledge_message(stream, NOTIFICATION_CONSUMER_GROUP, message_id)
            delivered += 1
        else:
            await move_to_dead_letter(
                stream, NOTIFICATION_CONSUMER_GROUP, message_id, data, "delivery failed"
            )
    return delivered


async def run_notification_worker(dispatcher: NotificationDispatcher | None = None) -> None:
    settings = get_settings()
    dispatcher = dispatcher or NotificationDispatcher()
    stream = settings.BOOKING_EVENTS_STREAM
    consumer = f"notifier-{socket.gethostname()}-{os.getpid()}"

    await create_consumer_group(stream, NOTIFICATION_CONSUMER_GROUP)
    logger.info(f"Notification worker started (stream={stream}, consumer={consumer})")

    try:
        while True:
            try:
                await process_batch(dispatcher, stream, consumer)
            except StreamUnavailableError as e:
                logger.error(f"Redis unavailable, backing off: {e}")
                await asyncio.sleep(5)
    except asyncio.CancelledError:
        logger.info("Notification worker shutting down...")
        raise


if __name__ == "__main__":
    configure_logging()
    try:
        asyncio.run(run_notification_worker())
    except KeyboardInterrupt:
        logger.info("Notification worker stopped by user")
