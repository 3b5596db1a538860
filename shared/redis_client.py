"""
Redis client singleton and Redis Streams helpers.

The booking engine publishes outbound events to a Redis Stream. Streams keep
messages until a consumer group acknowledges them, so events survive worker
restarts. Failed deliveries are moved to a dead letter stream.
"""

import json
import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError
from redis.exceptions import ResponseError as RedisResponseError

from shared.config import get_settings

NOTIFICATION_CONSUMER_GROUP = "notification_workers"
DEAD_LETTER_STREAM = "booking_events_dead_letter"
STREAM_MAX_LEN = 10000  # Approximate trim to keep stream bounded

logger = logging.getLogger(__name__)


class StreamUnavailableError(Exception):
    """Redis could not be reached or rejected a stream command."""


@lru_cache
def get_redis_client() -> "redis.Redis[str]":
    """
    Get cached Redis client instance.

    Connection pool shared by the API and workers, with retry on timeout and
    periodic health checks.
    """
    settings = get_settings()
    client = redis.from_url(
        settings.REDIS_URL,
        max_connections=20,
        decode_responses=True,
        retry_on_timeout=True,
        health_check_interval=30,
    )
    logger.info(f"Redis client initialized: {settings.REDIS_URL}")
    return client


async def close_redis_client() -> None:
    """Close Redis connection gracefully. Called during application shutdown."""
    try:
        client = get_redis_client()
        await client.aclose()
        logger.info("Redis client closed")
    except RedisError as e:
        logger.warning(f"Error closing Redis client: {e}")


async def add_to_stream(
    stream: str,
    message: dict[str, Any],
    max_len: int = STREAM_MAX_LEN,
) -> str:
    """
    Add a message to a Redis Stream with approximate trimming.

    Returns:
        Stream message ID (e.g., "1234567890123-0")

    Raises:
        StreamUnavailableError: If Redis rejects or cannot take the message
    """
    client = get_redis_client()
    json_message = json.dumps(message)
    try:
        message_id = await client.xadd(
            stream,
            {"data": json_message},
            maxlen=max_len,
            approximate=True,
        )
    except RedisError as e:
        logger.error(f"Redis error adding to stream '{stream}': {e}")
        raise StreamUnavailableError(str(e)) from e

    logger.debug(f"Message added to stream '{stream}': id={message_id}")
    return message_id


async def create_consumer_group(stream: str, group: str, start_id: str = "0") -> bool:
    """
    Create a consumer group (and the stream, if missing).

    Returns:
        True if group was created, False if it already exists
    """
    client = get_redis_client()
    try:
        await client.xgroup_create(stream, group, id=start_id, mkstream=True)
        logger.info(f"Consumer group '{group}' created for stream '{stream}'")
        return True
    except RedisResponseError as e:
        if "BUSYGROUP" in str(e):
            logger.debug(f"Consumer group '{group}' already exists for stream '{stream}'")
            return False
        raise StreamUnavailableError(str(e)) from e
    except RedisError as e:
        raise StreamUnavailableError(str(e)) from e


async def read_from_stream(
    stream: str,
    group: str,
    consumer: str,
    count: int = 10,
    block_ms: int = 5000,
) -> list[tuple[str, dict[str, Any]]]:
    """
    Read new messages for this consumer (XREADGROUP ">").

    Messages stay pending until acknowledged.

    Returns:
        List of (message_id, parsed_data); empty if nothing arrived
    """
    client = get_redis_client()
    try:
        messages = await client.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={stream: ">"},
            count=count,
            block=block_ms,
        )
    except RedisResponseError as e:
        if "NOGROUP" in str(e):
            logger.warning(f"Consumer group '{group}' doesn't exist for stream '{stream}'")
            return []
        raise StreamUnavailableError(str(e)) from e
    except RedisError as e:
        raise StreamUnavailableError(str(e)) from e

    result: list[tuple[str, dict[str, Any]]] = []
    for _stream_name, stream_messages in messages or []:
        for msg_id, msg_data in stream_messages:
            raw_data = msg_data.get("data", "{}")
            try:
                parsed = json.loads(raw_data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON in message {msg_id}: {raw_data[:100]}")
                parsed = {"_raw": raw_data, "_parse_error": True}
            result.append((msg_id, parsed))
    return result


async def acknowledge_message(stream: str, group: str, message_id: str) -> int:
    client = get_redis_client()
    try:
        return await client.xack(stream, group, message_id)
    except RedisError as e:
        raise StreamUnavailableError(str(e)) from e


async def move_to_dead_letter(
    source_stream: str,
    group: str,
    message_id: str,
    message_data: dict[str, Any],
    error: str,
) -> str:
    """Park a message that could not be delivered and acknowledge the original."""
    client = get_redis_client()
    dlq_message = {
        "original_stream": source_stream,
        "original_id": message_id,
        "data": json.dumps(message_data),
        "error": str(error)[:1000],
        "failed_at": datetime.now(UTC).isoformat(),
        "consumer_group": group,
    }
    try:
        dlq_id = await client.xadd(
            DEAD_LETTER_STREAM, dlq_message, maxlen=STREAM_MAX_LEN, approximate=True
        )
        await client.xack(source_stream, group, message_id)
    except RedisError as e:
        raise StreamUnavailableError(str(e)) from e

    logger.warning(
        f"Message {message_id} moved to dead letter queue: {str(error)[:100]} (dlq_id={dlq_id})"
    )
    return dlq_id
