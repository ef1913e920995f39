import json
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as redis

from logger import get_logger

logger = get_logger(__name__)


class RedisDB:
    """Publishes question lifecycle events on a Redis channel."""

    def __init__(
        self,
        host,
        port,
        channel: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
    ):
        self.client = redis.Redis(
            host=host,
            port=port,
            decode_responses=True,
            username=username,
            password=password,
        )
        self.channel = channel
        logger.info(f"Redis publisher configured for {host}:{port}")

    async def ping(self):
        try:
            await self.client.ping()
        except redis.ConnectionError as e:
            logger.exception(f"Failed to connect to Redis: {e}")
            raise

    async def publish(self, message: Any, channel: Optional[str] = None) -> int:
        """Publishes a message to a Redis channel.

        Args:
            message: Message to publish (will be JSON serialized if dict/list)
            channel: Channel name (defaults to self.channel)

        Returns:
            Number of subscribers that received the message
        """
        target_channel = channel or self.channel

        if isinstance(message, (dict, list)):
            message = json.dumps(message, default=str)

        try:
            result = await self.client.publish(target_channel, message)
            logger.info(f"Published message to '{target_channel}': {message[:100]}...")
            return result
        except Exception as e:
            logger.exception(f"Error publishing to '{target_channel}': {e}")
            raise

    async def publish_event(self, event: str, question_id: str, **data) -> int:
        return await self.publish(
            {
                "event": event,
                "question_id": question_id,
                "at": datetime.now(timezone.utc).isoformat(),
                **data,
            }
        )

    async def close(self):
        """Closes the Redis connection."""
        if self.client:
            await self.client.aclose()
            logger.info("Redis connection closed.")
