"""
Redis pub/sub message channel.

Each negotiation maps to the Redis channel ``<prefix>:<negotiation_id>``;
payloads are the full message row as JSON. A reader task per subscription
forwards incoming rows to the subscriber callback.
"""

import asyncio
import logging
from typing import Dict

import redis.asyncio as redis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import ConnectionError as RedisConnectionError

from shopsphere.models import Message
from .channel import MessageCallback, MessageChannel, Subscription, dispatch

logger = logging.getLogger(__name__)


class RedisChannel(MessageChannel):
    """MessageChannel backed by Redis pub/sub"""

    POLL_TIMEOUT_SECONDS = 1.0
    RECONNECT_DELAY_SECONDS = 1.0

    def __init__(self, client: redis.Redis, prefix: str = "chat"):
        self.client = client
        self.prefix = prefix
        self._readers: Dict[int, asyncio.Task] = {}

    def topic(self, negotiation_id: str) -> str:
        return f"{self.prefix}:{negotiation_id}"

    async def publish(self, negotiation_id: str, message: Message) -> None:
        receivers = await self.client.publish(self.topic(negotiation_id), message.model_dump_json())
        logger.debug(f"Published message {message.id} to {receivers} subscriber(s)")

    async def subscribe(self, negotiation_id: str, on_message: MessageCallback) -> Subscription:
        topic = self.topic(negotiation_id)
        pubsub = self.client.pubsub()
        await pubsub.subscribe(topic)

        async def close(subscription: Subscription) -> None:
            task = self._readers.pop(id(subscription), None)
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            try:
                await pubsub.unsubscribe(topic)
            except RedisConnectionError as e:
                logger.warning(f"Could not unsubscribe from {topic}: {e}")
            await pubsub.close()
            logger.info(f"Unsubscribed from {topic}")

        subscription = Subscription(negotiation_id, close)
        self._readers[id(subscription)] = asyncio.create_task(
            self._read(pubsub, topic, on_message)
        )
        logger.info(f"Subscribed to {topic}")
        return subscription

    async def _read(self, pubsub, topic: str, on_message: MessageCallback) -> None:
        while True:
            try:
                event = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.POLL_TIMEOUT_SECONDS
                )
            except RedisConnectionError as e:
                logger.warning(f"Lost Redis connection on {topic}: {e}; resubscribing")
                await asyncio.sleep(self.RECONNECT_DELAY_SECONDS)
                try:
                    await pubsub.subscribe(topic)
                except RedisConnectionError as retry_error:
                    logger.error(f"Resubscribe to {topic} failed: {retry_error}")
                continue
            if event is None or event.get("type") != "message":
                continue
            try:
                message = Message.model_validate_json(event["data"])
            except PydanticValidationError as e:
                logger.warning(f"Dropping malformed payload on {topic}: {e}")
                continue
            try:
                await dispatch(on_message, message)
            except Exception as e:
                logger.error(f"Subscriber on {topic} failed for message {message.id}: {e}")

    async def close(self) -> None:
        for task in list(self._readers.values()):
            task.cancel()
        self._readers.clear()
