"""
Tests for the Redis-backed chat channel and session resolver.
"""

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from shopsphere.errors import Unauthorized
from shopsphere.identity import Identity, RedisSessionResolver, StaticSessionResolver, require_identity
from shopsphere.models import Message
from shopsphere.services.messaging import RedisChannel


def make_message(message_id: str = "m-1") -> Message:
    return Message(
        id=message_id,
        negotiation_id="neg-1",
        sender_id="buyer",
        receiver_id="seller",
        content="Is this still available?",
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )


class FakePubSub:
    """Stands in for redis.asyncio.client.PubSub"""

    def __init__(self, events):
        self.events = list(events)
        self.subscribe = AsyncMock()
        self.unsubscribe = AsyncMock()
        self.close = AsyncMock()

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        if self.events:
            return self.events.pop(0)
        await asyncio.sleep(0.01)
        return None


def test_publish_sends_message_json_to_negotiation_topic():
    client = MagicMock()
    client.publish = AsyncMock(return_value=1)
    message = make_message()

    asyncio.run(RedisChannel(client, prefix="chat").publish("neg-1", message))

    topic, payload = client.publish.await_args.args
    assert topic == "chat:neg-1"
    assert Message.model_validate_json(payload) == message


def test_subscriber_receives_rows_and_skips_garbage():
    message = make_message()
    pubsub = FakePubSub([
        {"type": "message", "data": "not json"},
        {"type": "pmessage", "data": message.model_dump_json()},
        {"type": "message", "data": message.model_dump_json()},
    ])
    client = MagicMock()
    client.pubsub.return_value = pubsub

    async def scenario():
        received = []
        arrived = asyncio.Event()

        def on_message(row):
            received.append(row)
            arrived.set()

        channel = RedisChannel(client, prefix="chat")
        subscription = await channel.subscribe("neg-1", on_message)
        await asyncio.wait_for(arrived.wait(), timeout=2)
        await subscription.unsubscribe()
        await subscription.unsubscribe()
        return received

    received = asyncio.run(scenario())

    assert received == [message]
    pubsub.subscribe.assert_awaited_once_with("chat:neg-1")
    pubsub.unsubscribe.assert_awaited_once_with("chat:neg-1")
    pubsub.close.assert_awaited_once()


def test_redis_session_resolver_reads_session_json():
    client = MagicMock()
    client.get = AsyncMock(side_effect=lambda key: {
        "session:good": json.dumps({"user_id": "u-1", "email": "u1@example.com"}),
        "session:no-user": json.dumps({"email": "x@example.com"}),
        "session:broken": "{not json",
    }.get(key))
    resolver = RedisSessionResolver(client, prefix="session")

    async def scenario():
        return [
            await resolver.resolve("good"),
            await resolver.resolve("no-user"),
            await resolver.resolve("broken"),
            await resolver.resolve("missing"),
        ]

    good, no_user, broken, missing = asyncio.run(scenario())
    assert good == Identity(user_id="u-1", email="u1@example.com")
    assert no_user is None and broken is None and missing is None


def test_static_session_resolver():
    resolver = StaticSessionResolver()
    resolver.add("token", Identity(user_id="u-2"))

    assert asyncio.run(resolver.resolve("token")) == Identity(user_id="u-2")
    assert asyncio.run(resolver.resolve("other")) is None


def test_require_identity():
    identity = Identity(user_id="u-3")
    assert require_identity(identity) is identity
    with pytest.raises(Unauthorized):
        require_identity(None)
    with pytest.raises(Unauthorized):
        require_identity(Identity(user_id=""))


class FlakyPubSub(FakePubSub):
    """Drops the connection on the first read, then behaves"""

    def __init__(self, events):
        super().__init__(events)
        self.failed = False

    async def get_message(self, ignore_subscribe_messages=False, timeout=0.0):
        if not self.failed:
            self.failed = True
            raise RedisConnectionError("Connection closed by server.")
        return await super().get_message(ignore_subscribe_messages, timeout)


def test_subscriber_survives_a_dropped_connection():
    message = make_message()
    pubsub = FlakyPubSub([{"type": "message", "data": message.model_dump_json()}])
    client = MagicMock()
    client.pubsub.return_value = pubsub

    async def scenario():
        received = []
        arrived = asyncio.Event()

        def on_message(row):
            received.append(row)
            arrived.set()

        channel = RedisChannel(client, prefix="chat")
        channel.RECONNECT_DELAY_SECONDS = 0
        subscription = await channel.subscribe("neg-1", on_message)
        await asyncio.wait_for(arrived.wait(), timeout=2)
        await subscription.unsubscribe()
        return received

    received = asyncio.run(scenario())

    assert received == [message]
    assert pubsub.subscribe.await_count == 2
    pubsub.close.assert_awaited_once()
