"""Messaging services"""

from .channel import MessageChannel, InMemoryChannel, Subscription
from .redis_channel import RedisChannel
from .feed import MessageFeed
from .chat import ChatService

__all__ = [
    "MessageChannel",
    "InMemoryChannel",
    "Subscription",
    "RedisChannel",
    "MessageFeed",
    "ChatService",
]
