"""
Real-time message channel contract.

A channel fans newly created messages out to everyone subscribed to a
negotiation. Delivery is at-least-once and live only: a subscriber sees
messages published after it subscribed, possibly more than once, and must
de-duplicate by message id.
"""

import inspect
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Dict, List, Optional, Union

from shopsphere.models import Message

logger = logging.getLogger(__name__)

MessageCallback = Callable[[Message], Union[None, Awaitable[None]]]


async def dispatch(callback: MessageCallback, message: Message) -> None:
    """Invoke a sync or async subscriber callback."""
    result = callback(message)
    if inspect.isawaitable(result):
        await result


class Subscription:
    """Handle returned by MessageChannel.subscribe"""

    def __init__(self, topic: str, on_close: Callable[["Subscription"], Awaitable[None]]):
        self.topic = topic
        self._on_close = on_close
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def unsubscribe(self) -> None:
        """Stop delivery. Safe to call any number of times."""
        if self._closed:
            return
        self._closed = True
        await self._on_close(self)


class MessageChannel(ABC):
    """Publish/subscribe capability keyed by negotiation id"""

    @abstractmethod
    async def publish(self, negotiation_id: str, message: Message) -> None:
        ...

    @abstractmethod
    async def subscribe(self, negotiation_id: str, on_message: MessageCallback) -> Subscription:
        ...

    async def close(self) -> None:
        """Release transport resources. No-op by default."""


class InMemoryChannel(MessageChannel):
    """Fan-out inside one process"""

    def __init__(self):
        self._subscribers: Dict[str, List[tuple]] = {}

    def subscriber_count(self, negotiation_id: Optional[str] = None) -> int:
        if negotiation_id is not None:
            return len(self._subscribers.get(negotiation_id, []))
        return sum(len(subs) for subs in self._subscribers.values())

    async def publish(self, negotiation_id: str, message: Message) -> None:
        for subscription, callback in list(self._subscribers.get(negotiation_id, [])):
            if subscription.closed:
                continue
            try:
                await dispatch(callback, message)
            except Exception as e:
                logger.error(f"Subscriber on {negotiation_id} failed for message {message.id}: {e}")

    async def subscribe(self, negotiation_id: str, on_message: MessageCallback) -> Subscription:
        subscription = Subscription(negotiation_id, self._remove)
        self._subscribers.setdefault(negotiation_id, []).append((subscription, on_message))
        return subscription

    async def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic, [])
        self._subscribers[subscription.topic] = [
            entry for entry in subscribers if entry[0] is not subscription
        ]
        if not self._subscribers[subscription.topic]:
            del self._subscribers[subscription.topic]
