"""
Consumer-side view of one negotiation's chat.

The feed is seeded with history and then fed by a live subscription. Because
live delivery is at-least-once and overlaps the history fetch, every message
is keyed by id and inserted at most once; the visible list is always ordered
by created_at with arrival order breaking ties.
"""

import asyncio
import itertools
import logging
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple

from shopsphere.models import Message
from .channel import Subscription

logger = logging.getLogger(__name__)


class MessageFeed:
    """De-duplicating, ordered message list for one negotiation"""

    def __init__(self, negotiation_id: str, history: Iterable[Message] = ()):
        self.negotiation_id = negotiation_id
        self._arrival = itertools.count()
        self._messages: Dict[str, Tuple[int, Message]] = {}
        self._updates: asyncio.Queue = asyncio.Queue()
        self._subscription: Optional[Subscription] = None
        self._closed = False
        for message in history:
            self._insert(message)

    @property
    def messages(self) -> List[Message]:
        entries = sorted(
            self._messages.values(),
            key=lambda entry: (entry[1].created_at, entry[0])
        )
        return [message for _, message in entries]

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._messages

    def deliver(self, message: Message) -> bool:
        """
        Accept a live message.

        Returns:
            True if the message was new, False if it was dropped as a
            duplicate, belongs to another negotiation or the feed is closed
        """
        if self._closed:
            return False
        if message.negotiation_id != self.negotiation_id:
            logger.warning(
                f"Dropping message {message.id} for negotiation {message.negotiation_id} "
                f"delivered to feed {self.negotiation_id}"
            )
            return False
        if not self._insert(message):
            logger.warning(f"Dropping duplicate message {message.id} in feed {self.negotiation_id}")
            return False
        self._updates.put_nowait(message)
        return True

    def backfill(self, messages: Iterable[Message]) -> int:
        """
        Merge a history re-read into the feed.

        Rows already shown are skipped without a warning; new rows are queued
        like live messages. Returns how many rows were new.
        """
        added = 0
        for message in messages:
            if self._closed or message.negotiation_id != self.negotiation_id:
                continue
            if self._insert(message):
                self._updates.put_nowait(message)
                added += 1
        return added

    def snapshot(self) -> List[Message]:
        """
        Current messages, with pending updates discarded.

        A consumer that renders the snapshot then follows updates() sees every
        message exactly once.
        """
        pending = []
        while not self._updates.empty():
            pending.append(self._updates.get_nowait())
        if None in pending:
            self._updates.put_nowait(None)
        return self.messages

    def _insert(self, message: Message) -> bool:
        if message.id in self._messages:
            return False
        self._messages[message.id] = (next(self._arrival), message)
        return True

    def attach(self, subscription: Subscription) -> None:
        self._subscription = subscription

    async def updates(self, timeout: Optional[float] = None) -> AsyncIterator[Optional[Message]]:
        """
        Yield live messages as they are accepted.

        With a timeout, yields None whenever nothing arrived in that window so
        the caller can emit a keepalive. Stops once the feed is closed.
        """
        while not self._closed:
            try:
                message = await asyncio.wait_for(self._updates.get(), timeout=timeout)
            except asyncio.TimeoutError:
                yield None
                continue
            if message is None:
                break
            yield message

    async def close(self) -> None:
        """Unsubscribe and stop updates. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._updates.put_nowait(None)
        if self._subscription is not None:
            await self._subscription.unsubscribe()
