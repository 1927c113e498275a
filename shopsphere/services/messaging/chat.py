"""
Chat service - persists negotiation messages and fans them out live.
"""

import logging
from typing import List, Optional

from shopsphere.errors import ValidationError
from shopsphere.identity import Identity
from shopsphere.models import Message, NegotiationStatus
from shopsphere.services.negotiation import NegotiationManager
from shopsphere.store import MarketplaceStore
from .channel import MessageCallback, MessageChannel, Subscription
from .feed import MessageFeed

logger = logging.getLogger(__name__)


class ChatService:
    """Send, read and follow the messages of a negotiation"""

    def __init__(self, store: MarketplaceStore, channel: MessageChannel):
        self.store = store
        self.channel = channel
        self.negotiations = NegotiationManager(store)

    async def send_message(
        self,
        identity: Optional[Identity],
        negotiation_id: str,
        content: str
    ) -> Message:
        """
        Persist a message from the caller to the other party, then publish it.

        Messages stay allowed after payment; cancelled negotiations are closed.

        Returns:
            The stored message with its id and timestamp

        Raises:
            ValidationError: Blank content or cancelled negotiation
        """
        if content is None or not content.strip():
            raise ValidationError("Message cannot be empty")

        negotiation = await self.negotiations.get_for_party(identity, negotiation_id)
        if negotiation.status == NegotiationStatus.CANCELLED:
            raise ValidationError("This negotiation was cancelled")

        message = await self.store.insert_message(
            negotiation_id=negotiation.id,
            sender_id=identity.user_id,
            receiver_id=negotiation.counterpart_of(identity.user_id),
            content=content
        )
        logger.info(f"Message {message.id} sent in negotiation {negotiation.id}")

        # The row is committed; live subscribers that miss it catch up from history
        try:
            await self.channel.publish(negotiation.id, message)
        except Exception as e:
            logger.error(f"Failed to publish message {message.id}: {e}")

        return message

    async def fetch_history(self, identity: Optional[Identity], negotiation_id: str) -> List[Message]:
        """All messages of the negotiation, oldest first."""
        negotiation = await self.negotiations.get_for_party(identity, negotiation_id)
        return await self.store.list_messages(negotiation.id)

    async def subscribe(
        self,
        identity: Optional[Identity],
        negotiation_id: str,
        on_message: MessageCallback
    ) -> Subscription:
        """Live feed of new messages for a negotiation the caller is party to."""
        negotiation = await self.negotiations.get_for_party(identity, negotiation_id)
        return await self.channel.subscribe(negotiation.id, on_message)

    async def open_feed(self, identity: Optional[Identity], negotiation_id: str) -> MessageFeed:
        """
        Seed a feed from history, then follow the live channel.

        History is read again once the subscription is live so anything sent
        between the first read and the subscription still shows up; the feed
        drops the repeats.
        """
        history = await self.fetch_history(identity, negotiation_id)
        feed = MessageFeed(negotiation_id, history)
        subscription = await self.channel.subscribe(negotiation_id, feed.deliver)
        feed.attach(subscription)

        feed.backfill(await self.store.list_messages(negotiation_id))
        return feed
