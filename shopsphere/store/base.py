"""
Storage contract for the marketplace.

The negotiation, messaging and payment services only talk to this interface,
so they can be re-hosted on any backend that honours its uniqueness rules:

- at most one negotiation per (product_id, buyer_id)
- at most one profile per user id
- at most one recent-view marker per (user_id, product_id)
- at most one transaction per gateway order id
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from shopsphere.models import (
    Message,
    Negotiation,
    NegotiationSummary,
    OrphanedCapture,
    OrphanReason,
    Product,
    ProductCreate,
    Profile,
    ProfileMode,
    RecentView,
    Transaction,
)


class MarketplaceStore(ABC):
    """Async CRUD and query operations over marketplace records"""

    async def close(self) -> None:
        """Release backend resources. No-op by default."""

    # Profiles

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[Profile]:
        ...

    @abstractmethod
    async def ensure_profile(self, user_id: str, email: Optional[str] = None) -> Profile:
        """Return the user's profile, creating it if absent (race-safe)."""

    @abstractmethod
    async def update_profile_mode(self, user_id: str, mode: ProfileMode) -> Optional[Profile]:
        ...

    # Products

    @abstractmethod
    async def insert_product(self, seller_id: str, product: ProductCreate) -> Product:
        ...

    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        ...

    @abstractmethod
    async def list_active_products(self) -> List[Product]:
        """Active listings, newest first."""

    @abstractmethod
    async def list_products_by_seller(self, seller_id: str) -> List[Product]:
        """All of a seller's listings, newest first."""

    @abstractmethod
    async def mark_product_sold(self, product_id: str, sold_at: datetime) -> Optional[Product]:
        ...

    @abstractmethod
    async def delete_product(self, product_id: str) -> bool:
        """Delete a listing. Negotiations, messages and transactions are kept."""

    # Negotiations

    @abstractmethod
    async def find_negotiation(self, product_id: str, buyer_id: str) -> Optional[Negotiation]:
        ...

    @abstractmethod
    async def insert_negotiation_if_absent(
        self,
        product_id: str,
        buyer_id: str,
        seller_id: str,
        pitch_price: Decimal,
    ) -> Tuple[Negotiation, bool]:
        """Create the (product, buyer) negotiation unless one exists.

        Returns:
            The stored negotiation and whether this call created it
        """

    @abstractmethod
    async def get_negotiation(self, negotiation_id: str) -> Optional[Negotiation]:
        ...

    @abstractmethod
    async def list_negotiation_summaries(self, user_id: str) -> List[NegotiationSummary]:
        """Negotiations where the user is buyer or seller, newest first."""

    @abstractmethod
    async def update_negotiation(self, negotiation_id: str, **fields: Any) -> Optional[Negotiation]:
        """Set fields on an open negotiation.

        The write only applies while the stored status is pending or active,
        checked in the same step as the write. Returns None when the
        negotiation is missing or already paid or cancelled.
        """

    # Messages

    @abstractmethod
    async def insert_message(
        self,
        negotiation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
    ) -> Message:
        ...

    @abstractmethod
    async def list_messages(self, negotiation_id: str) -> List[Message]:
        """Messages of one negotiation, oldest first."""

    # Transactions

    @abstractmethod
    async def get_transaction_by_order(self, order_id: str) -> Optional[Transaction]:
        ...

    @abstractmethod
    async def list_transactions(self, negotiation_id: str) -> List[Transaction]:
        ...

    @abstractmethod
    async def commit_capture(
        self,
        negotiation: Negotiation,
        order_id: str,
        amount: Decimal,
        captured_at: datetime,
    ) -> Transaction:
        """Record a capture as one atomic unit.

        Inserts the transaction, marks the product sold and the negotiation
        paid. Either all three writes are visible afterwards or none is.
        Committing an order id that is already recorded returns the existing
        transaction and writes nothing. Otherwise the stored negotiation must
        still be open when the unit runs, or NegotiationClosed is raised and
        nothing is written.
        """

    # Orphaned captures

    @abstractmethod
    async def record_orphaned_capture(
        self,
        order_id: str,
        reason: OrphanReason,
        payload: Dict[str, Any],
        negotiation_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> OrphanedCapture:
        ...

    @abstractmethod
    async def list_orphaned_captures(self, unresolved_only: bool = True) -> List[OrphanedCapture]:
        ...

    @abstractmethod
    async def resolve_orphaned_capture(self, orphan_id: str, resolved_at: datetime) -> Optional[OrphanedCapture]:
        ...

    # Recent views

    @abstractmethod
    async def upsert_recent_view(self, user_id: str, product_id: str, viewed_at: datetime) -> RecentView:
        ...

    @abstractmethod
    async def list_recent_views(self, user_id: str) -> List[RecentView]:
        ...

    @abstractmethod
    async def delete_recent_views_for_product(self, product_id: str) -> int:
        ...
