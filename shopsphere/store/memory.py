"""
In-process store backend.

Keeps every table in a dict and serializes writes with one asyncio lock, so
the uniqueness and atomic-capture guarantees of the storage contract hold for
concurrent coroutines on the same event loop. Selected with
STORAGE_BACKEND=memory; the test suite runs against it.
"""

import asyncio
import itertools
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from shopsphere.errors import NegotiationClosed
from shopsphere.models import (
    Message,
    Negotiation,
    NegotiationStatus,
    NegotiationSummary,
    OrphanedCapture,
    OrphanReason,
    Product,
    ProductCreate,
    ProductStatus,
    Profile,
    ProfileMode,
    RecentView,
    Transaction,
    TransactionStatus,
)
from .base import MarketplaceStore

logger = logging.getLogger(__name__)

NEGOTIATION_FIELDS = {"pitch_price", "final_price", "final_offer_expires_at", "status"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class MemoryStore(MarketplaceStore):
    """Dict-backed implementation of the storage contract"""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._seq = itertools.count()
        # id -> (insertion sequence, record); the sequence breaks created_at ties
        self.profiles: Dict[str, Profile] = {}
        self.products: Dict[str, Tuple[int, Product]] = {}
        self.negotiations: Dict[str, Tuple[int, Negotiation]] = {}
        self.messages: Dict[str, Tuple[int, Message]] = {}
        self.transactions: Dict[str, Transaction] = {}
        self.orphans: Dict[str, Tuple[int, OrphanedCapture]] = {}
        self.recent_views: Dict[Tuple[str, str], RecentView] = {}

    # Profiles

    async def get_profile(self, user_id: str) -> Optional[Profile]:
        return self.profiles.get(user_id)

    async def ensure_profile(self, user_id: str, email: Optional[str] = None) -> Profile:
        async with self._lock:
            profile = self.profiles.get(user_id)
            if profile is None:
                profile = Profile(id=user_id, email=email, created_at=_now())
                self.profiles[user_id] = profile
                logger.info(f"Created profile for user {user_id}")
            return profile

    async def update_profile_mode(self, user_id: str, mode: ProfileMode) -> Optional[Profile]:
        async with self._lock:
            profile = self.profiles.get(user_id)
            if profile is None:
                return None
            profile = profile.model_copy(update={"mode": mode})
            self.profiles[user_id] = profile
            return profile

    # Products

    async def insert_product(self, seller_id: str, product: ProductCreate) -> Product:
        async with self._lock:
            record = Product(
                id=_new_id(),
                seller_id=seller_id,
                status=ProductStatus.ACTIVE,
                created_at=_now(),
                **product.model_dump(),
            )
            self.products[record.id] = (next(self._seq), record)
            return record

    async def get_product(self, product_id: str) -> Optional[Product]:
        entry = self.products.get(product_id)
        return entry[1] if entry else None

    def _products_newest_first(self, predicate) -> List[Product]:
        entries = [entry for entry in self.products.values() if predicate(entry[1])]
        entries.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)
        return [product for _, product in entries]

    async def list_active_products(self) -> List[Product]:
        return self._products_newest_first(lambda p: p.status == ProductStatus.ACTIVE)

    async def list_products_by_seller(self, seller_id: str) -> List[Product]:
        return self._products_newest_first(lambda p: p.seller_id == seller_id)

    async def mark_product_sold(self, product_id: str, sold_at: datetime) -> Optional[Product]:
        async with self._lock:
            return self._mark_sold_unlocked(product_id, sold_at)

    def _mark_sold_unlocked(self, product_id: str, sold_at: datetime) -> Optional[Product]:
        entry = self.products.get(product_id)
        if entry is None:
            return None
        seq, product = entry
        product = product.model_copy(update={"status": ProductStatus.SOLD, "sold_at": sold_at})
        self.products[product_id] = (seq, product)
        return product

    async def delete_product(self, product_id: str) -> bool:
        async with self._lock:
            return self.products.pop(product_id, None) is not None

    # Negotiations

    async def find_negotiation(self, product_id: str, buyer_id: str) -> Optional[Negotiation]:
        for _, negotiation in self.negotiations.values():
            if negotiation.product_id == product_id and negotiation.buyer_id == buyer_id:
                return negotiation
        return None

    async def insert_negotiation_if_absent(
        self,
        product_id: str,
        buyer_id: str,
        seller_id: str,
        pitch_price: Decimal,
    ) -> Tuple[Negotiation, bool]:
        async with self._lock:
            existing = await self.find_negotiation(product_id, buyer_id)
            if existing is not None:
                return existing, False
            negotiation = Negotiation(
                id=_new_id(),
                product_id=product_id,
                buyer_id=buyer_id,
                seller_id=seller_id,
                pitch_price=pitch_price,
                status=NegotiationStatus.PENDING,
                created_at=_now(),
            )
            self.negotiations[negotiation.id] = (next(self._seq), negotiation)
            return negotiation, True

    async def get_negotiation(self, negotiation_id: str) -> Optional[Negotiation]:
        entry = self.negotiations.get(negotiation_id)
        return entry[1] if entry else None

    async def list_negotiation_summaries(self, user_id: str) -> List[NegotiationSummary]:
        entries = [
            entry for entry in self.negotiations.values()
            if entry[1].is_party(user_id)
        ]
        entries.sort(key=lambda entry: (entry[1].created_at, entry[0]), reverse=True)

        summaries = []
        for _, negotiation in entries:
            product = await self.get_product(negotiation.product_id)
            counterpart = self.profiles.get(negotiation.counterpart_of(user_id))
            summaries.append(NegotiationSummary(
                **negotiation.model_dump(),
                product_title=product.title if product else None,
                product_image=product.primary_image if product else None,
                counterpart_name=counterpart.full_name if counterpart else None,
            ))
        return summaries

    async def update_negotiation(self, negotiation_id: str, **fields: Any) -> Optional[Negotiation]:
        unknown = set(fields) - NEGOTIATION_FIELDS
        if unknown:
            raise ValueError(f"Cannot update negotiation fields: {sorted(unknown)}")
        async with self._lock:
            entry = self.negotiations.get(negotiation_id)
            if entry is None:
                return None
            seq, negotiation = entry
            if negotiation.is_terminal:
                return None
            negotiation = negotiation.model_copy(update=fields)
            self.negotiations[negotiation_id] = (seq, negotiation)
            return negotiation

    # Messages

    async def insert_message(
        self,
        negotiation_id: str,
        sender_id: str,
        receiver_id: str,
        content: str,
    ) -> Message:
        async with self._lock:
            message = Message(
                id=_new_id(),
                negotiation_id=negotiation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
                created_at=_now(),
            )
            self.messages[message.id] = (next(self._seq), message)
            return message

    async def list_messages(self, negotiation_id: str) -> List[Message]:
        entries = [
            entry for entry in self.messages.values()
            if entry[1].negotiation_id == negotiation_id
        ]
        entries.sort(key=lambda entry: (entry[1].created_at, entry[0]))
        return [message for _, message in entries]

    # Transactions

    async def get_transaction_by_order(self, order_id: str) -> Optional[Transaction]:
        for transaction in self.transactions.values():
            if transaction.order_id == order_id:
                return transaction
        return None

    async def list_transactions(self, negotiation_id: str) -> List[Transaction]:
        return [
            transaction for transaction in self.transactions.values()
            if transaction.negotiation_id == negotiation_id
        ]

    async def commit_capture(
        self,
        negotiation: Negotiation,
        order_id: str,
        amount: Decimal,
        captured_at: datetime,
    ) -> Transaction:
        async with self._lock:
            existing = await self.get_transaction_by_order(order_id)
            if existing is not None:
                return existing

            entry = self.negotiations.get(negotiation.id)
            if entry is None:
                raise KeyError(f"Negotiation {negotiation.id} does not exist")
            seq, current = entry
            if current.is_terminal:
                raise NegotiationClosed(f"Negotiation {negotiation.id} is already {current.status.value}")

            transaction = Transaction(
                id=_new_id(),
                negotiation_id=negotiation.id,
                buyer_id=negotiation.buyer_id,
                seller_id=negotiation.seller_id,
                amount=amount,
                order_id=order_id,
                status=TransactionStatus.CAPTURED,
                created_at=captured_at,
            )
            paid = current.model_copy(update={"status": NegotiationStatus.PAID})

            # Nothing below can fail, so the three writes land together
            self.transactions[transaction.id] = transaction
            self._mark_sold_unlocked(negotiation.product_id, captured_at)
            self.negotiations[negotiation.id] = (seq, paid)
            return transaction

    # Orphaned captures

    async def record_orphaned_capture(
        self,
        order_id: str,
        reason: OrphanReason,
        payload: Dict[str, Any],
        negotiation_id: Optional[str] = None,
        amount: Optional[Decimal] = None,
    ) -> OrphanedCapture:
        async with self._lock:
            orphan = OrphanedCapture(
                id=_new_id(),
                order_id=order_id,
                negotiation_id=negotiation_id,
                amount=amount,
                reason=reason,
                payload=payload or {},
                created_at=_now(),
            )
            self.orphans[orphan.id] = (next(self._seq), orphan)
            return orphan

    async def list_orphaned_captures(self, unresolved_only: bool = True) -> List[OrphanedCapture]:
        entries = sorted(self.orphans.values(), key=lambda entry: (entry[1].created_at, entry[0]))
        return [
            orphan for _, orphan in entries
            if not unresolved_only or orphan.resolved_at is None
        ]

    async def resolve_orphaned_capture(self, orphan_id: str, resolved_at: datetime) -> Optional[OrphanedCapture]:
        async with self._lock:
            entry = self.orphans.get(orphan_id)
            if entry is None:
                return None
            seq, orphan = entry
            orphan = orphan.model_copy(update={"resolved_at": resolved_at})
            self.orphans[orphan_id] = (seq, orphan)
            return orphan

    # Recent views

    async def upsert_recent_view(self, user_id: str, product_id: str, viewed_at: datetime) -> RecentView:
        async with self._lock:
            view = RecentView(user_id=user_id, product_id=product_id, viewed_at=viewed_at)
            self.recent_views[(user_id, product_id)] = view
            return view

    async def list_recent_views(self, user_id: str) -> List[RecentView]:
        views = [view for (owner, _), view in self.recent_views.items() if owner == user_id]
        views.sort(key=lambda view: view.viewed_at, reverse=True)
        return views

    async def delete_recent_views_for_product(self, product_id: str) -> int:
        async with self._lock:
            keys = [key for key in self.recent_views if key[1] == product_id]
            for key in keys:
                del self.recent_views[key]
            return len(keys)
