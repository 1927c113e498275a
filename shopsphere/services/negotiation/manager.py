"""
Negotiation manager - Handles creation, lookup and price changes of negotiations.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from shopsphere.errors import (
    Forbidden,
    NegotiationClosed,
    NotFound,
    SelfNegotiationError,
    ValidationError,
)
from shopsphere.identity import Identity, require_identity
from shopsphere.models import Negotiation, NegotiationStatus, NegotiationSummary
from shopsphere.store import MarketplaceStore
from .state_machine import NegotiationStateMachine

logger = logging.getLogger(__name__)


def parse_price(value: Any, field: str = "price") -> Decimal:
    """Coerce a user supplied price to a positive Decimal.

    Raises:
        ValidationError: If the value is missing, not a number or not positive
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Invalid {field}")
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}")
    if not price.is_finite() or price <= 0:
        raise ValidationError(f"Invalid {field}")
    return price


class NegotiationManager:
    """Manage negotiation persistence and lifecycle"""

    def __init__(self, store: MarketplaceStore):
        self.store = store

    async def start_or_resume(
        self,
        identity: Optional[Identity],
        product_id: str
    ) -> Tuple[Negotiation, bool]:
        """
        Open the buyer's negotiation on a product, creating it on first use.

        Args:
            identity: Caller; must be authenticated
            product_id: Product the buyer wants to negotiate on

        Returns:
            The negotiation and whether it was created by this call

        Raises:
            Unauthorized: No authenticated buyer
            NotFound: Product missing, or not active and never negotiated
            SelfNegotiationError: Buyer is the product's seller
        """
        buyer = require_identity(identity)

        product = await self.store.get_product(product_id)
        if product is None:
            raise NotFound("Product not found")

        if product.seller_id == buyer.user_id:
            raise SelfNegotiationError()

        existing = await self.store.find_negotiation(product.id, buyer.user_id)
        if existing is not None:
            logger.info(f"Resumed negotiation {existing.id} for product {product.id}")
            return existing, False

        if not product.is_active:
            raise NotFound("Product is no longer available")

        # The (product, buyer) unique constraint settles concurrent first clicks
        negotiation, created = await self.store.insert_negotiation_if_absent(
            product_id=product.id,
            buyer_id=buyer.user_id,
            seller_id=product.seller_id,
            pitch_price=product.price
        )
        if created:
            logger.info(
                f"Created negotiation {negotiation.id} for product {product.id} "
                f"at asking price {negotiation.pitch_price}"
            )
        else:
            logger.info(f"Resumed negotiation {negotiation.id} for product {product.id}")
        return negotiation, created

    async def list_for_user(self, identity: Optional[Identity]) -> List[NegotiationSummary]:
        """Negotiations the caller takes part in, most recent first."""
        user = require_identity(identity)
        return await self.store.list_negotiation_summaries(user.user_id)

    async def get_for_party(self, identity: Optional[Identity], negotiation_id: str) -> Negotiation:
        """
        Load a negotiation the caller is buyer or seller of.

        Raises:
            Unauthorized: No authenticated user
            NotFound: Unknown negotiation id
            Forbidden: Caller is not a party
        """
        user = require_identity(identity)
        negotiation = await self.store.get_negotiation(negotiation_id)
        if negotiation is None:
            raise NotFound("Negotiation not found")
        if not negotiation.is_party(user.user_id):
            raise Forbidden("You are not part of this negotiation")
        return negotiation

    async def propose_price(
        self,
        identity: Optional[Identity],
        negotiation_id: str,
        price: Any
    ) -> Negotiation:
        """
        Pitch a new price from either side.

        Args:
            identity: Buyer or seller of the negotiation
            negotiation_id: Negotiation ID
            price: Proposed price

        Returns:
            Updated negotiation, now active
        """
        negotiation = await self.get_for_party(identity, negotiation_id)
        amount = parse_price(price)
        self._ensure_open(negotiation)

        product = await self.store.get_product(negotiation.product_id)
        if product is not None and not product.is_negotiable and amount != product.price:
            raise ValidationError("This item's price is not negotiable")

        status = NegotiationStateMachine.transition(negotiation.status, NegotiationStatus.ACTIVE)
        updated = await self._update_open(
            negotiation.id,
            pitch_price=amount,
            status=status
        )
        logger.info(f"Negotiation {negotiation.id} pitch set to {amount} by {identity.user_id}")
        return updated

    async def make_final_offer(
        self,
        identity: Optional[Identity],
        negotiation_id: str,
        price: Any,
        valid_for: timedelta
    ) -> Negotiation:
        """
        Seller locks in a final price that the buyer must pay before it lapses.

        Args:
            identity: Seller of the negotiation
            negotiation_id: Negotiation ID
            price: Final price
            valid_for: How long the offer stays payable

        Returns:
            Updated negotiation with final_price and final_offer_expires_at
        """
        negotiation = await self.get_for_party(identity, negotiation_id)
        if identity.user_id != negotiation.seller_id:
            raise Forbidden("Only the seller can make a final offer")
        amount = parse_price(price)
        if valid_for <= timedelta(0):
            raise ValidationError("Final offer must stay valid for a positive duration")
        self._ensure_open(negotiation)

        status = NegotiationStateMachine.transition(negotiation.status, NegotiationStatus.ACTIVE)
        expires_at = datetime.now(timezone.utc) + valid_for
        updated = await self._update_open(
            negotiation.id,
            final_price=amount,
            final_offer_expires_at=expires_at,
            status=status
        )
        logger.info(f"Negotiation {negotiation.id} final offer {amount} until {expires_at.isoformat()}")
        return updated

    async def cancel(self, identity: Optional[Identity], negotiation_id: str) -> Negotiation:
        """Either party walks away. Paid negotiations cannot be cancelled."""
        negotiation = await self.get_for_party(identity, negotiation_id)
        status = NegotiationStateMachine.transition(negotiation.status, NegotiationStatus.CANCELLED)
        updated = await self._update_open(negotiation.id, status=status)
        logger.info(f"Negotiation {negotiation.id} cancelled by {identity.user_id}")
        return updated

    async def _update_open(self, negotiation_id: str, **fields: Any) -> Negotiation:
        # The store leaves paid and cancelled rows untouched and returns None
        updated = await self.store.update_negotiation(negotiation_id, **fields)
        if updated is not None:
            return updated
        current = await self.store.get_negotiation(negotiation_id)
        if current is None:
            raise NotFound("Negotiation not found")
        logger.warning(f"Negotiation {negotiation_id} closed as {current.status.value} before update")
        self._ensure_open(current)
        raise NegotiationClosed()

    def _ensure_open(self, negotiation: Negotiation) -> None:
        if negotiation.is_terminal:
            raise NegotiationClosed(
                f"Negotiation is {negotiation.status.value}; the price can no longer change"
            )
