"""Negotiation data models"""

from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional


class NegotiationStatus(str, Enum):
    """Negotiation lifecycle states"""
    PENDING = "pending"
    ACTIVE = "active"
    PAID = "paid"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({NegotiationStatus.PAID, NegotiationStatus.CANCELLED})


class Negotiation(BaseModel):
    """Bargaining session for one (product, buyer) pair"""
    id: str
    product_id: str
    buyer_id: str
    seller_id: str
    pitch_price: Decimal
    final_price: Optional[Decimal] = None
    final_offer_expires_at: Optional[datetime] = None
    status: NegotiationStatus = NegotiationStatus.PENDING
    created_at: datetime

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def agreed_price(self) -> Decimal:
        """Final offer when one was made, otherwise the current pitch."""
        if self.final_price is not None:
            return self.final_price
        return self.pitch_price

    def is_party(self, user_id: str) -> bool:
        return user_id in (self.buyer_id, self.seller_id)

    def counterpart_of(self, user_id: str) -> str:
        """Return the other party of the negotiation.

        The seller is the counterpart of the buyer; anyone else (the seller
        included) talks to the buyer.
        """
        return self.seller_id if user_id == self.buyer_id else self.buyer_id

    def offer_expired(self, now: Optional[datetime] = None) -> bool:
        if self.final_offer_expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        expires_at = self.final_offer_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= now


class NegotiationSummary(Negotiation):
    """Negotiation joined with product summary and counterpart name"""
    product_title: Optional[str] = None
    product_image: Optional[str] = None
    counterpart_name: Optional[str] = None


class PriceProposal(BaseModel):
    """Request body for pitching a new price"""
    price: Decimal


class FinalOfferRequest(BaseModel):
    """Request body for a seller's time-limited final offer"""
    price: Decimal
    valid_for_minutes: int = Field(default=60 * 24, ge=1)
