"""Data models for the ShopSphere API"""

from .profile import Profile, ProfileMode, ModeUpdate
from .product import Product, ProductCreate, ProductStatus, RecentView
from .negotiation import (
    Negotiation,
    NegotiationStatus,
    NegotiationSummary,
    PriceProposal,
    FinalOfferRequest,
    TERMINAL_STATUSES,
)
from .message import Message, MessageCreate
from .transaction import (
    Transaction,
    TransactionStatus,
    OrphanedCapture,
    OrphanReason,
    CreateOrderRequest,
    CaptureOrderRequest,
)

__all__ = [
    "Profile",
    "ProfileMode",
    "ModeUpdate",
    "Product",
    "ProductCreate",
    "ProductStatus",
    "RecentView",
    "Negotiation",
    "NegotiationStatus",
    "NegotiationSummary",
    "PriceProposal",
    "FinalOfferRequest",
    "TERMINAL_STATUSES",
    "Message",
    "MessageCreate",
    "Transaction",
    "TransactionStatus",
    "OrphanedCapture",
    "OrphanReason",
    "CreateOrderRequest",
    "CaptureOrderRequest",
]
