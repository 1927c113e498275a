"""Payment ledger data models"""

from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional


class TransactionStatus(str, Enum):
    """Ledger entry status"""
    CAPTURED = "captured"


class Transaction(BaseModel):
    """Append-only ledger entry written once per successful capture"""
    id: str
    negotiation_id: str
    buyer_id: str
    seller_id: str
    amount: Decimal
    order_id: str
    status: TransactionStatus = TransactionStatus.CAPTURED
    created_at: datetime

    class Config:
        from_attributes = True


class OrphanReason(str, Enum):
    """Why a gateway capture has no matching local ledger entry"""
    UNKNOWN_NEGOTIATION = "unknown_negotiation"
    OFFER_EXPIRED = "offer_expired"
    COMMIT_FAILED = "commit_failed"
    NEGOTIATION_CLOSED = "negotiation_closed"


class OrphanedCapture(BaseModel):
    """Funds captured at the gateway that the local ledger does not reflect"""
    id: str
    order_id: str
    negotiation_id: Optional[str] = None
    amount: Optional[Decimal] = None
    reason: OrphanReason
    payload: Dict[str, Any] = Field(default_factory=dict)
    resolved_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CreateOrderRequest(BaseModel):
    """Body of the create-order endpoint"""
    amount: Any = None


class CaptureOrderRequest(BaseModel):
    """Body of the capture-order endpoint"""
    orderID: Optional[str] = None
    negotiationId: Optional[str] = None
