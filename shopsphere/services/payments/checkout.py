"""
Checkout bridge - creates gateway orders and turns captures into ledger state.

Payment slice of a negotiation:

    NoOrder --create_order--> OrderCreated --capture_order--> Captured

OrderCreated only exists at the gateway. Captured is the local commit of a
transaction row, product sold and negotiation paid, written as one atomic
unit. When the gateway has taken the money but that commit cannot happen,
the capture is recorded as orphaned for reconciliation instead of being lost.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from shopsphere.errors import NegotiationClosed, OfferExpired, StorageError, ValidationError
from shopsphere.models import Negotiation, OrphanReason
from shopsphere.services.negotiation import parse_price
from shopsphere.store import MarketplaceStore
from .paypal_client import PaymentGateway, extract_captured_amount

logger = logging.getLogger(__name__)


class CheckoutService:
    """Two stateless operations over the payment gateway"""

    def __init__(self, store: MarketplaceStore, gateway: PaymentGateway):
        self.store = store
        self.gateway = gateway

    async def create_order(self, amount: Any) -> Dict[str, Any]:
        """
        Create a gateway order. Nothing is stored locally.

        Args:
            amount: Order total; must be a positive number

        Returns:
            Gateway order payload, verbatim

        Raises:
            ValidationError: Amount missing or not positive (no gateway call made)
            GatewayUnavailable: Credentials missing or the gateway failed
        """
        value = parse_price(amount, field="amount")
        return await self.gateway.create_order(value)

    async def capture_order(self, order_id: str, negotiation_id: Optional[str]) -> Dict[str, Any]:
        """
        Capture an approved order and record the sale.

        Args:
            order_id: Gateway order id approved by the buyer
            negotiation_id: Negotiation being paid for

        Returns:
            Gateway capture payload, verbatim

        Raises:
            ValidationError: Missing order id (no gateway call made)
            GatewayUnavailable: The gateway failed; nothing was captured
            OfferExpired: Final offer lapsed; funds were captured and the
                capture is queued for manual reconciliation
            StorageError: Funds were captured but the ledger commit failed;
                the capture is queued for reconciliation
        """
        if not order_id or not str(order_id).strip():
            raise ValidationError("Missing order id")

        capture = await self.gateway.capture_order(order_id)
        captured_amount = extract_captured_amount(capture)

        negotiation = await self._load_negotiation(order_id, negotiation_id, capture, captured_amount)
        if negotiation is None:
            logger.warning(f"Capture {order_id} references unknown negotiation {negotiation_id}")
            await self._record_orphan(
                order_id, OrphanReason.UNKNOWN_NEGOTIATION, capture,
                negotiation_id=negotiation_id, amount=captured_amount
            )
            return capture

        now = datetime.now(timezone.utc)
        if negotiation.offer_expired(now):
            logger.warning(
                f"Capture {order_id} rejected: final offer on negotiation {negotiation.id} "
                f"expired at {negotiation.final_offer_expires_at.isoformat()}"
            )
            await self._record_orphan(
                order_id, OrphanReason.OFFER_EXPIRED, capture,
                negotiation_id=negotiation.id, amount=captured_amount
            )
            raise OfferExpired()

        if negotiation.is_terminal:
            existing = await self.store.get_transaction_by_order(order_id)
            if existing is None:
                logger.error(
                    f"Capture {order_id} arrived for {negotiation.status.value} "
                    f"negotiation {negotiation.id}"
                )
                await self._record_orphan(
                    order_id, OrphanReason.NEGOTIATION_CLOSED, capture,
                    negotiation_id=negotiation.id, amount=captured_amount
                )
            return capture

        amount = captured_amount or negotiation.agreed_price
        try:
            transaction = await self.store.commit_capture(negotiation, order_id, amount, now)
        except NegotiationClosed:
            logger.error(f"Capture {order_id} lost the race: negotiation {negotiation.id} closed first")
            await self._record_orphan(
                order_id, OrphanReason.NEGOTIATION_CLOSED, capture,
                negotiation_id=negotiation.id, amount=amount
            )
            return capture
        except Exception as e:
            logger.error(f"Ledger commit failed for captured order {order_id}: {e}")
            await self._record_orphan(
                order_id, OrphanReason.COMMIT_FAILED, capture,
                negotiation_id=negotiation.id, amount=amount
            )
            raise StorageError(
                "Payment was captured but could not be recorded yet; it will be reconciled"
            ) from e

        logger.info(
            f"Committed capture {order_id}: transaction {transaction.id} for {transaction.amount}, "
            f"negotiation {negotiation.id} paid, product {negotiation.product_id} sold"
        )
        return capture

    async def _load_negotiation(
        self,
        order_id: str,
        negotiation_id: Optional[str],
        capture: Dict[str, Any],
        captured_amount: Optional[Decimal]
    ) -> Optional[Negotiation]:
        if not negotiation_id:
            return None
        try:
            return await self.store.get_negotiation(negotiation_id)
        except Exception as e:
            logger.error(f"Could not load negotiation {negotiation_id} for capture {order_id}: {e}")
            await self._record_orphan(
                order_id, OrphanReason.COMMIT_FAILED, capture,
                negotiation_id=negotiation_id, amount=captured_amount
            )
            raise StorageError(
                "Payment was captured but could not be recorded yet; it will be reconciled"
            ) from e

    async def _record_orphan(
        self,
        order_id: str,
        reason: OrphanReason,
        capture: Dict[str, Any],
        negotiation_id: Optional[str] = None,
        amount: Optional[Decimal] = None
    ) -> None:
        try:
            orphan = await self.store.record_orphaned_capture(
                order_id=order_id,
                reason=reason,
                payload=capture,
                negotiation_id=negotiation_id,
                amount=amount
            )
            logger.error(f"Recorded orphaned capture {orphan.id} for order {order_id}: {reason.value}")
        except Exception as e:
            # Last resort: the log line is the only durable trace left
            logger.critical(
                f"Could not record orphaned capture for order {order_id} "
                f"(negotiation={negotiation_id}, amount={amount}, reason={reason.value}): {e}; "
                f"payload={capture}"
            )
