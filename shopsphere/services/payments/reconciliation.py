"""
Reconciliation of captures the ledger does not reflect yet.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from shopsphere.error_handling import ErrorHandler
from shopsphere.errors import NegotiationClosed
from shopsphere.models import OrphanedCapture, OrphanReason
from shopsphere.store import MarketplaceStore

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Replay failed ledger commits and surface the rest for manual handling"""

    def __init__(self, store: MarketplaceStore, error_handler: ErrorHandler = None):
        self.store = store
        self.error_handler = error_handler or ErrorHandler()

    async def pending(self, limit: int = None) -> List[OrphanedCapture]:
        orphans = await self.store.list_orphaned_captures(unresolved_only=True)
        return orphans[:limit] if limit else orphans

    async def replay(self, orphan: OrphanedCapture) -> bool:
        """
        Re-apply the ledger commit for a capture whose commit failed.

        Returns:
            True if the capture is now recorded and the orphan resolved,
            False if it needs a human (expired offer or unknown negotiation)

        Raises:
            NegotiationClosed: The negotiation was paid or cancelled under
                another order in the meantime
        """
        if orphan.reason != OrphanReason.COMMIT_FAILED or not orphan.negotiation_id:
            return False

        negotiation = await self.store.get_negotiation(orphan.negotiation_id)
        if negotiation is None:
            logger.warning(f"Orphan {orphan.id} points at missing negotiation {orphan.negotiation_id}")
            return False

        transaction = await self.store.get_transaction_by_order(orphan.order_id)
        if transaction is None:
            amount = orphan.amount or negotiation.agreed_price
            transaction = await self.store.commit_capture(
                negotiation,
                orphan.order_id,
                amount,
                orphan.created_at
            )
        await self.store.resolve_orphaned_capture(orphan.id, datetime.now(timezone.utc))
        logger.info(f"Reconciled order {orphan.order_id} as transaction {transaction.id}")
        return True

    async def reconcile_all(self, limit: int = None) -> Dict[str, Any]:
        """
        Replay every pending orphan with retry on transient failures.

        Returns:
            Summary with the order ids replayed, left for manual handling and
            failed after retries, plus recovery suggestions for the manual ones
        """
        summary = {"replayed": [], "manual": [], "failed": [], "suggestions": []}

        for orphan in await self.pending(limit):
            try:
                replayed = await self.error_handler.retry_with_backoff(self.replay, orphan)
            except NegotiationClosed:
                logger.warning(f"Order {orphan.order_id} cannot be replayed: negotiation {orphan.negotiation_id} is closed")
                summary["manual"].append(orphan.order_id)
                summary["suggestions"].append(
                    self.error_handler.describe_orphan(OrphanReason.NEGOTIATION_CLOSED.value, orphan.order_id)
                )
                continue
            except Exception as e:
                logger.error(f"Giving up on order {orphan.order_id}: {e}")
                summary["failed"].append(orphan.order_id)
                continue

            if replayed:
                summary["replayed"].append(orphan.order_id)
            else:
                summary["manual"].append(orphan.order_id)
                summary["suggestions"].append(
                    self.error_handler.describe_orphan(orphan.reason.value, orphan.order_id)
                )

        logger.info(
            f"Reconciliation finished: {len(summary['replayed'])} replayed, "
            f"{len(summary['manual'])} manual, {len(summary['failed'])} failed"
        )
        return summary
