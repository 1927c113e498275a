"""
Retry policy and recovery notes for payment reconciliation.

Reconciliation replays ledger commits that failed after PayPal already
captured funds. Storage and gateway outages are worth waiting out; anything
else (bad data, a closed negotiation) is surfaced on the first attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Tuple, Type

from shopsphere.errors import GatewayUnavailable, StorageError

logger = logging.getLogger(__name__)


TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (StorageError, GatewayUnavailable)

ORPHAN_SUGGESTIONS: Dict[str, List[str]] = {
    "offer_expired": [
        "Funds were captured after the final offer expired",
        "Refund the order from the PayPal dashboard",
        "Or extend the offer and replay the capture by hand",
    ],
    "unknown_negotiation": [
        "The capture referenced a negotiation that does not exist",
        "Look up the buyer in the PayPal order details",
        "Refund the order or attach it to the right negotiation",
    ],
    "negotiation_closed": [
        "The negotiation was already paid or cancelled when funds were captured",
        "Check whether the buyer paid twice",
        "Refund the duplicate order from the PayPal dashboard",
    ],
}

DEFAULT_SUGGESTIONS: List[str] = [
    "Check database connectivity and rerun reconciliation",
    "Replaying a commit for the same order id is a no-op",
]


@dataclass
class RetryConfig:
    """
    How often and how patiently a reconciliation step is retried.

    max_retries counts every attempt, including the first. The wait before
    attempt n+2 is base_delay_seconds * 2**n.
    """
    max_retries: int = 3
    base_delay_seconds: float = 2.0
    retry_on: Tuple[Type[BaseException], ...] = field(default=TRANSIENT_ERRORS)

    def get_backoff_delay(self, attempt: int) -> float:
        return self.base_delay_seconds * (2 ** attempt)

    def is_retryable(self, error: BaseException) -> bool:
        return isinstance(error, self.retry_on)


class ErrorHandler:
    """Runs reconciliation steps under a RetryConfig and explains orphans."""

    def __init__(self, max_retries: int = 3, base_delay_seconds: float = 2.0):
        self.config = RetryConfig(
            max_retries=max_retries,
            base_delay_seconds=base_delay_seconds
        )

    async def retry_with_backoff(
        self,
        operation: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Any:
        """
        Await operation(*args, **kwargs), retrying transient failures.

        Raises the first non-transient error immediately, or the error from
        the final attempt once max_retries attempts have failed.
        """
        name = getattr(operation, "__name__", repr(operation))
        attempts = self.config.max_retries

        for attempt in range(attempts):
            try:
                return await operation(*args, **kwargs)
            except Exception as e:
                self._report_failure(name, attempt + 1, e, args)

                if not self.config.is_retryable(e):
                    raise
                if attempt + 1 >= attempts:
                    logger.error(f"Giving up on {name} after {attempts} attempts: {e}")
                    raise

                delay = self.config.get_backoff_delay(attempt)
                logger.info(f"Retrying {name} in {delay:.1f}s")
                await asyncio.sleep(delay)

    def describe_orphan(self, reason: str, order_id: str) -> Dict[str, Any]:
        """
        Build the operator note for a capture the ledger does not reflect.

        The result carries order_id, reason, a UTC timestamp and a list of
        recovery_suggestions.
        """
        logger.warning(f"Orphaned capture {order_id} needs attention: {reason}")
        return {
            "order_id": order_id,
            "reason": reason,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "recovery_suggestions": list(ORPHAN_SUGGESTIONS.get(reason, DEFAULT_SUGGESTIONS)),
        }

    def _report_failure(self, name: str, attempt: int, error: Exception, args: tuple) -> None:
        logger.error(
            f"{name} failed (attempt {attempt}/{self.config.max_retries}): "
            f"{type(error).__name__}: {error}"
        )
        if args:
            logger.debug(f"{name} called with {args!r}")
