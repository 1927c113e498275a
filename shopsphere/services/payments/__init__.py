"""Payment gateway services"""

from .paypal_client import PaymentGateway, PayPalClient, extract_captured_amount, format_amount
from .checkout import CheckoutService
from .reconciliation import ReconciliationService

__all__ = [
    "PaymentGateway",
    "PayPalClient",
    "extract_captured_amount",
    "format_amount",
    "CheckoutService",
    "ReconciliationService",
]
