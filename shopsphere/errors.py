"""
Error taxonomy for the ShopSphere marketplace API.

Every error carries a short human-readable message and the HTTP status the
API layer answers with. Routers never build error bodies themselves; the
handler registered in main.py turns any MarketplaceError into
``{"error": message}``.
"""


class MarketplaceError(Exception):
    """Base class for all errors surfaced to API callers."""

    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    """Bad input: non-positive amount, empty required field, blank message."""
    status_code = 400
    default_message = "Invalid request"


class InvalidTransition(ValidationError):
    """A negotiation status change the state machine does not allow."""
    default_message = "Invalid negotiation status change"


class NegotiationClosed(InvalidTransition):
    """The negotiation is paid or cancelled; its price and status are final."""
    default_message = "Negotiation is already closed"


class Unauthorized(MarketplaceError):
    status_code = 401
    default_message = "Please log in to continue"


class Forbidden(MarketplaceError):
    status_code = 403
    default_message = "You are not allowed to do that"


class SelfNegotiationError(MarketplaceError):
    status_code = 400
    default_message = "You cannot negotiate on your own product!"


class NotFound(MarketplaceError):
    status_code = 404
    default_message = "Not found"


class OfferExpired(MarketplaceError):
    status_code = 400
    default_message = "Final offer expired"


class GatewayUnavailable(MarketplaceError):
    """Missing payment credentials or a failed call to the payment gateway."""
    status_code = 500
    default_message = "Payment gateway unavailable"

    def __init__(self, message: str = None, status_code: int = None):
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class StorageError(MarketplaceError):
    status_code = 500
    default_message = "Storage operation failed"
