"""Product catalog services"""

from .listing_service import ListingService

__all__ = ["ListingService"]
