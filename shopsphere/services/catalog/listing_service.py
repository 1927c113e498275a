"""
Listing service - Product listings, recent views and profile preferences.

A listing is created active and moves to sold exactly once, either when a
capture commits or when the seller marks it by hand. Deleting a listing
removes the product and the recent-view markers pointing at it, but leaves
its negotiations, messages and transactions in place.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from shopsphere.errors import Forbidden, NotFound, ValidationError
from shopsphere.identity import Identity, require_identity
from shopsphere.models import (
    Product,
    ProductCreate,
    Profile,
    ProfileMode,
    RecentView,
)
from shopsphere.services.negotiation import parse_price
from shopsphere.store import MarketplaceStore

logger = logging.getLogger(__name__)

REQUIRED_TEXT_FIELDS = ("title", "description", "location")


class ListingService:
    """Create, browse and retire product listings"""

    def __init__(self, store: MarketplaceStore):
        self.store = store

    async def create_listing(self, identity: Optional[Identity], listing: ProductCreate) -> Product:
        """
        Publish a new active listing owned by the caller.

        Raises:
            Unauthorized: No authenticated seller
            ValidationError: Blank title/description/location or non-positive price
        """
        seller = require_identity(identity)

        for field in REQUIRED_TEXT_FIELDS:
            value = getattr(listing, field)
            if value is None or not value.strip():
                raise ValidationError(f"Missing {field}")
        price = parse_price(listing.price)

        cleaned = listing.model_copy(update={
            "title": listing.title.strip(),
            "description": listing.description.strip(),
            "location": listing.location.strip(),
            "price": price,
            "images": [url for url in listing.images if url and url.strip()],
        })

        await self.store.ensure_profile(seller.user_id, seller.email)
        product = await self.store.insert_product(seller.user_id, cleaned)
        logger.info(f"Listed product {product.id} '{product.title}' at {product.price} by {seller.user_id}")
        return product

    async def get_product(self, product_id: str) -> Product:
        product = await self.store.get_product(product_id)
        if product is None:
            raise NotFound("Product not found")
        return product

    async def browse_active(self) -> List[Product]:
        """Active listings, newest first."""
        return await self.store.list_active_products()

    async def list_my_listings(self, identity: Optional[Identity]) -> List[Product]:
        seller = require_identity(identity)
        return await self.store.list_products_by_seller(seller.user_id)

    async def mark_sold(self, identity: Optional[Identity], product_id: str) -> Product:
        """
        Seller marks a listing sold outside the payment flow.

        Marking an already sold listing returns it unchanged.
        """
        product = await self._get_owned(identity, product_id)
        if not product.is_active:
            return product
        updated = await self.store.mark_product_sold(product.id, datetime.now(timezone.utc))
        logger.info(f"Product {product.id} marked sold by seller")
        return updated or product

    async def delete_listing(self, identity: Optional[Identity], product_id: str) -> None:
        """Remove a listing and the recent views that reference it."""
        product = await self._get_owned(identity, product_id)
        removed_views = await self.store.delete_recent_views_for_product(product.id)
        await self.store.delete_product(product.id)
        logger.info(f"Deleted product {product.id} ({removed_views} recent views cleared)")

    async def record_view(self, identity: Optional[Identity], product_id: str) -> Optional[RecentView]:
        """Remember that a signed-in user opened a listing. Anonymous views are not tracked."""
        if identity is None:
            return None
        return await self.store.upsert_recent_view(
            identity.user_id, product_id, datetime.now(timezone.utc)
        )

    async def recent_views(self, identity: Optional[Identity]) -> List[RecentView]:
        user = require_identity(identity)
        return await self.store.list_recent_views(user.user_id)

    async def get_profile(self, identity: Optional[Identity]) -> Profile:
        user = require_identity(identity)
        return await self.store.ensure_profile(user.user_id, user.email)

    async def set_mode(self, identity: Optional[Identity], mode: ProfileMode) -> Profile:
        """Switch the dashboard between buyer and seller views."""
        user = require_identity(identity)
        await self.store.ensure_profile(user.user_id, user.email)
        profile = await self.store.update_profile_mode(user.user_id, mode)
        logger.info(f"Profile {user.user_id} switched to {mode.value} mode")
        return profile

    async def _get_owned(self, identity: Optional[Identity], product_id: str) -> Product:
        user = require_identity(identity)
        product = await self.get_product(product_id)
        if product.seller_id != user.user_id:
            raise Forbidden("Only the seller can change this listing")
        return product
