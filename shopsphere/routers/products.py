"""
Product listing routes.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from typing import List, Optional

from shopsphere.errors import MarketplaceError
from shopsphere.identity import Identity
from shopsphere.models import Product, ProductCreate, RecentView
from shopsphere.services.catalog import ListingService
from .dependencies import get_identity, get_listing_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/products", response_model=List[Product])
async def browse_products(service: ListingService = Depends(get_listing_service)):
    """
    List active products, newest first.
    """
    try:
        return await service.browse_active()
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to list products: {e}")
        raise HTTPException(status_code=500, detail="Failed to load products")


@router.post("/products", response_model=Product, status_code=201)
async def create_product(
    listing: ProductCreate,
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """
    Publish a new listing owned by the caller.

    Args:
        listing: Title, price, description, location, images and negotiability

    Returns:
        The created active product
    """
    try:
        return await service.create_listing(identity, listing)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to create product: {e}")
        raise HTTPException(status_code=500, detail="Failed to create listing")


@router.get("/products/mine", response_model=List[Product])
async def my_products(
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """
    Listings owned by the caller, sold ones included.
    """
    try:
        return await service.list_my_listings(identity)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to list seller products: {e}")
        raise HTTPException(status_code=500, detail="Failed to load your listings")


@router.get("/products/{product_id}", response_model=Product)
async def get_product(
    product_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """
    Get a single product. Signed-in callers get it added to their recent views.
    """
    try:
        product = await service.get_product(product_id)
        await service.record_view(identity, product.id)
        return product
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to get product {product_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load product")


@router.post("/products/{product_id}/sold", response_model=Product)
async def mark_product_sold(
    product_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """
    Seller marks a listing sold outside the payment flow.
    """
    try:
        return await service.mark_sold(identity, product_id)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to mark product {product_id} sold: {e}")
        raise HTTPException(status_code=500, detail="Failed to update listing")


@router.delete("/products/{product_id}")
async def delete_product(
    product_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """
    Delete a listing. Its negotiations and transactions are kept.
    """
    try:
        await service.delete_listing(identity, product_id)
        return {"message": "Listing deleted", "id": product_id}
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to delete product {product_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete listing")


@router.get("/recent-views", response_model=List[RecentView])
async def recent_views(
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """
    Products the caller looked at, most recent first.
    """
    try:
        return await service.recent_views(identity)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to list recent views: {e}")
        raise HTTPException(status_code=500, detail="Failed to load recent views")
