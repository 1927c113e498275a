"""
Profile routes.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException
from typing import Optional

from shopsphere.errors import MarketplaceError
from shopsphere.identity import Identity
from shopsphere.models import ModeUpdate, Profile
from shopsphere.services.catalog import ListingService
from .dependencies import get_identity, get_listing_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/profile", response_model=Profile)
async def get_profile(
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """Caller's profile, created on first access."""
    try:
        return await service.get_profile(identity)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to load profile: {e}")
        raise HTTPException(status_code=500, detail="Failed to load profile")


@router.put("/profile/mode", response_model=Profile)
async def set_profile_mode(
    update: ModeUpdate,
    identity: Optional[Identity] = Depends(get_identity),
    service: ListingService = Depends(get_listing_service)
):
    """Switch the dashboard between buyer and seller views."""
    try:
        return await service.set_mode(identity, update.mode)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to update profile mode: {e}")
        raise HTTPException(status_code=500, detail="Failed to update profile")
