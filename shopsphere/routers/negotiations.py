"""
Negotiation routes - start, inspect and bargain on a product.
"""

import logging
from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException, Response
from typing import List, Optional

from shopsphere.errors import MarketplaceError
from shopsphere.identity import Identity
from shopsphere.models import (
    FinalOfferRequest,
    Negotiation,
    NegotiationSummary,
    PriceProposal,
)
from shopsphere.services.negotiation import NegotiationManager
from .dependencies import get_identity, get_negotiation_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/products/{product_id}/negotiations", response_model=Negotiation)
async def start_negotiation(
    product_id: str,
    response: Response,
    identity: Optional[Identity] = Depends(get_identity),
    manager: NegotiationManager = Depends(get_negotiation_manager)
):
    """
    Open the caller's negotiation on a product.

    Answers 201 when the negotiation was created by this call and 200 when an
    existing one was resumed.
    """
    try:
        negotiation, created = await manager.start_or_resume(identity, product_id)
        response.status_code = 201 if created else 200
        return negotiation
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to start negotiation on product {product_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to start negotiation")


@router.get("/negotiations", response_model=List[NegotiationSummary])
async def list_negotiations(
    identity: Optional[Identity] = Depends(get_identity),
    manager: NegotiationManager = Depends(get_negotiation_manager)
):
    """
    Negotiations the caller is buyer or seller of, most recent first.
    """
    try:
        return await manager.list_for_user(identity)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to list negotiations: {e}")
        raise HTTPException(status_code=500, detail="Failed to load negotiations")


@router.get("/negotiations/{negotiation_id}", response_model=Negotiation)
async def get_negotiation(
    negotiation_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    manager: NegotiationManager = Depends(get_negotiation_manager)
):
    """
    Get a single negotiation by ID.
    """
    try:
        return await manager.get_for_party(identity, negotiation_id)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to get negotiation {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load negotiation")


@router.post("/negotiations/{negotiation_id}/pitch", response_model=Negotiation)
async def pitch_price(
    negotiation_id: str,
    proposal: PriceProposal,
    identity: Optional[Identity] = Depends(get_identity),
    manager: NegotiationManager = Depends(get_negotiation_manager)
):
    """
    Propose a new price from either side.

    Args:
        negotiation_id: Negotiation ID
        proposal: New pitch price

    Returns:
        Updated negotiation
    """
    try:
        return await manager.propose_price(identity, negotiation_id, proposal.price)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to pitch on negotiation {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update price")


@router.post("/negotiations/{negotiation_id}/final-offer", response_model=Negotiation)
async def final_offer(
    negotiation_id: str,
    offer: FinalOfferRequest,
    identity: Optional[Identity] = Depends(get_identity),
    manager: NegotiationManager = Depends(get_negotiation_manager)
):
    """
    Seller sets a final price payable until it expires.
    """
    try:
        return await manager.make_final_offer(
            identity,
            negotiation_id,
            offer.price,
            timedelta(minutes=offer.valid_for_minutes)
        )
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to set final offer on negotiation {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to make final offer")


@router.post("/negotiations/{negotiation_id}/cancel", response_model=Negotiation)
async def cancel_negotiation(
    negotiation_id: str,
    identity: Optional[Identity] = Depends(get_identity),
    manager: NegotiationManager = Depends(get_negotiation_manager)
):
    """
    Either party walks away from the negotiation.
    """
    try:
        return await manager.cancel(identity, negotiation_id)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to cancel negotiation {negotiation_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to cancel negotiation")
