"""
PayPal checkout routes.

Both endpoints return the gateway's payload verbatim on success and
``{"error": message}`` otherwise.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from shopsphere.errors import MarketplaceError
from shopsphere.models import CaptureOrderRequest, CreateOrderRequest
from shopsphere.services.payments import CheckoutService
from .dependencies import get_checkout_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/paypal/create-order")
async def create_order(
    body: CreateOrderRequest,
    checkout: CheckoutService = Depends(get_checkout_service)
):
    """
    Create a PayPal order for the given amount.

    Args:
        body: ``{"amount": <positive number>}``

    Returns:
        PayPal order object (the widget needs its ``id``)
    """
    try:
        return await checkout.create_order(body.amount)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to create PayPal order: {e}")
        raise HTTPException(status_code=500, detail="Failed to create order")


@router.post("/paypal/capture-order")
async def capture_order(
    body: CaptureOrderRequest,
    checkout: CheckoutService = Depends(get_checkout_service)
):
    """
    Capture an approved PayPal order and record the sale.

    Args:
        body: ``{"orderID": ..., "negotiationId": ...}``

    Returns:
        PayPal capture object
    """
    try:
        return await checkout.capture_order(body.orderID, body.negotiationId)
    except MarketplaceError:
        raise
    except Exception as e:
        logger.error(f"Failed to capture PayPal order {body.orderID}: {e}")
        raise HTTPException(status_code=500, detail="Failed to capture order")


@router.get("/payments/config")
async def payments_config(request: Request):
    """Public settings for the front-end payment widget."""
    paypal = request.app.state.settings.paypal
    return {
        "client_id": paypal.public_client_id,
        "currency": paypal.currency,
    }
