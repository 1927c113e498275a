"""
Request-scoped dependencies shared by the routers.

Backends live on ``app.state`` (set up by the lifespan in main.py); the
caller's identity is resolved from the bearer token once per request and
handed to the services explicitly.
"""

import logging
from typing import Optional

from fastapi import Depends, Header, Request

from shopsphere.errors import StorageError
from shopsphere.identity import Identity
from shopsphere.services.catalog import ListingService
from shopsphere.services.messaging import ChatService
from shopsphere.services.negotiation import NegotiationManager
from shopsphere.services.payments import CheckoutService

logger = logging.getLogger(__name__)


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_identity(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> Optional[Identity]:
    """Identity behind the bearer token, or None for anonymous callers."""
    token = _bearer_token(authorization)
    if token is None:
        return None
    try:
        return await request.app.state.sessions.resolve(token)
    except Exception as e:
        logger.error(f"Session lookup failed: {e}")
        raise StorageError("Could not verify your session")


def get_listing_service(request: Request) -> ListingService:
    return ListingService(request.app.state.store)


def get_negotiation_manager(request: Request) -> NegotiationManager:
    return NegotiationManager(request.app.state.store)


def get_chat_service(request: Request) -> ChatService:
    return ChatService(request.app.state.store, request.app.state.channel)


def get_checkout_service(request: Request) -> CheckoutService:
    return CheckoutService(request.app.state.store, request.app.state.gateway)
