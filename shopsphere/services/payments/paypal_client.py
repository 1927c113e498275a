"""
PayPal Orders API client - creates and captures checkout orders.
Uses the OAuth2 client credentials flow with a fresh token per operation.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

import aiohttp

from shopsphere.config import PayPalConfig
from shopsphere.errors import GatewayUnavailable

logger = logging.getLogger(__name__)


class PaymentGateway(ABC):
    """Remote order/capture service used by the checkout bridge"""

    @abstractmethod
    async def create_order(self, amount: Decimal) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        ...

    async def close(self) -> None:
        """Release transport resources. No-op by default."""


def format_amount(amount: Decimal) -> str:
    """PayPal expects a string with exactly two decimals."""
    return str(Decimal(amount).quantize(Decimal("0.01")))


def extract_captured_amount(capture: Dict[str, Any]) -> Optional[Decimal]:
    """
    Read purchase_units[0].payments.captures[0].amount.value from a capture.

    Returns:
        The captured amount, or None when absent or not a positive number
    """
    try:
        value = capture["purchase_units"][0]["payments"]["captures"][0]["amount"]["value"]
        amount = Decimal(str(value))
    except (KeyError, IndexError, TypeError, InvalidOperation, ValueError):
        return None
    if not amount.is_finite() or amount <= 0:
        return None
    return amount


class PayPalClient(PaymentGateway):
    """
    PayPal REST client on a shared aiohttp session.

    Every failure (missing credentials, transport error, non-2xx answer)
    surfaces as GatewayUnavailable.
    """

    TOKEN_PATH = "/v1/oauth2/token"
    ORDERS_PATH = "/v2/checkout/orders"

    def __init__(self, config: PayPalConfig, session: Optional[aiohttp.ClientSession] = None):
        self.config = config
        self.base_url = config.api_base.rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        """Explicitly close the session when done"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def _ensure_session(self):
        """Ensure we have an open session"""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True

    def _ensure_credentials(self):
        if not self.config.has_credentials:
            logger.error("PayPal credentials not configured. Set PAYPAL_CLIENT_ID and PAYPAL_SECRET")
            raise GatewayUnavailable("Missing PayPal credentials")

    async def get_access_token(self) -> str:
        """Exchange client credentials for a short-lived bearer token."""
        self._ensure_credentials()
        await self._ensure_session()

        auth = aiohttp.BasicAuth(self.config.client_id, self.config.secret)
        result = await self._request(
            "POST",
            self.TOKEN_PATH,
            auth=auth,
            data={"grant_type": "client_credentials"},
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        token = result.get("access_token")
        if not token:
            raise GatewayUnavailable("PayPal did not return an access token", status_code=502)
        return token

    async def create_order(self, amount: Decimal) -> Dict[str, Any]:
        """
        Create a CAPTURE-intent order for the amount.

        Args:
            amount: Positive order total in the configured currency

        Returns:
            The order object exactly as PayPal returned it
        """
        token = await self.get_access_token()
        body = {
            "intent": "CAPTURE",
            "purchase_units": [{
                "amount": {
                    "currency_code": self.config.currency,
                    "value": format_amount(amount)
                }
            }]
        }
        order = await self._request(
            "POST",
            self.ORDERS_PATH,
            json=body,
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json"
            }
        )
        logger.info(f"[PAYPAL] Created order {order.get('id')} for {format_amount(amount)} {self.config.currency}")
        return order

    async def capture_order(self, order_id: str) -> Dict[str, Any]:
        """
        Capture a buyer-approved order.

        Returns:
            The capture object exactly as PayPal returned it
        """
        token = await self.get_access_token()
        capture = await self._request(
            "POST",
            f"{self.ORDERS_PATH}/{order_id}/capture",
            headers={
                "Authorization": f"Bearer {token}",
                "Content-Type": "application/json"
            }
        )
        logger.info(f"[PAYPAL] Captured order {order_id}: status={capture.get('status')}")
        return capture

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with self._session.request(method, url, **kwargs) as response:
                if response.status >= 400:
                    error_text = await response.text()
                    logger.error(f"PayPal API error: {response.status} - {error_text}")
                    raise GatewayUnavailable(
                        f"PayPal request failed with status {response.status}",
                        status_code=502
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"PayPal request to {path} failed: {e}")
            raise GatewayUnavailable("Could not reach PayPal") from e
