"""
Tests for the PayPal REST client against a local aiohttp server.
"""

import pytest
import asyncio
from decimal import Decimal
from hypothesis import given, settings, strategies as st

from aiohttp import web
from aiohttp import test_utils

from shopsphere.config import PayPalConfig
from shopsphere.errors import GatewayUnavailable
from shopsphere.services.payments import PayPalClient, format_amount


def paypal_app(requests: list, fail_capture: bool = False) -> web.Application:
    async def token(request):
        form = await request.post()
        requests.append(("token", request.headers.get("Authorization"), form.get("grant_type")))
        return web.json_response({"access_token": "test-token", "token_type": "Bearer"})

    async def create_order(request):
        body = await request.json()
        requests.append(("create", request.headers.get("Authorization"), body))
        return web.json_response({"id": "ORDER-9", "status": "CREATED"}, status=201)

    async def capture_order(request):
        requests.append(("capture", request.headers.get("Authorization"), request.match_info["order_id"]))
        if fail_capture:
            return web.json_response({"name": "UNPROCESSABLE_ENTITY"}, status=422)
        return web.json_response({
            "id": request.match_info["order_id"],
            "status": "COMPLETED",
            "purchase_units": [{"payments": {"captures": [{"amount": {"value": "12.50"}}]}}],
        })

    app = web.Application()
    app.router.add_post("/v1/oauth2/token", token)
    app.router.add_post("/v2/checkout/orders", create_order)
    app.router.add_post("/v2/checkout/orders/{order_id}/capture", capture_order)
    return app


async def with_paypal(operation, fail_capture=False):
    requests = []
    server = test_utils.TestServer(paypal_app(requests, fail_capture=fail_capture))
    await server.start_server()
    try:
        config = PayPalConfig(client_id="client", secret="secret", api_base=str(server.make_url("/")))
        async with PayPalClient(config) as client:
            result = await operation(client)
        return result, requests
    finally:
        await server.close()


def test_create_order_sends_capture_intent():
    order, requests = asyncio.run(with_paypal(lambda client: client.create_order(Decimal("40"))))

    assert order == {"id": "ORDER-9", "status": "CREATED"}
    assert requests[0][0] == "token"
    assert requests[0][1].startswith("Basic ")
    assert requests[0][2] == "client_credentials"

    kind, auth, body = requests[1]
    assert kind == "create"
    assert auth == "Bearer test-token"
    assert body == {
        "intent": "CAPTURE",
        "purchase_units": [{"amount": {"currency_code": "USD", "value": "40.00"}}],
    }


def test_capture_order_returns_payload():
    capture, requests = asyncio.run(with_paypal(lambda client: client.capture_order("ORDER-9")))

    assert capture["status"] == "COMPLETED"
    assert capture["purchase_units"][0]["payments"]["captures"][0]["amount"]["value"] == "12.50"
    assert requests[1] == ("capture", "Bearer test-token", "ORDER-9")


def test_gateway_error_status_becomes_gateway_unavailable():
    with pytest.raises(GatewayUnavailable) as exc_info:
        asyncio.run(with_paypal(lambda client: client.capture_order("ORDER-9"), fail_capture=True))

    assert exc_info.value.status_code == 502


def test_missing_credentials_fail_before_any_request():
    async def scenario():
        async with PayPalClient(PayPalConfig(api_base="http://127.0.0.1:1")) as client:
            await client.create_order(Decimal("10"))

    with pytest.raises(GatewayUnavailable) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.message == "Missing PayPal credentials"


def test_unreachable_gateway_is_reported():
    async def scenario():
        config = PayPalConfig(client_id="client", secret="secret", api_base="http://127.0.0.1:1", timeout_seconds=5)
        async with PayPalClient(config) as client:
            await client.get_access_token()

    with pytest.raises(GatewayUnavailable):
        asyncio.run(scenario())


@given(cents=st.integers(min_value=1, max_value=10_000_000))
@settings(max_examples=100)
def test_format_amount_has_two_decimals(cents):
    amount = Decimal(cents) / 100
    formatted = format_amount(amount)

    assert Decimal(formatted) == amount
    assert len(formatted.split(".")[1]) == 2
