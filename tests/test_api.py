"""
HTTP tests for the ShopSphere API on the in-memory backend.
"""

from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from shopsphere.config import AppSettings, PayPalConfig
from shopsphere.errors import GatewayUnavailable
from shopsphere.identity import Identity, StaticSessionResolver
from shopsphere.main import create_app
from shopsphere.services.payments import PaymentGateway


SELLER_HEADERS = {"Authorization": "Bearer seller-token"}
BUYER_HEADERS = {"Authorization": "Bearer buyer-token"}
STRANGER_HEADERS = {"Authorization": "Bearer stranger-token"}


def capture_payload(order_id: str, amount: str) -> dict:
    return {
        "id": order_id,
        "status": "COMPLETED",
        "purchase_units": [{"payments": {"captures": [{"amount": {"currency_code": "USD", "value": amount}}]}}],
    }


@pytest.fixture
def gateway():
    gateway = AsyncMock(spec=PaymentGateway)
    gateway.create_order.return_value = {"id": "ORDER-API", "status": "CREATED"}
    gateway.capture_order.return_value = capture_payload("ORDER-API", "40.00")
    return gateway


@pytest.fixture
def client(gateway):
    sessions = StaticSessionResolver({
        "seller-token": Identity(user_id="seller-a", email="seller@example.com"),
        "buyer-token": Identity(user_id="buyer-a", email="buyer@example.com"),
        "stranger-token": Identity(user_id="stranger-a"),
    })
    settings = AppSettings(
        storage_backend="memory",
        paypal=PayPalConfig(public_client_id="public-client", currency="USD"),
    )
    app = create_app(settings=settings, gateway=gateway, sessions=sessions)
    with TestClient(app) as test_client:
        yield test_client


def create_listing(client, **overrides):
    body = {
        "title": "Mountain bike",
        "price": 50,
        "description": "Front suspension",
        "location": "Boise, ID",
        "is_negotiable": True,
        "images": ["https://img.example.com/bike.jpg"],
    }
    body.update(overrides)
    response = client.post("/api/products", json=body, headers=SELLER_HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_and_browse_listing(client):
    product = create_listing(client)

    assert product["status"] == "active"
    assert Decimal(str(product["price"])) == Decimal("50")

    listed = client.get("/api/products").json()
    assert [p["id"] for p in listed] == [product["id"]]

    mine = client.get("/api/products/mine", headers=SELLER_HEADERS).json()
    assert [p["id"] for p in mine] == [product["id"]]


def test_listing_validation_and_auth_errors(client):
    response = client.post("/api/products", json={
        "title": "Bike", "price": 50, "description": "x", "location": "y",
    })
    assert response.status_code == 401
    assert response.json() == {"error": "Please log in to continue"}

    response = client.post("/api/products", json={
        "title": "   ", "price": 50, "description": "x", "location": "y",
    }, headers=SELLER_HEADERS)
    assert response.status_code == 400
    assert "error" in response.json()

    response = client.post("/api/products", json={"title": "Bike"}, headers=SELLER_HEADERS)
    assert response.status_code == 400

    response = client.get("/api/products/unknown")
    assert response.status_code == 404


def test_unknown_token_is_anonymous(client):
    response = client.get("/api/profile", headers={"Authorization": "Bearer nobody"})
    assert response.status_code == 401


def test_product_view_is_recorded_for_signed_in_users(client):
    product = create_listing(client)

    client.get(f"/api/products/{product['id']}")
    client.get(f"/api/products/{product['id']}", headers=BUYER_HEADERS)

    views = client.get("/api/recent-views", headers=BUYER_HEADERS).json()
    assert [v["product_id"] for v in views] == [product["id"]]
    assert client.get("/api/recent-views", headers=SELLER_HEADERS).json() == []


def test_self_negotiation_is_rejected(client):
    product = create_listing(client)

    response = client.post(f"/api/products/{product['id']}/negotiations", headers=SELLER_HEADERS)
    assert response.status_code == 400
    assert response.json() == {"error": "You cannot negotiate on your own product!"}


def test_start_negotiation_is_idempotent(client):
    product = create_listing(client)

    first = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS)
    second = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS)

    assert first.status_code == 201
    assert second.status_code == 200
    assert first.json()["id"] == second.json()["id"]
    assert first.json()["status"] == "pending"

    summaries = client.get("/api/negotiations", headers=SELLER_HEADERS).json()
    assert [s["id"] for s in summaries] == [first.json()["id"]]
    assert summaries[0]["product_title"] == "Mountain bike"


def test_negotiation_price_flow(client):
    product = create_listing(client)
    negotiation = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS).json()
    path = f"/api/negotiations/{negotiation['id']}"

    pitched = client.post(f"{path}/pitch", json={"price": 42}, headers=BUYER_HEADERS)
    assert pitched.status_code == 200
    assert pitched.json()["status"] == "active"

    assert client.post(f"{path}/pitch", json={"price": 0}, headers=BUYER_HEADERS).status_code == 400
    assert client.post(f"{path}/final-offer", json={"price": 40}, headers=BUYER_HEADERS).status_code == 403

    offer = client.post(f"{path}/final-offer", json={"price": 40, "valid_for_minutes": 30}, headers=SELLER_HEADERS)
    assert offer.status_code == 200
    assert offer.json()["final_offer_expires_at"] is not None

    assert client.get(path, headers=STRANGER_HEADERS).status_code == 403

    cancelled = client.post(f"{path}/cancel", headers=BUYER_HEADERS)
    assert cancelled.json()["status"] == "cancelled"
    assert client.post(f"{path}/cancel", headers=BUYER_HEADERS).status_code == 400


def test_messages_round_trip(client):
    product = create_listing(client)
    negotiation = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS).json()
    path = f"/api/negotiations/{negotiation['id']}/messages"

    sent = client.post(path, json={"content": "would you do $40?"}, headers=BUYER_HEADERS)
    assert sent.status_code == 201
    assert sent.json()["sender_id"] == "buyer-a"
    assert sent.json()["receiver_id"] == "seller-a"

    assert client.post(path, json={"content": "  "}, headers=BUYER_HEADERS).status_code == 400
    assert client.post(path, json={"content": "hi"}, headers=STRANGER_HEADERS).status_code == 403
    assert client.get(f"/api/negotiations/{negotiation['id']}/stream", headers=STRANGER_HEADERS).status_code == 403

    history = client.get(path, headers=SELLER_HEADERS).json()
    assert [m["content"] for m in history] == ["would you do $40?"]


@pytest.mark.parametrize("amount", [0, -5, None, "abc"])
def test_create_order_rejects_bad_amounts(client, gateway, amount):
    response = client.post("/api/paypal/create-order", json={"amount": amount})

    assert response.status_code == 400
    assert "error" in response.json()
    gateway.create_order.assert_not_called()


def test_create_order_returns_gateway_order(client, gateway):
    response = client.post("/api/paypal/create-order", json={"amount": 40})

    assert response.status_code == 200
    assert response.json() == {"id": "ORDER-API", "status": "CREATED"}


def test_gateway_failure_is_reported(client, gateway):
    gateway.create_order.side_effect = GatewayUnavailable("Missing PayPal credentials")

    response = client.post("/api/paypal/create-order", json={"amount": 40})

    assert response.status_code == 500
    assert response.json() == {"error": "Missing PayPal credentials"}


def test_capture_order_completes_the_sale(client, gateway):
    product = create_listing(client)
    negotiation = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS).json()

    response = client.post("/api/paypal/capture-order", json={
        "orderID": "ORDER-API",
        "negotiationId": negotiation["id"],
    })

    assert response.status_code == 200
    assert response.json() == capture_payload("ORDER-API", "40.00")

    sold = client.get(f"/api/products/{product['id']}").json()
    assert sold["status"] == "sold"
    assert sold["sold_at"] is not None

    paid = client.get(f"/api/negotiations/{negotiation['id']}", headers=BUYER_HEADERS).json()
    assert paid["status"] == "paid"


def test_capture_after_expiry_is_rejected(client, gateway):
    product = create_listing(client)
    negotiation = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS).json()
    client.post(
        f"/api/negotiations/{negotiation['id']}/final-offer",
        json={"price": 40, "valid_for_minutes": 1},
        headers=SELLER_HEADERS,
    )
    store = client.app.state.store
    seq, current = store.negotiations[negotiation["id"]]
    store.negotiations[negotiation["id"]] = (seq, current.model_copy(update={
        "final_offer_expires_at": current.final_offer_expires_at.replace(year=2000),
    }))

    response = client.post("/api/paypal/capture-order", json={
        "orderID": "ORDER-API",
        "negotiationId": negotiation["id"],
    })

    assert response.status_code == 400
    assert response.json() == {"error": "Final offer expired"}
    assert client.get(f"/api/products/{product['id']}").json()["status"] == "active"


def test_capture_requires_order_id(client, gateway):
    response = client.post("/api/paypal/capture-order", json={"negotiationId": "n"})

    assert response.status_code == 400
    gateway.capture_order.assert_not_called()


def test_delete_listing_keeps_negotiation(client):
    product = create_listing(client)
    negotiation = client.post(f"/api/products/{product['id']}/negotiations", headers=BUYER_HEADERS).json()

    assert client.delete(f"/api/products/{product['id']}", headers=BUYER_HEADERS).status_code == 403
    assert client.delete(f"/api/products/{product['id']}", headers=SELLER_HEADERS).status_code == 200
    assert client.get(f"/api/products/{product['id']}").status_code == 404
    assert client.get(f"/api/negotiations/{negotiation['id']}", headers=BUYER_HEADERS).status_code == 200


def test_profile_mode_and_payment_config(client):
    profile = client.get("/api/profile", headers=SELLER_HEADERS).json()
    assert profile["mode"] == "buyer"

    switched = client.put("/api/profile/mode", json={"mode": "seller"}, headers=SELLER_HEADERS).json()
    assert switched["mode"] == "seller"

    assert client.put("/api/profile/mode", json={"mode": "admin"}, headers=SELLER_HEADERS).status_code == 400

    config = client.get("/api/payments/config").json()
    assert config == {"client_id": "public-client", "currency": "USD"}
