"""
Integration Tests - HTTP API
"""
import httpx
import pytest

from settlement.config import get_settings
from settlement.serving.api.main import create_api_app


@pytest.fixture
async def client(env, test_settings):
    app = create_api_app()
    app.state.environment = env
    app.dependency_overrides[get_settings] = lambda: test_settings

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def erp_headers(test_settings):
    return {"X-Erp-Key": test_settings.erp.callback_key.get_secret_value()}


class TestHealth:
    async def test_liveness(self, client):
        response = await client.get("/api/v1/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    async def test_readiness_checks_store(self, client):
        response = await client.get("/api/v1/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    async def test_security_headers(self, client):
        response = await client.get("/api/v1/health/live", headers={"X-Request-ID": "req-1"})

        assert response.headers["X-Request-ID"] == "req-1"
        assert response.headers["X-Content-Type-Options"] == "nosniff"


class TestCartApi:
    async def test_requires_credentials(self, client):
        response = await client.get("/api/v1/cart")

        assert response.status_code == 401
        assert response.json()["error"] == "authorization_error"

    async def test_bad_token(self, client, customer):
        headers = {**customer.headers, "Authorization": "Bearer " + "0" * 96}

        response = await client.get("/api/v1/cart", headers=headers)

        assert response.status_code == 401

    async def test_add_and_list(self, client, customer, products):
        response = await client.post(
            "/api/v1/cart",
            json={"product_key": products["tea"], "quantity": 2},
            headers=customer.headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["total"] == 2200
        assert body["items"][0]["quantity"] == 2

        response = await client.get("/api/v1/cart", headers=customer.headers)
        assert len(response.json()["items"]) == 1

    async def test_unknown_product_is_404(self, client, customer):
        response = await client.post(
            "/api/v1/cart", json={"product_key": 9999, "quantity": 1}, headers=customer.headers
        )

        assert response.status_code == 404


class TestCheckoutApi:
    async def test_full_checkout(self, client, env, gateway, erp, customer, products, erp_headers):
        cart = (await client.post(
            "/api/v1/cart", json={"product_key": products["tea"], "quantity": 2}, headers=customer.headers
        )).json()
        key = cart["items"][0]["line_item_key"]

        response = await client.post(
            "/api/v1/checkout/intents", json={"line_item_keys": [key]}, headers=customer.headers
        )
        assert response.status_code == 201
        intent = response.json()
        assert intent["payable"] == 2200

        gateway.pay(intent["intent_id"])
        response = await client.post(
            f"/api/v1/checkout/intents/{intent['intent_id']}/finalize",
            json={"email": "taro@example.com"},
            headers=customer.headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "succeeded"
        assert len(erp.pushes) == 1

        history = (await client.get("/api/v1/purchases", headers=customer.headers)).json()
        assert history["total"] == 1
        assert history["items"][0]["order_number"] == f"ORD-{intent['purchase_key']}"

        response = await client.post(
            "/api/v1/fulfillment/callback",
            json={"purchase_reference": f"ORD-{intent['purchase_key']}", "shipped_line_refs": [key]},
            headers=erp_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "success"

        response = await client.post(
            f"/api/v1/purchases/{intent['purchase_key']}/cancel", headers=customer.headers
        )
        assert response.status_code == 200
        assert response.json()["refunded"] is True

    async def test_guest_checkout_without_credentials(self, client, products, guest_address_fields):
        response = await client.post(
            "/api/v1/checkout/intents",
            json={"guest_lines": [{
                "product_key": products["bowl"],
                "quantity": 1,
                "destinations": [{"quantity": 1, "address": guest_address_fields}],
            }]},
        )

        assert response.status_code == 201
        assert response.json()["amount"] == 540

    async def test_below_minimum_is_400(self, client, customer, products):
        cart = (await client.post(
            "/api/v1/cart", json={"product_key": products["candy"], "quantity": 1}, headers=customer.headers
        )).json()

        response = await client.post(
            "/api/v1/checkout/intents",
            json={"line_item_keys": [cart["items"][0]["line_item_key"]]},
            headers=customer.headers,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    async def test_malformed_coupon_is_400(self, client, customer, products):
        cart = (await client.post(
            "/api/v1/cart", json={"product_key": products["tea"], "quantity": 1}, headers=customer.headers
        )).json()
        intent = (await client.post(
            "/api/v1/checkout/intents",
            json={"line_item_keys": [cart["items"][0]["line_item_key"]]},
            headers=customer.headers,
        )).json()

        response = await client.patch(
            f"/api/v1/checkout/intents/{intent['intent_id']}", json={"coupon_code": "no spaces!"}
        )

        assert response.status_code == 400


class TestFulfillmentApi:
    async def test_wrong_callback_key(self, client):
        response = await client.post(
            "/api/v1/fulfillment/callback",
            json={"purchase_reference": "ORD-1", "shipped_line_refs": [1]},
            headers={"X-Erp-Key": "wrong"},
        )

        assert response.status_code == 401

    async def test_unknown_purchase_is_400(self, client, erp_headers):
        response = await client.post(
            "/api/v1/fulfillment/callback",
            json={"purchase_reference": "ORD-404", "shipped_line_refs": [1]},
            headers=erp_headers,
        )

        assert response.status_code == 400
