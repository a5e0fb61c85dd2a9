"""
End-to-end tests through the HTTP API.

Checkout, payment and verification as the storefront drives them, plus the
error envelope and the monitoring endpoints.
"""
from typing import Any, Dict

import pytest


def _checkout_body(product_id: str, **overrides: Any) -> Dict[str, Any]:
    body = {
        "customerName": "Wanjiku Kamau",
        "email": "wanjiku@example.com",
        "phone": "+254712345678",
        "location": "Kilimani, Nairobi",
        "items": [{"productId": product_id, "quantity": 1}],
        "subtotal": 1200,
        "deliveryFee": 200,
        "total": 1400,
    }
    body.update(overrides)
    return body


class TestCheckoutFlow:
    """Product to confirmed order over HTTP."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_order_payment_verification_flow(self, client, admin_headers) -> None:
        created = await client.post(
            "/api/products",
            json={
                "title": "Fresh Broiler Chicken",
                "description": "Freshly processed broiler chicken",
                "category": "broiler",
                "price": 1200,
                "quantity": 50,
            },
            headers=admin_headers,
        )
        assert created.status_code == 201
        product = created.json()["data"]
        assert product["price"] == 1200
        assert product["available"] is True

        listing = await client.get("/api/products")
        assert [p["id"] for p in listing.json()["data"]] == [product["id"]]

        order_response = await client.post("/api/orders", json=_checkout_body(product["id"]))
        assert order_response.status_code == 201
        order = order_response.json()["data"]
        assert order["id"].startswith("ORD-")
        assert order["status"] == "pending"
        assert order["paymentVerified"] is False
        assert order["total"] == 1400
        assert order["items"][0]["title"] == "Fresh Broiler Chicken"

        payment_response = await client.post(
            "/api/payments/create", json={"orderId": order["id"], "amount": 1400}
        )
        assert payment_response.status_code == 201
        checkout = payment_response.json()["data"]
        assert checkout["transactionId"].startswith("TXN-")
        assert checkout["checkoutUrl"].endswith(checkout["transactionId"])

        verify_response = await client.post(f"/api/payments/verify/{order['id']}")
        assert verify_response.status_code == 200
        verified = verify_response.json()
        assert verified["message"] == "Payment verified"
        assert verified["data"]["alreadyVerified"] is False
        assert verified["data"]["order"]["status"] == "confirmed"
        assert verified["data"]["order"]["paymentVerified"] is True
        assert verified["data"]["order"]["estimatedDelivery"] is not None
        assert verified["data"]["payment"]["status"] == "completed"
        assert verified["data"]["payment"]["id"] == checkout["paymentId"]

        again = await client.post(f"/api/payments/verify/{order['id']}")
        assert again.status_code == 200
        assert again.json()["data"]["alreadyVerified"] is True
        assert again.json()["data"]["order"]["status"] == "confirmed"

        payments = await client.get(f"/api/orders/{order['id']}/payments", headers=admin_headers)
        assert [p["status"] for p in payments.json()["data"]] == ["completed"]

        stats = await client.get("/api/dashboard/stats", headers=admin_headers)
        assert stats.json()["data"]["totalRevenue"] == 1400
        assert stats.json()["data"]["totalOrders"] == 1

        delivered = await client.patch(
            f"/api/orders/{order['id']}/status",
            json={"status": "delivered"},
            headers=admin_headers,
        )
        assert delivered.status_code == 200
        assert delivered.json()["data"]["status"] == "delivered"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_rejected_order_is_not_stored(
        self, client, admin_headers, make_product
    ) -> None:
        product = await make_product()

        response = await client.post("/api/orders", json=_checkout_body(product.id, phone=None))

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "validation_error"
        assert "phone" in body["error"]

        orders = await client.get("/api/orders", headers=admin_headers)
        assert orders.json()["data"] == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_payment_amount_mismatch_is_400(self, client, make_product, make_order) -> None:
        order = await make_order(await make_product())

        response = await client.post(
            "/api/payments/create", json={"orderId": order.id, "amount": 1000}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"latitude": 120}, "latitude"),
            ({"longitude": -181}, "longitude"),
            ({"deliveryFee": 1e9}, "deliveryFee"),
        ],
    )
    async def test_out_of_range_checkout_is_400(
        self, client, make_product, overrides, field
    ) -> None:
        product = await make_product()

        response = await client.post("/api/orders", json=_checkout_body(product.id, **overrides))

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"
        assert field in response.json()["error"]


class TestErrorEnvelope:
    """Every failure uses the same error body."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "path",
        ["/api/products/missing", "/api/payments/missing"],
    )
    async def test_missing_records_are_404(self, client, path) -> None:
        response = await client.get(path)

        assert response.status_code == 404
        assert response.json()["success"] is False
        assert response.json()["code"] == "not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_status_update_of_missing_order_is_404(self, client, admin_headers) -> None:
        response = await client.patch(
            "/api/orders/ORD-0-missing/status", json={"status": "confirmed"}, headers=admin_headers
        )

        assert response.status_code == 404

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_verify_unknown_order_is_404(self, client) -> None:
        response = await client.post("/api/payments/verify/ORD-0-missing")

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_malformed_body_is_400_with_field_details(self, client) -> None:
        response = await client.post("/api/orders", json={"items": "two chickens"})

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "validation_error"
        assert body["details"][0]["field"] == "items"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_route_uses_envelope(self, client) -> None:
        response = await client.get("/api/chickens")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Not Found", "code": "http_error"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_openapi_documents_error_envelope(self, client) -> None:
        response = await client.get("/openapi.json")

        document = response.json()
        assert "ErrorResponse" in document["components"]["schemas"]
        create_order = document["paths"]["/api/orders"]["post"]["responses"]
        assert create_order["400"]["content"]["application/json"]["schema"] == {
            "$ref": "#/components/schemas/ErrorResponse"
        }


class TestMonitoring:
    """Health, metrics and request ids."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_request_id_is_echoed(self, client) -> None:
        generated = await client.get("/api/health")
        supplied = await client.get("/api/health", headers={"X-Request-ID": "req-123"})

        assert generated.headers["X-Request-ID"]
        assert supplied.headers["X-Request-ID"] == "req-123"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_health_endpoints(self, client) -> None:
        live = await client.get("/api/health")
        ready = await client.get("/api/health/ready")

        assert live.json()["status"] == "alive"
        assert ready.status_code == 200
        assert ready.json()["checks"]["database"]["status"] == "healthy"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client, make_product) -> None:
        product = await make_product()
        await client.post("/api/orders", json=_checkout_body(product.id))

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "orders_created_total" in response.text
        assert "http_request_duration_seconds" in response.text

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_root_describes_service(self, client) -> None:
        response = await client.get("/")

        assert response.json()["service"] == "kuku-yetu-test"
        assert response.json()["health"] == "/api/health"
