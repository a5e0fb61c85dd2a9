"""
Tests for gateway webhooks: signature checks and event application.
"""
import json
import time
from typing import Any, Dict, Optional

import pytest
import pytest_asyncio
import stripe
from sqlalchemy import func, select

from core.exceptions import NotFoundError, StoreError, ValidationError, WebhookSignatureError
from core import workflow as workflow_module
from core.workflow import OrderPaymentWorkflow
from database import PaymentEvent
from integrations.webhook_handler import WebhookHandler, build_signature_header


WEBHOOK_SECRET = "whsec_test"


def _body(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode()


def _completed_event(order_id: str, event_id: str = "evt_1", **data: Any) -> Dict[str, Any]:
    return {"id": event_id, "type": "payment.completed", "data": {"orderId": order_id, **data}}


@pytest_asyncio.fixture
async def order_with_payment(services, make_product, make_order):
    order = await make_order(await make_product())
    checkout = await services.payments.create_payment(order.id, 1400)
    return order, checkout


class TestSignatureVerification:
    """WebhookHandler.verify_signature."""

    @pytest.fixture
    def handler(self) -> WebhookHandler:
        return WebhookHandler({"Lipiana": WEBHOOK_SECRET}, tolerance_seconds=300)

    @pytest.mark.unit
    def test_valid_signature_returns_event(self, handler) -> None:
        payload = _body({"id": "evt_1", "type": "payment.completed", "data": {}})
        signature = build_signature_header(WEBHOOK_SECRET, payload)

        event = handler.verify_signature("lipiana", payload, signature)

        assert event["id"] == "evt_1"

    @pytest.mark.unit
    def test_header_accepted_by_stripe_library(self) -> None:
        payload = _body({"id": "evt_1"})
        header = build_signature_header(WEBHOOK_SECRET, payload)

        assert stripe.WebhookSignature.verify_header(
            payload.decode(), header, WEBHOOK_SECRET, tolerance=300
        )

    @pytest.mark.unit
    def test_tampered_body_rejected(self, handler) -> None:
        payload = _body({"id": "evt_1", "type": "payment.completed"})
        signature = build_signature_header(WEBHOOK_SECRET, payload)

        with pytest.raises(WebhookSignatureError):
            handler.verify_signature("lipiana", payload.replace(b"evt_1", b"evt_2"), signature)

    @pytest.mark.unit
    def test_wrong_secret_rejected(self, handler) -> None:
        payload = _body({"id": "evt_1"})
        signature = build_signature_header("whsec_other", payload)

        with pytest.raises(WebhookSignatureError):
            handler.verify_signature("lipiana", payload, signature)

    @pytest.mark.unit
    def test_stale_timestamp_rejected(self, handler) -> None:
        payload = _body({"id": "evt_1"})
        signature = build_signature_header(WEBHOOK_SECRET, payload, int(time.time()) - 301)

        with pytest.raises(WebhookSignatureError, match="tolerance"):
            handler.verify_signature("lipiana", payload, signature)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "signature",
        [None, "", "garbage", "t=abc,v1=00", "t=1700000000", "t=1700000000,v1=éé"],
    )
    def test_missing_or_malformed_signature_rejected(self, handler, signature) -> None:
        with pytest.raises(WebhookSignatureError):
            handler.verify_signature("lipiana", b"{}", signature)

    @pytest.mark.unit
    def test_unknown_gateway_is_not_found(self, handler) -> None:
        with pytest.raises(NotFoundError):
            handler.verify_signature("mpesa", b"{}", "t=1,v1=00")

    @pytest.mark.unit
    def test_signed_non_object_body_rejected(self, handler) -> None:
        payload = b"[1, 2, 3]"
        signature = build_signature_header(WEBHOOK_SECRET, payload)

        with pytest.raises(ValidationError):
            handler.verify_signature("lipiana", payload, signature)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unregistered_event_type_ignored(self, handler) -> None:
        result = await handler.process_event("lipiana", {"id": "evt_9", "type": "refund.created"})

        assert result["status"] == "ignored"


class TestWebhookEndpoint:
    """POST /api/webhooks/{gateway}."""

    async def _post(
        self,
        client,
        event: Dict[str, Any],
        secret: str = WEBHOOK_SECRET,
        gateway: str = "lipiana",
        signature: Optional[str] = None,
    ):
        payload = _body(event)
        header = signature or build_signature_header(secret, payload, int(time.time()))
        return await client.post(
            f"/api/webhooks/{gateway}",
            content=payload,
            headers={"Content-Type": "application/json", "X-Webhook-Signature": header},
        )

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_completed_event_confirms_order(
        self, client, services, order_with_payment
    ) -> None:
        order, checkout = order_with_payment
        event = _completed_event(order.id, transactionId=checkout.transaction_id)

        response = await self._post(client, event)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "applied"
        assert body["data"]["orderId"] == order.id

        stored_order = await services.orders.get_order(order.id)
        payment = await services.payments.get_payment(checkout.payment_id)
        assert stored_order.status == "confirmed"
        assert stored_order.payment_verified is True
        assert stored_order.estimated_delivery is not None
        assert payment.status == "completed"
        assert payment.gateway_response == event

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_acknowledged_once(
        self, client, services, database, order_with_payment
    ) -> None:
        order, _ = order_with_payment
        event = _completed_event(order.id)

        first = await self._post(client, event)
        second = await self._post(client, event)

        assert first.json()["data"]["status"] == "applied"
        assert second.status_code == 200
        assert second.json()["data"]["status"] == "duplicate"

        async with database.transaction() as db:
            verified_events = await db.scalar(
                select(func.count())
                .select_from(PaymentEvent)
                .where(PaymentEvent.event_type == "payment.verified")
            )
        assert verified_events == 1

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_new_event_for_verified_order_is_acknowledged(
        self, client, order_with_payment
    ) -> None:
        order, _ = order_with_payment
        await self._post(client, _completed_event(order.id, event_id="evt_1"))

        response = await self._post(client, _completed_event(order.id, event_id="evt_2"))

        assert response.json()["data"]["status"] == "already_verified"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_event_marks_payment_failed_only(
        self, client, services, order_with_payment
    ) -> None:
        order, checkout = order_with_payment
        event = {
            "id": "evt_fail",
            "type": "payment.failed",
            "data": {"orderId": order.id, "reason": "insufficient funds"},
        }

        response = await self._post(client, event)

        assert response.json()["data"]["status"] == "failed"
        payment = await services.payments.get_payment(checkout.payment_id)
        stored_order = await services.orders.get_order(order.id)
        assert payment.status == "failed"
        assert stored_order.status == "pending"
        assert stored_order.payment_verified is False

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failed_event_never_downgrades_completed_payment(
        self, client, services, order_with_payment
    ) -> None:
        order, checkout = order_with_payment
        await services.workflow.verify_payment(order.id)

        response = await self._post(
            client, {"id": "evt_late", "type": "payment.failed", "data": {"orderId": order.id}}
        )

        assert response.json()["data"]["status"] == "ignored"
        payment = await services.payments.get_payment(checkout.payment_id)
        assert payment.status == "completed"

    @pytest.mark.integration
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event",
        [
            {"id": "evt_a", "type": "payment.completed", "data": {}},
            {"id": "evt_b", "type": "payment.completed", "data": {"orderId": "ORD-0-missing"}},
            {"id": "evt_c", "type": "customer.updated", "data": {}},
        ],
    )
    async def test_uncorrelated_events_are_ignored(self, client, event) -> None:
        response = await self._post(client, event)

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ignored"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_bad_signature_is_401_and_changes_nothing(
        self, client, services, order_with_payment
    ) -> None:
        order, checkout = order_with_payment

        response = await self._post(client, _completed_event(order.id), secret="whsec_forged")

        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "Invalid webhook signature",
            "code": "invalid_signature",
        }
        payment = await services.payments.get_payment(checkout.payment_id)
        assert payment.status == "pending"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_unknown_gateway_is_404(self, client) -> None:
        response = await self._post(client, {"id": "evt_1"}, gateway="mpesa")

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_ascii_signature_is_401(self, client, services, order_with_payment) -> None:
        order, checkout = order_with_payment
        header = f"t={int(time.time())},v1=éé"

        response = await client.post(
            "/api/webhooks/lipiana",
            content=_body(_completed_event(order.id)),
            headers={"X-Webhook-Signature": header.encode("latin-1")},
        )

        assert response.status_code == 401
        assert response.json()["code"] == "invalid_signature"
        payment = await services.payments.get_payment(checkout.payment_id)
        assert payment.status == "pending"


class TestEventAtomicity:
    """A failure while committing an event leaves both records untouched."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_event_id_collision_rolls_back_payment_and_order(
        self, services, make_product, make_order, monkeypatch
    ) -> None:
        first = await make_order(await make_product())
        await services.payments.create_payment(first.id, 1400)
        second = await make_order(await make_product(title="Kienyeji Chicken"))
        checkout = await services.payments.create_payment(second.id, 1400)

        applied = await services.workflow.handle_gateway_event(
            "lipiana", _completed_event(first.id, event_id="evt_shared")
        )
        assert applied["status"] == "applied"

        async def never_processed(db, external_event_id):
            return False

        record_event = workflow_module.record_payment_event

        async def flush_then_record(db, **kwargs):
            await db.flush()
            return await record_event(db=db, **kwargs)

        # The payment and order UPDATEs are sent first; the duplicate event id
        # then fails on the INSERT at commit.
        monkeypatch.setattr(
            OrderPaymentWorkflow, "_already_processed", staticmethod(never_processed)
        )
        monkeypatch.setattr(workflow_module, "record_payment_event", flush_then_record)

        with pytest.raises(StoreError):
            await services.workflow.handle_gateway_event(
                "lipiana", _completed_event(second.id, event_id="evt_shared")
            )

        order = await services.orders.get_order(second.id)
        payment = await services.payments.get_payment(checkout.payment_id)
        assert order.status == "pending"
        assert order.payment_verified is False
        assert order.estimated_delivery is None
        assert payment.status == "pending"
        assert payment.verified_at is None
        assert payment.gateway_response is None
        assert len(services.workflow.locks) == 0
