"""Integration tests for the gateway webhook endpoint."""

from collections import Counter
from datetime import date
from unittest.mock import patch

import pytest
from billing.api import webhook_router
from billing.ledger.billing_history import BillingHistory, order_id_for
from billing.webhook import handlers
from billing.webhook.signature import sign
from billing.webhook.webhook_event import WebhookEvent
from fastapi import FastAPI
from fastapi.testclient import TestClient
from protean import current_domain

TODAY = date(2026, 3, 1)


@pytest.fixture()
def client(services):
    app = FastAPI()
    app.include_router(webhook_router)
    app.state.services = services
    return TestClient(app)


def _post(client, signed, **extra_headers):
    body, headers = signed
    return client.post(
        "/webhooks/billing",
        content=body,
        headers={"Content-Type": "application/json", **headers, **extra_headers},
    )


class TestWebhookEndpoint:
    def test_accepts_signed_event(self, client, signed_webhook):
        response = _post(client, signed_webhook("PAYMENT.DONE", {"orderId": "SHOP_1"}, event_id="evt-api-1"))

        assert response.status_code == 200
        assert response.json() == {"received": True, "event_id": "evt-api-1", "status": "processed"}

    def test_duplicate_delivery_is_acknowledged(self, client, signed_webhook, subscription_factory):
        subscription = subscription_factory()
        data = {
            "orderId": order_id_for(subscription.id, TODAY, 1),
            "customerKey": str(subscription.user_id),
            "paymentKey": "pay_api",
            "totalAmount": 9900,
        }
        delivery = signed_webhook("PAYMENT.DONE", data, event_id="evt-api-2")

        first = _post(client, delivery)
        second = _post(client, delivery)

        assert first.json()["status"] == "processed"
        assert second.status_code == 200
        assert second.json()["status"] == "duplicate"
        rows = current_domain.repository_for(BillingHistory).for_subscription(subscription.id)
        assert Counter(row.status for row in rows) == Counter({"SUCCESS": 1})

    def test_transmission_id_identifies_event(self, client, signed_webhook):
        delivery = signed_webhook("PAYMENT.DONE", {"orderId": "SHOP_2"})

        first = _post(client, delivery, **{"TossPayments-Webhook-Transmission-Id": "tx-001"})
        second = _post(client, delivery, **{"TossPayments-Webhook-Transmission-Id": "tx-001"})

        assert first.json()["event_id"] == "tx-001"
        assert second.json()["status"] == "duplicate"

    def test_missing_signature_is_bad_request(self, client, signed_webhook):
        body, _ = signed_webhook("PAYMENT.DONE", {})
        response = client.post("/webhooks/billing", content=body)

        assert response.status_code == 400

    def test_bad_signature_is_unauthorized(self, client, signed_webhook):
        body, _ = signed_webhook("PAYMENT.DONE", {})
        response = client.post("/webhooks/billing", content=body, headers={"TossPayments-Signature": "forged"})

        assert response.status_code == 401

    def test_malformed_body_is_bad_request(self, client):
        body = b'{"eventType": "PAYMENT.DONE"}'
        response = client.post(
            "/webhooks/billing", content=body, headers={"TossPayments-Signature": sign(body, "whsec_test_secret")}
        )

        assert response.status_code == 400
        assert "timestamp" in response.json()["detail"]

    def test_handler_failure_asks_for_redelivery(self, client, signed_webhook):
        def boom(data, ctx):
            raise RuntimeError("ledger unavailable")

        with patch.dict(handlers.HANDLERS, {"PAYMENT.DONE": boom}):
            response = _post(client, signed_webhook("PAYMENT.DONE", {}, event_id="evt-api-500"))

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook processing failed"}
        assert current_domain.repository_for(WebhookEvent).get("evt-api-500").processed is False

    def test_unexpected_failure_is_logged(self, client, signed_webhook):
        with patch("billing.api.routes.logger") as logger:
            with patch("billing.api.routes.receive_webhook", side_effect=RuntimeError("store unavailable")):
                response = _post(client, signed_webhook("PAYMENT.DONE", {}, event_id="evt-api-crash"))

        assert response.status_code == 500
        assert response.json() == {"error": "Webhook processing failed"}
        logger.exception.assert_called_once_with("webhook.failed")

    def test_redelivery_after_500_is_processed(self, client, signed_webhook):
        delivery = signed_webhook("PAYMENT.DONE", {}, event_id="evt-api-redeliver")
        with patch.dict(handlers.HANDLERS, {"PAYMENT.DONE": lambda data, ctx: 1 / 0}):
            _post(client, delivery)

        response = _post(client, delivery)

        assert response.status_code == 200
        assert response.json()["status"] == "processed"
