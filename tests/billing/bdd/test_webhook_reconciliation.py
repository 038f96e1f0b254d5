"""BDD tests for webhook reconciliation."""

from datetime import UTC, date, datetime, timedelta

import pytest
from billing.errors import InvalidWebhookSignature
from billing.ledger.billing_history import order_id_for
from billing.subscription.renewal import process_subscriptions_due
from billing.webhook.receiver import receive_webhook
from billing.webhook.webhook_event import WebhookEvent
from protean import current_domain
from pytest_bdd import scenarios, then, when

scenarios("features/webhook_reconciliation.feature")

AS_OF = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
TODAY = date(2026, 3, 1)


def _deliver(services, delivery, as_of=AS_OF):
    body, headers = delivery
    return receive_webhook(services, body, headers["TossPayments-Signature"], as_of=as_of)


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the gateway reports the renewal payment as done", target_fixture="delivery")
def _(services, subscription, signed_webhook):
    data = {
        "orderId": order_id_for(subscription.id, TODAY, 1),
        "customerKey": str(subscription.user_id),
        "paymentKey": "pay_bdd_001",
        "totalAmount": 9900,
    }
    delivery = signed_webhook("PAYMENT.DONE", data, event_id="evt-bdd-done")
    _deliver(services, delivery)
    return delivery


@when("the gateway redelivers the same event")
def _(services, delivery):
    _deliver(services, delivery, as_of=AS_OF + timedelta(minutes=2))


@when("a delivery signed with the wrong secret arrives", target_fixture="rejection")
def _(services, subscription, signed_webhook):
    data = {"customerKey": str(subscription.user_id), "billingKey": "bk_attacker"}
    delivery = signed_webhook("BILLING_KEY.ISSUED", data, event_id="evt-bdd-forged", secret="whsec_attacker")
    with pytest.raises(InvalidWebhookSignature) as exc:
        _deliver(services, delivery)
    return exc.value


@when("the gateway reports the billing key as removed")
def _(services, subscription, signed_webhook):
    data = {"customerKey": str(subscription.user_id)}
    _deliver(services, signed_webhook("BILLING_KEY.REMOVED", data, event_id="evt-bdd-removed"))


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then("the renewal job finds nothing due")
def _(services, gateway):
    result = process_subscriptions_due(services, as_of=AS_OF + timedelta(minutes=5))
    assert result["due"] == 0
    assert gateway.calls == []


@then("the delivery is rejected as unauthorized")
def _(rejection):
    assert rejection.status_code == 401


@then("no webhook event is stored")
def _():
    assert current_domain.repository_for(WebhookEvent).find("evt-bdd-forged") is None
