"""Gateway webhook load test scenarios.

GatewayWebhookUser plays the payment gateway: it sends signed deliveries,
redelivers some of them the way the gateway does after a timeout, and
occasionally sends a delivery with a bad signature.
"""

import random

from locust import HttpUser, SequentialTaskSet, between, task

from loadtests.data_generators import (
    payment_cancelled_data,
    payment_done_data,
    random_delivery,
    recurring_order_id,
    signed_delivery,
    webhook_envelope,
)
from loadtests.helpers.response import extract_error_detail
from loadtests.helpers.state import WebhookState

WEBHOOK_PATH = "/webhooks/billing"


def post_delivery(client, state: WebhookState, body: bytes, headers: dict, name: str, expect: str | None = None):
    with client.post(WEBHOOK_PATH, data=body, headers=headers, catch_response=True, name=name) as resp:
        if resp.status_code != 200:
            resp.failure(f"Delivery failed: {resp.status_code} - {extract_error_detail(resp)}")
            return None
        status = resp.json().get("status")
        if expect and status != expect:
            resp.failure(f"Expected {expect}, got {status}")
            return status
        if status == "duplicate":
            state.duplicates += 1
        elif status == "in_progress":
            state.in_progress += 1
        else:
            state.processed += 1
        return status


class PaymentLifecycleJourney(SequentialTaskSet):
    """Payment done -> same delivery again -> payment cancelled.

    The second delivery must be acknowledged as a duplicate.
    """

    def on_start(self):
        self.state = WebhookState()
        self.order_id = recurring_order_id()
        self.amount = random.choice([4900, 9900, 14900])

    @task
    def payment_done(self):
        body, headers = signed_delivery(webhook_envelope("PAYMENT.DONE", payment_done_data(self.order_id, self.amount)))
        self.state.remember(body, headers)
        post_delivery(self.client, self.state, body, headers, name="POST /webhooks/billing (done)")

    @task
    def redeliver(self):
        body, headers = self.state.sent[-1]
        post_delivery(
            self.client, self.state, body, headers, name="POST /webhooks/billing (redelivery)", expect="duplicate"
        )

    @task
    def payment_cancelled(self):
        data = payment_cancelled_data(self.order_id, self.amount)
        body, headers = signed_delivery(webhook_envelope("PAYMENT.CANCELED", data))
        post_delivery(self.client, self.state, body, headers, name="POST /webhooks/billing (cancel)")

    @task
    def done(self):
        self.interrupt()


class GatewayWebhookUser(HttpUser):
    """Steady stream of gateway callbacks with realistic redelivery."""

    wait_time = between(0.5, 2)
    tasks = {PaymentLifecycleJourney: 2}

    def on_start(self):
        self.state = WebhookState()

    @task(6)
    def deliver(self):
        event_type, body, headers = random_delivery()
        self.state.remember(body, headers)
        post_delivery(self.client, self.state, body, headers, name=f"POST /webhooks/billing ({event_type})")

    @task(2)
    def redeliver_earlier(self):
        if not self.state.sent:
            return
        body, headers = random.choice(self.state.sent)
        post_delivery(
            self.client, self.state, body, headers, name="POST /webhooks/billing (redelivery)", expect="duplicate"
        )

    @task(1)
    def forged_signature(self):
        body, headers = signed_delivery(
            webhook_envelope("PAYMENT.DONE", payment_done_data()), secret="not-the-gateway-secret"
        )
        with self.client.post(
            WEBHOOK_PATH,
            data=body,
            headers=headers,
            catch_response=True,
            name="POST /webhooks/billing (forged)",
        ) as resp:
            if resp.status_code == 401:
                resp.success()
            else:
                resp.failure(f"Forged delivery was not rejected: {resp.status_code}")
