"""Stress test scenarios for the webhook receiver.

WebhookFloodUser pushes signed deliveries as fast as pacing allows to
find where the ledger and webhook store start to lag. RedeliveryStormUser
replays one delivery from many users at once, the pattern a gateway
produces after a network partition heals: exactly one of them may be
processed, every other one must come back as a duplicate or in progress.
"""

from locust import HttpUser, constant_pacing, task

from loadtests.data_generators import (
    payment_done_data,
    random_delivery,
    recurring_order_id,
    signed_delivery,
    webhook_envelope,
)

STORM_ENVELOPE = webhook_envelope("PAYMENT.DONE", payment_done_data(recurring_order_id()))


class WebhookFloodUser(HttpUser):
    """Stress test: maximum delivery throughput, every delivery unique."""

    wait_time = constant_pacing(0.1)  # ~10 requests/sec per user

    @task
    def deliver(self):
        event_type, body, headers = random_delivery()
        self.client.post(
            "/webhooks/billing",
            data=body,
            headers=headers,
            name=f"[STRESS] POST /webhooks/billing ({event_type})",
        )


class RedeliveryStormUser(HttpUser):
    """Spike test: the same delivery from every user at once.

    Spawn 50-100 of these with an instant spawn rate.
    """

    wait_time = constant_pacing(0.05)  # ~20 req/sec per user

    @task
    def replay(self):
        body, headers = signed_delivery(STORM_ENVELOPE)
        with self.client.post(
            "/webhooks/billing",
            data=body,
            headers=headers,
            catch_response=True,
            name="[STORM] POST /webhooks/billing",
        ) as resp:
            if resp.status_code != 200:
                resp.failure(f"Replay failed: {resp.status_code}")
            elif resp.json().get("status") not in ("processed", "duplicate", "in_progress"):
                resp.failure(f"Unexpected status {resp.json().get('status')}")
