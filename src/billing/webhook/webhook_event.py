"""WebhookEvent aggregate: the processing log of inbound gateway notifications.

Keyed by the gateway's event identifier, so a redelivery finds the row the
first delivery wrote.
"""

import json
from datetime import datetime

from protean.exceptions import ObjectNotFoundError
from protean.fields import Boolean, DateTime, Integer, String, Text

from billing.domain import billing
from billing.utils.db import scan
from billing.utils.time import as_aware, utcnow


@billing.aggregate
class WebhookEvent:
    event_id = String(identifier=True, max_length=255)
    event_type = String(required=True, max_length=100)
    event_timestamp = String(max_length=64)  # as sent by the gateway
    payload = Text(required=True)
    received_at = DateTime(required=True)
    processed = Boolean(default=False)
    processed_at = DateTime()
    retry_count = Integer(default=0)
    last_error = Text()

    @classmethod
    def receive(cls, event_id: str, envelope: dict, raw_body: str, received_at: datetime | None = None):
        return cls(
            event_id=event_id,
            event_type=envelope["eventType"],
            event_timestamp=str(envelope.get("timestamp", "")),
            payload=raw_body,
            received_at=received_at or utcnow(),
        )

    @property
    def data(self) -> dict:
        return json.loads(self.payload).get("data") or {}

    def mark_processed(self, at: datetime | None = None) -> None:
        self.processed = True
        self.processed_at = at or utcnow()
        self.last_error = None

    def record_failure(self, error: str, count_retry: bool = True) -> None:
        if count_retry:
            self.retry_count = (self.retry_count or 0) + 1
        self.last_error = error[:2000]


@billing.repository(part_of=WebhookEvent)
class WebhookEventRepository:
    def find(self, event_id: str) -> WebhookEvent | None:
        try:
            return self.get(event_id)
        except ObjectNotFoundError:
            return None

    def _unprocessed_since(self, since: datetime) -> list[WebhookEvent]:
        since = as_aware(since)
        events = scan(self._dao, order_by="received_at", processed=False)
        return [event for event in events if as_aware(event.received_at) >= since]

    def unprocessed_since(self, since: datetime, limit: int, max_retries: int) -> list[WebhookEvent]:
        """At most ``limit`` retryable events received since ``since``, oldest first.

        Events already retried ``max_retries`` times are left out before the
        limit applies, so they never crowd fresh events out of a batch.
        """
        events = self._unprocessed_since(since)
        return [event for event in events if (event.retry_count or 0) < max_retries][:limit]

    def exhausted_since(self, since: datetime, max_retries: int) -> list[WebhookEvent]:
        """Unprocessed events received since ``since`` that used up their retries."""
        return [event for event in self._unprocessed_since(since) if (event.retry_count or 0) >= max_retries]

    def processed_before(self, cutoff: datetime) -> list[WebhookEvent]:
        cutoff = as_aware(cutoff)
        events = scan(self._dao, order_by="received_at", processed=True)
        return [event for event in events if as_aware(event.received_at) < cutoff]

    def purge(self, event: WebhookEvent) -> None:
        self._dao.delete(event)
