"""Inbound webhook receiver.

Each step is a hard gate: signature over the raw bytes, envelope shape,
de-duplication, then dispatch. Concurrent deliveries of one event are
serialized by a short-lived claim in the shared counter store; the event
row is only marked processed once its handler succeeded.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog
from protean.utils.globals import current_domain

from billing.errors import InvalidWebhookSignature, MalformedWebhook
from billing.utils.time import utcnow
from billing.webhook.processing import apply_webhook_event, record_webhook_failure
from billing.webhook.signature import verify_signature
from billing.webhook.webhook_event import WebhookEvent

logger = structlog.get_logger(__name__)

SIGNATURE_HEADER = "TossPayments-Signature"
TRANSMISSION_ID_HEADER = "TossPayments-Webhook-Transmission-Id"
CLAIM_TTL_SECONDS = 300
REQUIRED_FIELDS = ("eventType", "timestamp", "data")


class ReceiptStatus(Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class WebhookReceipt:
    event_id: str
    event_type: str
    status: ReceiptStatus


def parse_envelope(raw_body: bytes) -> dict:
    """Decode ``{eventType, timestamp, data}`` or raise ``MalformedWebhook``."""
    try:
        envelope = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise MalformedWebhook("Body is not valid JSON") from exc

    if not isinstance(envelope, dict):
        raise MalformedWebhook("Body must be a JSON object")
    missing = [name for name in REQUIRED_FIELDS if envelope.get(name) in (None, "")]
    if missing:
        raise MalformedWebhook(f"Missing required fields: {', '.join(missing)}")
    if not isinstance(envelope["eventType"], str) or not isinstance(envelope["data"], dict):
        raise MalformedWebhook("eventType must be a string and data an object")
    return envelope


def event_id_for(envelope: dict, raw_body: bytes, transmission_id: str | None = None) -> str:
    """Gateway event id, else the delivery's transmission id, else a digest of the body."""
    if envelope.get("eventId"):
        return str(envelope["eventId"])
    if transmission_id:
        return transmission_id
    return hashlib.sha256(raw_body).hexdigest()


def receive_webhook(
    services,
    raw_body: bytes,
    signature: str | None,
    transmission_id: str | None = None,
    as_of: datetime | None = None,
) -> WebhookReceipt:
    """Verify, de-duplicate and apply one webhook delivery.

    Raises ``MalformedWebhook``/``InvalidWebhookSignature`` for deliveries
    that must be rejected; any other exception means the handler failed and
    the event is left unprocessed for the retry job.
    """
    as_of = as_of or utcnow()

    if not signature:
        logger.warning("webhook.rejected", reason="missing_signature")
        raise MalformedWebhook("Missing signature header")
    if not verify_signature(raw_body, signature, services.settings.webhook_secret):
        logger.warning("webhook.rejected", reason="invalid_signature")
        raise InvalidWebhookSignature("Invalid signature")

    envelope = parse_envelope(raw_body)
    event_id = event_id_for(envelope, raw_body, transmission_id)
    event_type = envelope["eventType"]
    log = logger.bind(event_id=event_id, event_type=event_type)

    repo = current_domain.repository_for(WebhookEvent)
    existing = repo.find(event_id)
    if existing is not None and existing.processed:
        log.info("webhook.duplicate")
        return WebhookReceipt(event_id, event_type, ReceiptStatus.DUPLICATE)

    claim_key = f"webhook:{event_id}"
    claim_token = services.counter_store.claim(claim_key, CLAIM_TTL_SECONDS)
    if claim_token is None:
        log.info("webhook.in_progress")
        return WebhookReceipt(event_id, event_type, ReceiptStatus.IN_PROGRESS)

    try:
        # Re-read under the claim: another delivery may have finished meanwhile
        existing = repo.find(event_id)
        if existing is not None and existing.processed:
            log.info("webhook.duplicate")
            return WebhookReceipt(event_id, event_type, ReceiptStatus.DUPLICATE)
        if existing is None:
            payload = raw_body.decode("utf-8", errors="replace")
            repo.add(WebhookEvent.receive(event_id, envelope, payload, received_at=as_of))

        try:
            applied = apply_webhook_event(services, event_id, as_of)
        except Exception as exc:
            log.exception("webhook.handler_failed")
            record_webhook_failure(event_id, exc, count_retry=False)
            raise
    finally:
        services.counter_store.release(claim_key, claim_token)

    if not applied:
        return WebhookReceipt(event_id, event_type, ReceiptStatus.DUPLICATE)
    log.info("webhook.processed")
    return WebhookReceipt(event_id, event_type, ReceiptStatus.PROCESSED)
