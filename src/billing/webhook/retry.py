"""Webhook retry and cleanup jobs."""

from datetime import datetime, timedelta

import structlog
from protean.utils.globals import current_domain

from billing.operations.job_run import track_job
from billing.utils.time import utcnow
from billing.webhook.processing import apply_webhook_event, record_webhook_failure
from billing.webhook.receiver import CLAIM_TTL_SECONDS
from billing.webhook.webhook_event import WebhookEvent

logger = structlog.get_logger(__name__)


def process_failed_webhooks(services, as_of: datetime | None = None) -> dict:
    """Re-drive unprocessed events from the lookback window.

    Events that reached the retry limit stay unprocessed and are reported
    for manual intervention instead of being retried again.
    """
    settings = services.settings
    as_of = as_of or utcnow()
    since = as_of - timedelta(hours=settings.webhook_lookback_hours)

    with track_job("retry_webhooks") as tally:
        repo = current_domain.repository_for(WebhookEvent)
        exhausted = repo.exhausted_since(since, max_retries=settings.webhook_max_retries)
        if exhausted:
            tally.extra["exhausted"] = len(exhausted)
            logger.warning(
                "Webhook events need manual intervention",
                event_ids=[event.event_id for event in exhausted],
            )

        retryable = repo.unprocessed_since(
            since, limit=settings.webhook_retry_batch_size, max_retries=settings.webhook_max_retries
        )
        for event in retryable:
            claim_key = f"webhook:{event.event_id}"
            claim_token = services.counter_store.claim(claim_key, CLAIM_TTL_SECONDS)
            if claim_token is None:
                tally.bump("in_progress")
                continue
            try:
                apply_webhook_event(services, event.event_id, as_of)
            except Exception as exc:
                tally.failed += 1
                logger.warning("Webhook retry failed", event_id=event.event_id, error=str(exc))
                try:
                    record_webhook_failure(event.event_id, exc, count_retry=True)
                except Exception as record_exc:
                    tally.record_error(record_exc)
                    logger.exception("Could not record webhook failure", event_id=event.event_id)
                continue
            finally:
                services.counter_store.release(claim_key, claim_token)
            tally.processed += 1

    return tally.as_dict()


def cleanup_old_webhooks(retention_days: int = 30, as_of: datetime | None = None) -> int:
    """Delete processed events older than ``retention_days``. Returns the count removed."""
    as_of = as_of or utcnow()
    cutoff = as_of - timedelta(days=retention_days)

    with track_job("cleanup_webhooks") as tally:
        repo = current_domain.repository_for(WebhookEvent)
        for event in repo.processed_before(cutoff):
            repo.purge(event)
            tally.processed += 1

    logger.info("Old webhook events deleted", count=tally.processed, retention_days=retention_days)
    return tally.processed
