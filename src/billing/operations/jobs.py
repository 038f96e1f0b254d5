"""Registry of scheduled jobs, shared by the HTTP trigger and the CLI."""

from datetime import datetime

from billing.subscription.expiration import expire_lapsed_subscriptions
from billing.subscription.renewal import process_subscriptions_due
from billing.subscription.retry import retry_failed_payments
from billing.webhook.retry import cleanup_old_webhooks, process_failed_webhooks

DEFAULT_RETENTION_DAYS = 30


def _cleanup(services, as_of=None, retention_days=DEFAULT_RETENTION_DAYS):
    return {"deleted": cleanup_old_webhooks(retention_days, as_of=as_of), "retention_days": retention_days}


JOBS = {
    "process-due": lambda services, as_of=None, **_: process_subscriptions_due(services, as_of=as_of),
    "retry-payments": lambda services, as_of=None, **_: retry_failed_payments(services, as_of=as_of),
    "retry-webhooks": lambda services, as_of=None, **_: process_failed_webhooks(services, as_of=as_of),
    "cleanup-webhooks": _cleanup,
    "expire": lambda services, as_of=None, **_: expire_lapsed_subscriptions(services, as_of=as_of),
}


def run_job(name: str, services, as_of: datetime | None = None, **options) -> dict:
    """Run the job registered as ``name``; raises KeyError for unknown names."""
    return JOBS[name](services, as_of=as_of, **options)
