"""Operational health report built from the ledger and job runs."""

from datetime import datetime, timedelta

from protean.utils.globals import current_domain

from billing.ledger.billing_history import BillingHistory
from billing.operations.job_run import JobRun
from billing.subscription.subscription import Subscription
from billing.utils.time import local_today, utcnow


def billing_health(timezone: str, as_of: datetime | None = None) -> dict:
    """Counts an uptime monitor needs to spot a stalled or failing biller.

    Status is ``degraded`` when the latest run of any job failed or had to
    skip items because of errors.
    """
    as_of = as_of or utcnow()
    today = local_today(as_of, timezone)

    ledger = current_domain.repository_for(BillingHistory)
    failed_recent = ledger.failures_since(as_of - timedelta(hours=24))
    last_success = ledger.last_success()

    due_today = current_domain.repository_for(Subscription).due_on(today)

    runs = current_domain.repository_for(JobRun)
    latest = runs.latest_per_job()
    degraded = any(not run.succeeded or run.errors for run in latest.values())

    return {
        "status": "degraded" if degraded else "ok",
        "subscriptions_due_today": len(due_today),
        "failed_last_24h": len(failed_recent),
        "last_success_at": last_success.processed_at if last_success else None,
        "recent_runs": [
            {
                "job_name": run.job_name,
                "started_at": run.started_at,
                "finished_at": run.finished_at,
                "succeeded": run.succeeded,
                "processed": run.processed,
                "failed": run.failed,
                "errors": run.errors,
                "last_error": run.last_error,
            }
            for run in runs.recent(limit=10)
        ],
    }
