"""Bounded retry of failed renewals, and the grace-period sweep.

A subscription whose charge failed stays due on its original billing date.
It is retried until the cycle succeeds, the failed-attempt budget runs out,
or the grace period that started with the cycle's first failure ends.
"""

from datetime import datetime, timedelta

import structlog
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from billing.domain import billing
from billing.ledger.billing_history import BillingHistory
from billing.operations.job_run import track_job
from billing.subscription.renewal import charge_subscription, tally_outcome
from billing.subscription.subscription import RecurringStatus, Subscription
from billing.utils.time import as_aware, local_today, utcnow

logger = structlog.get_logger(__name__)


@billing.command(part_of="Subscription")
class DeactivateRecurringBilling:
    subscription_id = Identifier(required=True)
    reason = String(required=True, max_length=500)
    deactivated_at = DateTime(required=True)


@billing.command_handler(part_of=Subscription)
class DeactivateRecurringBillingHandler:
    @handle(DeactivateRecurringBilling)
    def deactivate(self, command: DeactivateRecurringBilling):
        subscriptions = current_domain.repository_for(Subscription)
        subscription = subscriptions.get(command.subscription_id)
        if subscription.recurring_status != RecurringStatus.ACTIVE.value:
            return False

        cycle = subscription.next_billing_date
        subscription.deactivate_recurring(command.reason, at=command.deactivated_at)
        current_domain.repository_for(BillingHistory).append(
            BillingHistory.cancellation(
                subscription_id=subscription.id,
                user_id=subscription.user_id,
                reason=f"Recurring billing deactivated: {command.reason}",
                billing_date=cycle,
                billing_key=subscription.billing_key,
                currency=subscription.plan.currency,
                processed_at=command.deactivated_at,
            )
        )
        subscriptions.add(subscription)
        return True


def _grace_expired(subscription: Subscription, as_of: datetime) -> bool:
    return bool(subscription.failed_attempts) and (
        subscription.grace_period_end is not None and as_aware(subscription.grace_period_end) <= as_aware(as_of)
    )


def sweep_expired_grace_periods(as_of: datetime, tally) -> None:
    for subscription in current_domain.repository_for(Subscription).in_recurring_billing():
        if not _grace_expired(subscription, as_of):
            continue
        try:
            current_domain.process(
                DeactivateRecurringBilling(
                    subscription_id=str(subscription.id),
                    reason="Grace period expired without a successful charge",
                    deactivated_at=as_of,
                ),
                asynchronous=False,
            )
        except Exception as exc:
            tally.record_error(exc)
            logger.exception("Grace sweep failed", subscription_id=str(subscription.id))
            continue
        tally.bump("grace_expired")
        logger.info("Recurring billing deactivated after grace period", subscription_id=str(subscription.id))


def _retry_cycle(services, subscription_id, as_of: datetime):
    """Billing date to retry for ``subscription_id``, or None if it is not eligible."""
    settings = services.settings
    subscription = current_domain.repository_for(Subscription).get(subscription_id)
    if not subscription.is_billable or not subscription.failed_attempts:
        return None

    cycle = subscription.next_billing_date
    if cycle is None or cycle > local_today(as_of, settings.timezone):
        return None
    if _grace_expired(subscription, as_of):
        return None

    ledger = current_domain.repository_for(BillingHistory)
    if ledger.has_success_for_cycle(subscription.id, cycle):
        return None
    if ledger.failed_attempts_for_cycle(subscription.id, cycle) >= settings.max_attempts:
        return None
    return cycle


def retry_failed_payments(services, as_of: datetime | None = None) -> dict:
    """Re-attempt subscriptions with a recent FAILED row and no later SUCCESS."""
    as_of = as_of or utcnow()
    cutoff = as_of - timedelta(days=services.settings.grace_period_days)

    with track_job("retry_payments") as tally:
        sweep_expired_grace_periods(as_of, tally)

        failures = current_domain.repository_for(BillingHistory).failures_since(cutoff)
        candidates = list(dict.fromkeys(str(row.subscription_id) for row in failures))
        tally.extra["candidates"] = len(candidates)

        for subscription_id in candidates:
            try:
                cycle = _retry_cycle(services, subscription_id, as_of)
                if cycle is None:
                    tally.bump("skipped")
                    continue
                outcome = charge_subscription(services, subscription_id, cycle, as_of=as_of)
            except Exception as exc:
                tally.record_error(exc)
                logger.exception("Payment retry aborted", subscription_id=subscription_id)
                continue
            tally_outcome(tally, outcome)

    return tally.as_dict()
