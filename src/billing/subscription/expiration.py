"""Daily expiration of lapsed subscriptions."""

from datetime import datetime, timedelta

import structlog
from protean.fields import DateTime, Identifier
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from billing.domain import billing
from billing.operations.job_run import track_job
from billing.subscription.subscription import RecurringStatus, Subscription
from billing.utils.time import local_today, utcnow

logger = structlog.get_logger(__name__)

EXPIRING_SOON_DAYS = 3


@billing.command(part_of="Subscription")
class ExpireSubscription:
    subscription_id = Identifier(required=True)
    expired_at = DateTime(required=True)


@billing.command_handler(part_of=Subscription)
class ExpireSubscriptionHandler:
    @handle(ExpireSubscription)
    def expire_subscription(self, command: ExpireSubscription):
        repo = current_domain.repository_for(Subscription)
        subscription = repo.get(command.subscription_id)
        subscription.expire(at=command.expired_at)
        repo.add(subscription)


def expire_lapsed_subscriptions(services, as_of: datetime | None = None) -> dict:
    """Expire active subscriptions whose end date has passed.

    Subscriptions still in recurring billing are left alone: a renewal or
    the retry job decides their fate.
    """
    as_of = as_of or utcnow()
    today = local_today(as_of, services.settings.timezone)
    soon = today + timedelta(days=EXPIRING_SOON_DAYS)

    with track_job("expire") as tally:
        expiring_soon = 0
        for subscription in current_domain.repository_for(Subscription).active():
            if subscription.end_date >= today:
                if subscription.end_date <= soon:
                    expiring_soon += 1
                continue
            if subscription.recurring_status == RecurringStatus.ACTIVE.value and subscription.auto_renew:
                tally.bump("still_billing")
                continue
            try:
                current_domain.process(
                    ExpireSubscription(subscription_id=str(subscription.id), expired_at=as_of),
                    asynchronous=False,
                )
            except Exception as exc:
                tally.record_error(exc)
                logger.exception("Expiration failed", subscription_id=str(subscription.id))
                continue
            tally.processed += 1
            logger.info(
                "Subscription expired",
                subscription_id=str(subscription.id),
                end_date=str(subscription.end_date),
            )

        tally.extra["expiring_soon"] = expiring_soon

    return tally.as_dict()
