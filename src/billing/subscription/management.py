"""User-initiated billing changes: cancel recurring billing, toggle auto-renew.

Both go through the subscription's country billing policy.
"""

from protean.fields import Boolean, Date, DateTime, Identifier, String
from protean.utils.globals import current_domain
from protean.utils.mixins import handle

from billing.domain import billing
from billing.ledger.billing_history import BillingHistory
from billing.subscription.policy import DEFAULT_CANCEL_ONLY_COUNTRIES, policy_for
from billing.subscription.subscription import RecurringStatus, Subscription
from billing.utils.time import utcnow


def _countries(value: str | None) -> frozenset[str]:
    if not value:
        return DEFAULT_CANCEL_ONLY_COUNTRIES
    return frozenset(part.strip().upper() for part in value.split(",") if part.strip())


@billing.command(part_of="Subscription")
class CancelRecurringBilling:
    subscription_id = Identifier(required=True)
    cancel_only_countries = String(max_length=255)  # comma list, defaults to KR
    cancelled_at = DateTime()


@billing.command(part_of="Subscription")
class SetAutoRenew:
    subscription_id = Identifier(required=True)
    enabled = Boolean(default=False)
    today = Date(required=True)
    cancel_only_countries = String(max_length=255)
    changed_at = DateTime()


@billing.command_handler(part_of=Subscription)
class ManageRecurringBillingHandler:
    @handle(CancelRecurringBilling)
    def cancel_recurring_billing(self, command: CancelRecurringBilling):
        at = command.cancelled_at or utcnow()
        subscriptions = current_domain.repository_for(Subscription)
        subscription = subscriptions.get(command.subscription_id)
        was_billing = subscription.recurring_status == RecurringStatus.ACTIVE.value

        policy = policy_for(subscription.country_code, _countries(command.cancel_only_countries))
        policy.cancel(subscription, at=at)

        if was_billing:
            current_domain.repository_for(BillingHistory).append(
                BillingHistory.cancellation(
                    subscription_id=subscription.id,
                    user_id=subscription.user_id,
                    reason="Recurring billing cancelled by user",
                    billing_key=subscription.billing_key,
                    currency=subscription.plan.currency,
                    processed_at=at,
                )
            )
        subscriptions.add(subscription)

    @handle(SetAutoRenew)
    def set_auto_renew(self, command: SetAutoRenew):
        subscriptions = current_domain.repository_for(Subscription)
        subscription = subscriptions.get(command.subscription_id)

        policy = policy_for(subscription.country_code, _countries(command.cancel_only_countries))
        policy.set_auto_renew(
            subscription,
            bool(command.enabled),
            today=command.today,
            at=command.changed_at or utcnow(),
        )
        subscriptions.add(subscription)
