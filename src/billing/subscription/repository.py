"""Repository for the Subscription aggregate."""

from datetime import date

from protean.exceptions import ValidationError

from billing.domain import billing
from billing.subscription.subscription import RecurringStatus, Subscription, SubscriptionStatus
from billing.utils.db import scan


@billing.repository(part_of=Subscription)
class SubscriptionRepository:
    """Subscription access with the queries the billing jobs need."""

    def add(self, subscription):
        if subscription.status == SubscriptionStatus.ACTIVE.value:
            others = [s for s in self.active_for_user(subscription.user_id) if s.id != subscription.id]
            if others:
                raise ValidationError({"status": ["User already has an active subscription"]})
        return super().add(subscription)

    def active_for_user(self, user_id) -> list[Subscription]:
        return scan(self._dao, user_id=str(user_id), status=SubscriptionStatus.ACTIVE.value)

    def current_for_user(self, user_id) -> Subscription | None:
        """The user's one active subscription, if any."""
        active = self.active_for_user(user_id)
        return active[0] if active else None

    def in_recurring_billing(self) -> list[Subscription]:
        return scan(
            self._dao,
            status=SubscriptionStatus.ACTIVE.value,
            recurring_status=RecurringStatus.ACTIVE.value,
        )

    def due_on(self, day: date) -> list[Subscription]:
        """Subscriptions whose next billing date is ``day``."""
        return [s for s in self.in_recurring_billing() if s.auto_renew and s.next_billing_date == day]

    def active(self) -> list[Subscription]:
        return scan(self._dao, status=SubscriptionStatus.ACTIVE.value)
