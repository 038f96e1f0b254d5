"""Tests for the expiration job."""

from datetime import UTC, date, datetime, timedelta

import pytest
from billing.subscription.expiration import expire_lapsed_subscriptions
from billing.subscription.subscription import RecurringStatus, Subscription, SubscriptionStatus
from protean import current_domain
from protean.exceptions import ValidationError

AS_OF = datetime(2026, 3, 1, 1, 0, tzinfo=UTC)
TODAY = date(2026, 3, 1)


def _reload(subscription_id):
    return current_domain.repository_for(Subscription).get(subscription_id)


class TestExpireLapsedSubscriptions:
    def test_expires_lapsed_subscription_without_billing(self, services, subscription_factory):
        subscription = subscription_factory(recurring=False, end_date=TODAY - timedelta(days=1))

        result = expire_lapsed_subscriptions(services, as_of=AS_OF)

        assert _reload(subscription.id).status == SubscriptionStatus.EXPIRED.value
        assert result["processed"] == 1

    def test_end_date_today_is_still_paid_for(self, services, subscription_factory):
        subscription = subscription_factory(recurring=False, end_date=TODAY)

        expire_lapsed_subscriptions(services, as_of=AS_OF)

        assert _reload(subscription.id).status == SubscriptionStatus.ACTIVE.value

    def test_subscription_in_recurring_billing_is_left_alone(self, services, subscription_factory):
        subscription = subscription_factory(end_date=TODAY - timedelta(days=2))

        result = expire_lapsed_subscriptions(services, as_of=AS_OF)

        assert _reload(subscription.id).status == SubscriptionStatus.ACTIVE.value
        assert result["still_billing"] == 1

    def test_deactivated_billing_expires(self, services, subscription_factory):
        subscription = subscription_factory(recurring=False, end_date=TODAY - timedelta(days=5), failed_attempts=3)

        expire_lapsed_subscriptions(services, as_of=AS_OF)

        expired = _reload(subscription.id)
        assert expired.status == SubscriptionStatus.EXPIRED.value
        assert expired.recurring_status == RecurringStatus.INACTIVE.value

    def test_counts_subscriptions_expiring_soon(self, services, subscription_factory):
        subscription_factory(user_id="user-001", recurring=False, end_date=TODAY + timedelta(days=2))
        subscription_factory(user_id="user-002", recurring=False, end_date=TODAY + timedelta(days=10))

        result = expire_lapsed_subscriptions(services, as_of=AS_OF)

        assert result["expiring_soon"] == 1
        assert result["processed"] == 0

    def test_expired_user_can_subscribe_again(self, services, subscription_factory):
        subscription_factory(user_id="user-001", recurring=False, end_date=TODAY - timedelta(days=1))
        expire_lapsed_subscriptions(services, as_of=AS_OF)

        renewed = subscription_factory(user_id="user-001", end_date=TODAY + timedelta(days=30))

        assert renewed.status == SubscriptionStatus.ACTIVE.value


class TestOneActiveSubscriptionPerUser:
    def test_second_active_subscription_is_refused(self, subscription_factory):
        subscription_factory(user_id="user-001")
        with pytest.raises(ValidationError):
            subscription_factory(user_id="user-001")
